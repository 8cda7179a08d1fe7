"""Transaction sizing, coin selection and raw layout."""

from photonic_chain.tx.coin_select import dust_threshold, select_coins
from photonic_chain.tx.models import CandidateOutput, CoinSelection, SelectableInput
from photonic_chain.tx.size import (
    estimate_input_bytes,
    estimate_output_bytes,
    estimate_transaction_bytes,
    varint_size,
)

__all__ = [
    "CandidateOutput",
    "CoinSelection",
    "SelectableInput",
    "dust_threshold",
    "estimate_input_bytes",
    "estimate_output_bytes",
    "estimate_transaction_bytes",
    "select_coins",
    "varint_size",
]
