"""Accumulative coin selection.

Required inputs are always spent. The remaining candidates are added one at a
time in caller order until the inputs cover the outputs plus the fee for the
transaction as estimated so far. Leftover value above the dust threshold goes
to a change output that pays for its own bytes; anything smaller is left to
the miner.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from photonic_chain.errors.definitions import FeeTooLarge, InsufficientFunds
from photonic_chain.tx.models import CandidateOutput, CoinSelection, SelectableInput
from photonic_chain.tx.size import (
    P2PKH_INPUT_BYTES,
    check_amount,
    estimate_input_bytes,
    estimate_output_bytes,
    estimate_transaction_bytes,
    varint_size,
)

DEFAULT_FEE_RATE = 10_000  # photons per byte
DEFAULT_DUST_MULTIPLIER = 1.0
# 10x the fee of a 100 kB transaction at the default rate
DEFAULT_MAX_FEE = 10 * DEFAULT_FEE_RATE * 100_000


def fee_for(size: int, fee_rate: float) -> int:
    """Fee in photons for *size* bytes at *fee_rate* photons/byte."""
    return math.ceil(fee_rate * size)


def dust_threshold(
    change_script: str, fee_rate: float, multiplier: float = DEFAULT_DUST_MULTIPLIER
) -> int:
    """Value at or below which a change output is not worth creating.

    Counts the bytes to create the output plus the bytes of a P2PKH input
    that would later spend it, priced at the active fee rate.
    """
    change_bytes = estimate_output_bytes(CandidateOutput(change_script, 0))
    return math.ceil(fee_rate * (change_bytes + P2PKH_INPUT_BYTES) * multiplier)


def select_coins(
    available: Sequence[SelectableInput],
    mandatory_outputs: Sequence[CandidateOutput],
    required_inputs: Sequence[SelectableInput],
    fee_rate: float,
    change_script: str,
    *,
    dust_multiplier: float = DEFAULT_DUST_MULTIPLIER,
    max_fee: int = DEFAULT_MAX_FEE,
) -> CoinSelection:
    """Pick inputs funding *mandatory_outputs* at *fee_rate*.

    Args:
        available: Spendable candidates in priority order; never re-sorted.
        mandatory_outputs: Outputs the transaction must create.
        required_inputs: Inputs that must be spent verbatim. Entries of
            *available* flagged ``required`` are treated the same way.
        fee_rate: Photons per byte.
        change_script: Hex locking script receiving change.
        dust_multiplier: Scales the dust threshold.
        max_fee: Emergency ceiling; a larger fee raises :class:`FeeTooLarge`.

    Returns:
        A :class:`CoinSelection`; ``outputs`` ends with the change output when
        one was created.

    Raises:
        InvalidAmount: A value or the fee rate is not finite and non-negative.
        InsufficientFunds: The candidates cannot fund the outputs and fee.
        FeeTooLarge: The fee exceeds *max_fee*.
    """
    check_amount(fee_rate)

    required = list(required_inputs)
    required_ids = {i.outpoint for i in required}
    for inp in available:
        if inp.required and inp.outpoint not in required_ids:
            required.append(inp)
            required_ids.add(inp.outpoint)
    remainder = [i for i in available if i.outpoint not in required_ids]

    outputs = list(mandatory_outputs)
    output_value = sum(o.value for o in outputs)
    selected = list(required)
    input_value = sum(i.value for i in selected)
    size = estimate_transaction_bytes(selected, outputs)

    def funded() -> bool:
        return input_value >= output_value + fee_for(size, fee_rate)

    if not funded():
        for inp in remainder:
            size += estimate_input_bytes(inp)
            size += varint_size(len(selected) + 1) - varint_size(len(selected))
            selected.append(inp)
            input_value += inp.value
            if funded():
                break
        else:
            raise InsufficientFunds(
                required=math.ceil(output_value + fee_for(size, fee_rate)),
                available=math.floor(input_value),
            )

    leftover = input_value - output_value - fee_for(size, fee_rate)
    change: CandidateOutput | None = None
    if leftover > dust_threshold(change_script, fee_rate, dust_multiplier):
        size_with_change = (
            size
            + estimate_output_bytes(CandidateOutput(change_script, 0))
            + varint_size(len(outputs) + 1)
            - varint_size(len(outputs))
        )
        change_value = math.floor(
            input_value - output_value - fee_for(size_with_change, fee_rate)
        )
        if change_value > 0:
            change = CandidateOutput(change_script, change_value)
            outputs.append(change)
            size = size_with_change

    fee = math.floor(input_value - output_value - (change.value if change else 0))
    if fee > max_fee:
        raise FeeTooLarge(fee=fee, max_fee=max_fee)

    return CoinSelection(inputs=selected, outputs=outputs, fee=fee, size=size, change=change)
