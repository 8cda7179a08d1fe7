"""Coin selection inputs and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from photonic_chain.models import Outpoint

if TYPE_CHECKING:
    from photonic_chain.models import TrackedOutput


@dataclass(frozen=True)
class SelectableInput:
    """An unspent output offered to coin selection.

    Attributes:
        txid: Funding transaction ID (display hex).
        vout: Output index in the funding transaction.
        script: Hex locking script of the output.
        value: Value in photons.
        required: Must be spent verbatim (e.g. the token being moved).
        script_sig_size: Expected unlocking script length when it is not the
            default P2PKH signature (multisig, token covenants).
        script_sig: The actual unlocking script (hex) once known.
    """

    txid: str
    vout: int
    script: str
    value: int | float
    required: bool = False
    script_sig_size: int | None = None
    script_sig: str | None = None

    @property
    def outpoint(self) -> Outpoint:
        return Outpoint(self.txid, self.vout)

    @classmethod
    def from_output(
        cls,
        output: TrackedOutput,
        *,
        required: bool = False,
        script_sig_size: int | None = None,
    ) -> SelectableInput:
        """Copy a cached output into a selection candidate."""
        return cls(
            txid=output.txid,
            vout=output.vout,
            script=output.script,
            value=output.value,
            required=required,
            script_sig_size=script_sig_size,
        )


@dataclass(frozen=True)
class CandidateOutput:
    """An output to be created: hex locking script and value in photons."""

    script: str
    value: int | float


@dataclass(frozen=True)
class CoinSelection:
    """Result of :func:`photonic_chain.tx.coin_select.select_coins`.

    ``size`` is the estimated serialized size the fee was computed from.
    """

    inputs: list[SelectableInput] = field(default_factory=list)
    outputs: list[CandidateOutput] = field(default_factory=list)
    fee: int = 0
    size: int = 0
    change: CandidateOutput | None = None

    @property
    def input_value(self) -> int:
        return int(sum(i.value for i in self.inputs))

    @property
    def output_value(self) -> int:
        return int(sum(o.value for o in self.outputs))
