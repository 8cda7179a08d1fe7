"""Serialized size estimation for unsigned transactions.

Sizes follow the wire layout written by :mod:`photonic_chain.tx.transaction`:

- input:  outpoint (36) + sequence (4) + varint(len) + unlocking script
- output: value (8) + varint(len) + locking script
- tx:     version (4) + locktime (4) + varint(#in) + inputs + varint(#out) + outputs

Scripts are always measured in bytes. Hex strings are decoded first, so a
25-byte P2PKH script counts as 25, not 50.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from numbers import Real

from photonic_chain.errors.definitions import InvalidAmount
from photonic_chain.tx.models import CandidateOutput, SelectableInput

TX_BASE_BYTES = 8
INPUT_BASE_BYTES = 40
OUTPUT_BASE_BYTES = 8

# <sig (72) push> + <compressed pubkey (33) push>
P2PKH_SCRIPT_SIG_BYTES = 107
# A default input spending P2PKH: 40 + 1 + 107
P2PKH_INPUT_BYTES = INPUT_BASE_BYTES + 1 + P2PKH_SCRIPT_SIG_BYTES


def varint_size(n: int) -> int:
    """Bytes taken by the variable-length count prefix for *n*."""
    if n < 0:
        raise InvalidAmount(n)
    if n < 0xFD:
        return 1
    if n <= 0xFFFF:
        return 3
    if n <= 0xFFFFFFFF:
        return 5
    return 9


def check_amount(value: object) -> None:
    """Raise :class:`InvalidAmount` unless *value* is a finite number >= 0."""
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidAmount(value)
    if not math.isfinite(value) or value < 0:
        raise InvalidAmount(value)


def script_length(script: bytes | str | None) -> int:
    """Length in bytes of a script given as raw bytes or hex."""
    if not script:
        return 0
    if isinstance(script, bytes):
        return len(script)
    return len(bytes.fromhex(script))


def estimate_input_bytes(inp: SelectableInput) -> int:
    """Estimated size of one input once signed."""
    check_amount(inp.value)
    if inp.script_sig is not None:
        sig_len = script_length(inp.script_sig)
    elif inp.script_sig_size is not None:
        sig_len = inp.script_sig_size
    else:
        sig_len = P2PKH_SCRIPT_SIG_BYTES
    return INPUT_BASE_BYTES + varint_size(sig_len) + sig_len


def estimate_output_bytes(out: CandidateOutput) -> int:
    """Serialized size of one output."""
    check_amount(out.value)
    length = script_length(out.script)
    return OUTPUT_BASE_BYTES + varint_size(length) + length


def estimate_transaction_bytes(
    inputs: Iterable[SelectableInput], outputs: Iterable[CandidateOutput]
) -> int:
    """Estimated size of a whole transaction."""
    inputs = list(inputs)
    outputs = list(outputs)
    return (
        TX_BASE_BYTES
        + varint_size(len(inputs))
        + sum(estimate_input_bytes(i) for i in inputs)
        + varint_size(len(outputs))
        + sum(estimate_output_bytes(o) for o in outputs)
    )
