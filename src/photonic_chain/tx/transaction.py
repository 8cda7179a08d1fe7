"""Raw transaction layout — the byte format the size estimator predicts.

- VarInt encoding/decoding
- TxInput / TxOutput / Transaction with serialize / parse / txid
- ``unsigned_transaction`` turns a :class:`CoinSelection` into a skeleton
  for the external signer
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from io import BytesIO
from typing import TYPE_CHECKING

from photonic_chain.utils.crypto import sha256d

if TYPE_CHECKING:
    from photonic_chain.tx.models import CoinSelection

DEFAULT_SEQUENCE = 0xFFFFFFFF


# ---------------------------------------------------------------------------
# VarInt encoding / decoding
# ---------------------------------------------------------------------------


def encode_varint(n: int) -> bytes:
    """Encode a count as a variable-length integer."""
    if n < 0xFD:
        return struct.pack("<B", n)
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def read_varint(stream: BytesIO) -> int:
    """Read a variable-length integer from a byte stream."""
    first = stream.read(1)
    if len(first) == 0:
        msg = "Unexpected end of stream reading varint"
        raise ValueError(msg)
    n = first[0]
    if n < 0xFD:
        return n
    if n == 0xFD:
        return struct.unpack("<H", _read_exact(stream, 2))[0]
    if n == 0xFE:
        return struct.unpack("<I", _read_exact(stream, 4))[0]
    return struct.unpack("<Q", _read_exact(stream, 8))[0]


def _read_exact(stream: BytesIO, n: int) -> bytes:
    data = stream.read(n)
    if len(data) != n:
        msg = f"Unexpected end of stream: wanted {n} bytes, got {len(data)}"
        raise ValueError(msg)
    return data


# ---------------------------------------------------------------------------
# Inputs and outputs
# ---------------------------------------------------------------------------


@dataclass
class TxInput:
    """A transaction input.

    ``prev_tx_id`` is kept in display (big-endian hex) order and reversed on
    the wire.
    """

    prev_tx_id: str
    prev_tx_out_index: int
    script_sig: bytes = b""
    sequence: int = DEFAULT_SEQUENCE

    def serialize(self) -> bytes:
        return (
            bytes.fromhex(self.prev_tx_id)[::-1]
            + struct.pack("<I", self.prev_tx_out_index)
            + encode_varint(len(self.script_sig))
            + self.script_sig
            + struct.pack("<I", self.sequence)
        )

    @classmethod
    def parse(cls, stream: BytesIO) -> TxInput:
        prev_tx_id = _read_exact(stream, 32)[::-1].hex()
        prev_tx_out_index = struct.unpack("<I", _read_exact(stream, 4))[0]
        script_sig = _read_exact(stream, read_varint(stream))
        sequence = struct.unpack("<I", _read_exact(stream, 4))[0]
        return cls(prev_tx_id, prev_tx_out_index, script_sig, sequence)


@dataclass
class TxOutput:
    """A transaction output: value in photons and locking script."""

    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return (
            struct.pack("<q", self.value)
            + encode_varint(len(self.script_pubkey))
            + self.script_pubkey
        )

    @classmethod
    def parse(cls, stream: BytesIO) -> TxOutput:
        value = struct.unpack("<q", _read_exact(stream, 8))[0]
        script_pubkey = _read_exact(stream, read_varint(stream))
        return cls(value=value, script_pubkey=script_pubkey)


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


@dataclass
class Transaction:
    """A raw transaction."""

    version: int = 1
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    locktime: int = 0

    def serialize(self) -> bytes:
        parts = [struct.pack("<i", self.version), encode_varint(len(self.inputs))]
        parts.extend(inp.serialize() for inp in self.inputs)
        parts.append(encode_varint(len(self.outputs)))
        parts.extend(out.serialize() for out in self.outputs)
        parts.append(struct.pack("<I", self.locktime))
        return b"".join(parts)

    def to_hex(self) -> str:
        return self.serialize().hex()

    @classmethod
    def from_hex(cls, hex_str: str) -> Transaction:
        """Parse a raw transaction hex string.

        Raises:
            ValueError: If the hex is malformed, truncated or has trailing bytes.
        """
        stream = BytesIO(bytes.fromhex(hex_str))
        version = struct.unpack("<i", _read_exact(stream, 4))[0]
        inputs = [TxInput.parse(stream) for _ in range(read_varint(stream))]
        outputs = [TxOutput.parse(stream) for _ in range(read_varint(stream))]
        locktime = struct.unpack("<I", _read_exact(stream, 4))[0]
        if stream.read(1):
            msg = "Trailing bytes after transaction"
            raise ValueError(msg)
        return cls(version=version, inputs=inputs, outputs=outputs, locktime=locktime)

    def txid(self) -> str:
        """Transaction ID (double-SHA256, reversed, hex)."""
        return sha256d(self.serialize())[::-1].hex()

    @property
    def size(self) -> int:
        return len(self.serialize())


def unsigned_transaction(selection: CoinSelection) -> Transaction:
    """Lay out a selection as a transaction awaiting signatures.

    Inputs whose unlocking script is already known carry it; the others have
    an empty ``script_sig`` for the signer to fill in.
    """
    tx = Transaction()
    for inp in selection.inputs:
        script_sig = bytes.fromhex(inp.script_sig) if inp.script_sig else b""
        tx.inputs.append(TxInput(inp.txid, inp.vout, script_sig))
    for out in selection.outputs:
        tx.outputs.append(TxOutput(int(out.value), bytes.fromhex(out.script)))
    return tx
