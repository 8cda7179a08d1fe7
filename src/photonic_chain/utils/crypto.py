"""Hashing helpers — txids and ElectrumX script hashes."""

from __future__ import annotations

import hashlib


def sha256(data: bytes) -> bytes:
    """Single SHA-256 hash."""
    return hashlib.sha256(data).digest()


def sha256d(data: bytes) -> bytes:
    """Double SHA-256 hash (SHA256(SHA256(data)))."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def script_hash(script: bytes | str) -> str:
    """ElectrumX script hash: SHA-256 of the locking script, byte-reversed, hex.

    Args:
        script: Locking script as raw bytes or hex.
    """
    raw = bytes.fromhex(script) if isinstance(script, str) else script
    return sha256(raw)[::-1].hex()
