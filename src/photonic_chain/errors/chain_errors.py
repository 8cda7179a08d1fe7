"""ChainError — base exception class for all chain client errors."""

from __future__ import annotations

import re

# Longest user-facing description; longer server diagnostics are cut here.
_MAX_USER_MESSAGE = 120
# Hex blobs, txids and other opaque identifiers longer than this are shortened.
_MAX_TOKEN = 24
_LONG_TOKEN = re.compile(r"[0-9A-Za-z]{%d,}" % (_MAX_TOKEN + 1))


def sanitize_message(text: str, *, limit: int = _MAX_USER_MESSAGE) -> str:
    """Reduce a diagnostic string to a short line safe to show a user.

    Keeps the first non-empty line, collapses whitespace, abbreviates long
    identifiers (``0100000001ab...`` becomes ``01000000…``) and caps the length.
    """
    line = next((ln.strip() for ln in text.splitlines() if ln.strip()), "")
    line = " ".join(line.split())
    line = _LONG_TOKEN.sub(lambda m: m.group(0)[:8] + "…", line)
    if len(line) > limit:
        line = line[: limit - 1].rstrip() + "…"
    return line


class ChainError(Exception):
    """Base error for chain client operations.

    Attributes:
        message: Full diagnostic description.
        code: Machine-readable error code string.
    """

    def __init__(self, message: str, *, code: str = "chain-error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    @property
    def user_message(self) -> str:
        """Short sanitized description for user-facing surfaces."""
        return sanitize_message(self.message)
