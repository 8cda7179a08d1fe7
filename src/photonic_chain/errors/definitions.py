"""Chain client error taxonomy.

- ``InvalidAmount`` — non-finite / negative value while sizing or totaling (caller bug)
- ``InsufficientFunds`` — coin selection could not fund the outputs + fee
- ``FeeTooLarge`` — computed fee above the emergency ceiling, never broadcast
- ``NotConnected`` — remote call with no live server connection
- ``SyncFetchFailed`` — unspent-set fetch failed during a refresh, retried on the next event
- ``ElectrumRequestError`` — the server answered a request with a JSON-RPC error
"""

from __future__ import annotations

from photonic_chain.errors.chain_errors import ChainError


class InvalidAmount(ChainError):
    """A value or fee rate is not a finite non-negative number."""

    def __init__(self, value: object) -> None:
        super().__init__(f"invalid amount: {value!r}", code="invalid-amount")
        self.value = value


class InsufficientFunds(ChainError):
    """Selection exhausted the available inputs before the transaction was funded."""

    def __init__(self, *, required: int, available: int) -> None:
        super().__init__(
            f"insufficient funds: need {required} photons, have {available}",
            code="insufficient-funds",
        )
        self.required = required
        self.available = available


class FeeTooLarge(ChainError):
    """Computed fee exceeds the configured safety ceiling."""

    def __init__(self, *, fee: int, max_fee: int) -> None:
        super().__init__(
            f"fee {fee} photons exceeds safety ceiling of {max_fee}",
            code="fee-too-large",
        )
        self.fee = fee
        self.max_fee = max_fee


class NotConnected(ChainError):
    """No live ElectrumX connection."""

    def __init__(self, message: str = "not connected to an ElectrumX server") -> None:
        super().__init__(message, code="not-connected")


class SyncFetchFailed(ChainError):
    """Fetching the unspent set for a script failed."""

    def __init__(self, script_hash: str, reason: str) -> None:
        super().__init__(
            f"unspent fetch failed for {script_hash}: {reason}",
            code="sync-fetch-failed",
        )
        self.script_hash = script_hash
        self.reason = reason


class ElectrumRequestError(ChainError):
    """Error returned by an ElectrumX server, or a request that got no answer."""

    def __init__(self, message: str, *, method: str = "", rpc_code: int | None = None) -> None:
        super().__init__(message, code="electrum-error")
        self.method = method
        self.rpc_code = rpc_code
