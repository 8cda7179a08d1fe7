"""Wallet-side records shared by the sync engine, the store and coin selection."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class ContractType(enum.StrEnum):
    """Category tag of a tracked output."""

    RXD = "rxd"
    FT = "ft"
    NFT = "nft"


@dataclass(frozen=True, order=True)
class Outpoint:
    """Identity of a transaction output."""

    txid: str
    vout: int

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"

    @classmethod
    def parse(cls, value: str) -> Outpoint:
        """Parse the ``txid:vout`` form."""
        txid, _, vout = value.rpartition(":")
        if not txid or not vout.isdigit():
            msg = f"Malformed outpoint: {value!r}"
            raise ValueError(msg)
        return cls(txid=txid, vout=int(vout))


@dataclass
class TrackedOutput:
    """A cached output of a tracked script.

    ``height`` is ``None`` while the funding transaction is unconfirmed.
    Spent outputs keep their record with ``spent=True``.
    """

    txid: str
    vout: int
    script: str
    value: int
    script_hash: str
    contract_type: ContractType = ContractType.RXD
    height: int | None = None
    spent: bool = False
    self_originated: bool = False

    @property
    def outpoint(self) -> Outpoint:
        return Outpoint(self.txid, self.vout)

    @property
    def is_confirmed(self) -> bool:
        return self.height is not None


@dataclass(frozen=True)
class SyncProgress:
    """Progress marker of a script refresh."""

    done: bool = True
    num_synced: int | None = None
    num_total: int | None = None


@dataclass(frozen=True)
class SubscriptionStatus:
    """Last status token seen for a tracked script."""

    script_hash: str
    contract_type: ContractType
    status: str | None = None
    sync: SyncProgress = field(default_factory=SyncProgress)


@dataclass(frozen=True)
class Balance:
    """Unspent value split by confirmation state (photons)."""

    confirmed: int = 0
    unconfirmed: int = 0

    @property
    def total(self) -> int:
        return self.confirmed + self.unconfirmed


def normalize_height(height: int | None) -> int | None:
    """Map an ElectrumX height (``0`` or ``-1`` while in the mempool) to ``None``."""
    if height is None or height <= 0:
        return None
    return height
