"""ORM rows for the UTXO cache, subscription status and broadcast log."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from photonic_chain.models import (
    ContractType,
    Outpoint,
    SubscriptionStatus,
    SyncProgress,
    TrackedOutput,
)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for the chain client tables."""


class TimestampMixin:
    """Created / updated timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class TxoRecord(Base, TimestampMixin):
    """A cached output of a tracked script, keyed by ``txid:vout``."""

    __tablename__ = "txos"

    id: Mapped[str] = mapped_column(String(80), primary_key=True, comment="txid:vout")
    txid: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    vout: Mapped[int] = mapped_column(Integer, nullable=False)
    script_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    script: Mapped[str] = mapped_column(Text, nullable=False, comment="Hex locking script")
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="Photons")
    contract_type: Mapped[str] = mapped_column(String(8), nullable=False, index=True)
    height: Mapped[int | None] = mapped_column(
        Integer, nullable=True, default=None, comment="NULL while unconfirmed"
    )
    spent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    self_originated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, comment="Funded by a tx this wallet broadcast"
    )

    @classmethod
    def from_output(cls, output: TrackedOutput) -> TxoRecord:
        return cls(
            id=str(output.outpoint),
            txid=output.txid,
            vout=output.vout,
            script_hash=output.script_hash,
            script=output.script,
            value=output.value,
            contract_type=str(output.contract_type),
            height=output.height,
            spent=output.spent,
            self_originated=output.self_originated,
        )

    def to_output(self) -> TrackedOutput:
        return TrackedOutput(
            txid=self.txid,
            vout=self.vout,
            script=self.script,
            value=self.value,
            script_hash=self.script_hash,
            contract_type=ContractType(self.contract_type),
            height=self.height,
            spent=self.spent,
            self_originated=self.self_originated,
        )

    @property
    def outpoint(self) -> Outpoint:
        return Outpoint(self.txid, self.vout)

    def __repr__(self) -> str:
        return f"<Txo {self.txid[:16]}:{self.vout} value={self.value} spent={self.spent}>"


class SubscriptionStatusRecord(Base, TimestampMixin):
    """Last status token and sync progress for a tracked script."""

    __tablename__ = "subscription_status"

    script_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    contract_type: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)
    sync_done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    num_synced: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    num_total: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)

    def to_status(self) -> SubscriptionStatus:
        return SubscriptionStatus(
            script_hash=self.script_hash,
            contract_type=ContractType(self.contract_type),
            status=self.status,
            sync=SyncProgress(
                done=self.sync_done,
                num_synced=self.num_synced,
                num_total=self.num_total,
            ),
        )


class BroadcastRecord(Base, TimestampMixin):
    """A transaction this wallet broadcast."""

    __tablename__ = "broadcasts"

    txid: Mapped[str] = mapped_column(String(64), primary_key=True)
    raw_tx: Mapped[str] = mapped_column(Text, nullable=False)
