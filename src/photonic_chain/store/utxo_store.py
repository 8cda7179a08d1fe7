"""UTXO store — the local cache of tracked outputs and subscription status.

Every write goes through one ``asyncio.Lock`` and one database transaction,
so a refresh's spent marks, reconfirmations, additions and status stamp
become visible together or not at all.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sqlalchemy import case, func, select, update

from photonic_chain.models import Balance, ContractType, Outpoint
from photonic_chain.store.models import BroadcastRecord, SubscriptionStatusRecord, TxoRecord
from photonic_chain.tx.models import SelectableInput

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from photonic_chain.datastore.client import Datastore
    from photonic_chain.models import SubscriptionStatus, TrackedOutput

logger = logging.getLogger(__name__)

# Keeps IN (...) lists under SQLite's bound-parameter limit
_CHUNK = 500


def _chunks(items: Sequence[str]) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), _CHUNK):
        yield items[start : start + _CHUNK]


class UTXOStore:
    """Cache of outputs keyed by outpoint, plus per-script sync status."""

    def __init__(self, datastore: Datastore) -> None:
        self._datastore = datastore
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    async def get_output(self, outpoint: Outpoint) -> TrackedOutput | None:
        async with self._datastore.session() as session:
            record = await session.get(TxoRecord, str(outpoint))
            return record.to_output() if record else None

    async def get_outputs(self, outpoints: Iterable[Outpoint]) -> dict[Outpoint, TrackedOutput]:
        """Look up cached outputs (spent or not) by outpoint."""
        ids = sorted({str(o) for o in outpoints})
        found: dict[Outpoint, TrackedOutput] = {}
        if not ids:
            return found
        async with self._datastore.session() as session:
            for chunk in _chunks(ids):
                result = await session.execute(select(TxoRecord).where(TxoRecord.id.in_(chunk)))
                for record in result.scalars():
                    found[record.outpoint] = record.to_output()
        return found

    async def unspent_outputs(
        self,
        *,
        script_hash: str | None = None,
        contract_type: ContractType | None = None,
    ) -> list[TrackedOutput]:
        """Unspent outputs, oldest confirmation first and unconfirmed last."""
        stmt = select(TxoRecord).where(TxoRecord.spent.is_(False))
        if script_hash is not None:
            stmt = stmt.where(TxoRecord.script_hash == script_hash)
        if contract_type is not None:
            stmt = stmt.where(TxoRecord.contract_type == str(contract_type))
        stmt = stmt.order_by(TxoRecord.height.asc().nulls_last(), TxoRecord.id)

        async with self._datastore.session() as session:
            result = await session.execute(stmt)
            return [record.to_output() for record in result.scalars()]

    async def selectable_inputs(
        self, contract_type: ContractType = ContractType.RXD
    ) -> list[SelectableInput]:
        """Unspent outputs of *contract_type* as coin selection candidates."""
        outputs = await self.unspent_outputs(contract_type=contract_type)
        return [SelectableInput.from_output(o) for o in outputs]

    async def balance(
        self,
        *,
        script_hash: str | None = None,
        contract_type: ContractType | None = None,
    ) -> Balance:
        """Sum of unspent values split into confirmed and unconfirmed."""
        confirmed = func.coalesce(
            func.sum(case((TxoRecord.height.is_not(None), TxoRecord.value), else_=0)), 0
        )
        unconfirmed = func.coalesce(
            func.sum(case((TxoRecord.height.is_(None), TxoRecord.value), else_=0)), 0
        )
        stmt = select(confirmed, unconfirmed).where(TxoRecord.spent.is_(False))
        if script_hash is not None:
            stmt = stmt.where(TxoRecord.script_hash == script_hash)
        if contract_type is not None:
            stmt = stmt.where(TxoRecord.contract_type == str(contract_type))

        async with self._datastore.session() as session:
            row = (await session.execute(stmt)).one()
        return Balance(confirmed=int(row[0]), unconfirmed=int(row[1]))

    # ------------------------------------------------------------------
    # Subscription status
    # ------------------------------------------------------------------

    async def get_status(self, script_hash: str) -> SubscriptionStatus | None:
        async with self._datastore.session() as session:
            record = await session.get(SubscriptionStatusRecord, script_hash)
            return record.to_status() if record else None

    async def mark_syncing(
        self,
        script_hash: str,
        contract_type: ContractType,
        *,
        num_total: int | None = None,
    ) -> None:
        """Flag a script as mid-refresh without touching its status token."""
        async with self._write_lock, self._datastore.transaction() as session:
            record = await self._status_record(session, script_hash, contract_type)
            record.sync_done = False
            record.num_synced = 0 if num_total is not None else None
            record.num_total = num_total

    async def apply_refresh(
        self,
        script_hash: str,
        contract_type: ContractType,
        status: str | None,
        *,
        spent: Iterable[Outpoint] = (),
        reconfirmed: Mapping[Outpoint, int | None] | None = None,
        added: Iterable[TrackedOutput] = (),
        unspent_count: int = 0,
    ) -> list[TrackedOutput]:
        """Commit one refresh of *script_hash* atomically.

        Spent marks and reconfirmations are written first, then additions,
        then the status token; all in one transaction. An addition whose
        outpoint is already cached is skipped.

        Returns:
            The outputs actually inserted.
        """
        spent_ids = sorted({str(o) for o in spent})
        reconfirmed = reconfirmed or {}
        inserted: list[TrackedOutput] = []

        async with self._write_lock, self._datastore.transaction() as session:
            for chunk in _chunks(spent_ids):
                await session.execute(
                    update(TxoRecord)
                    .where(TxoRecord.id.in_(chunk), TxoRecord.spent.is_(False))
                    .values(spent=True)
                )
            for outpoint, height in reconfirmed.items():
                await session.execute(
                    update(TxoRecord)
                    .where(TxoRecord.id == str(outpoint))
                    .values(height=height, spent=False)
                )

            candidates = list(added)
            existing: set[str] = set()
            for chunk in _chunks(sorted({str(o.outpoint) for o in candidates})):
                result = await session.execute(select(TxoRecord.id).where(TxoRecord.id.in_(chunk)))
                existing.update(result.scalars())
            for output in candidates:
                key = str(output.outpoint)
                if key in existing:
                    continue
                existing.add(key)
                session.add(TxoRecord.from_output(output))
                inserted.append(output)

            record = await self._status_record(session, script_hash, contract_type)
            record.status = status
            record.sync_done = True
            record.num_synced = unspent_count
            record.num_total = unspent_count

        logger.debug(
            "Refresh %s committed: %d spent, %d reconfirmed, %d added",
            script_hash[:16],
            len(spent_ids),
            len(reconfirmed),
            len(inserted),
        )
        return inserted

    @staticmethod
    async def _status_record(
        session: AsyncSession, script_hash: str, contract_type: ContractType
    ) -> SubscriptionStatusRecord:
        record = await session.get(SubscriptionStatusRecord, script_hash)
        if record is None:
            record = SubscriptionStatusRecord(
                script_hash=script_hash, contract_type=str(contract_type), status=None
            )
            session.add(record)
        return record

    # ------------------------------------------------------------------
    # Broadcast log
    # ------------------------------------------------------------------

    async def record_broadcast(self, txid: str, raw_tx: str) -> None:
        """Remember a transaction this wallet broadcast."""
        async with self._write_lock, self._datastore.transaction() as session:
            if await session.get(BroadcastRecord, txid) is None:
                session.add(BroadcastRecord(txid=txid, raw_tx=raw_tx))

    async def broadcast_txids(self, txids: Iterable[str]) -> set[str]:
        """Subset of *txids* that this wallet broadcast."""
        ids = sorted(set(txids))
        found: set[str] = set()
        if not ids:
            return found
        async with self._datastore.session() as session:
            for chunk in _chunks(ids):
                result = await session.execute(
                    select(BroadcastRecord.txid).where(BroadcastRecord.txid.in_(chunk))
                )
                found.update(result.scalars())
        return found
