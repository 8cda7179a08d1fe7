"""Chain sync engine — keeps the UTXO cache equal to the server's unspent set.

Each tracked script is subscribed on the server. When its status token
changes the engine fetches ``listunspent`` for the script, diffs it against
the cache and commits the difference in one store batch:

- outpoints missing from the cache are added
- cached outpoints with a different height (or flagged spent) are reconfirmed
- cached unspent outpoints missing from the server's set are marked spent

A repeated status token costs no network call.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from photonic_chain.errors.chain_errors import ChainError
from photonic_chain.errors.definitions import SyncFetchFailed
from photonic_chain.models import ContractType, Outpoint, TrackedOutput, normalize_height
from photonic_chain.network.manager import ConnectionEvent, ConnectionState, ScriptStatusEvent

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine
    from typing import Any

    from photonic_chain.metrics.collector import ChainMetrics
    from photonic_chain.network.electrum import ElectrumUtxo
    from photonic_chain.network.manager import ChainEvent, ConnectionManager
    from photonic_chain.store.utxo_store import UTXOStore

logger = logging.getLogger(__name__)

_SUBSCRIBER_KEY = "sync-engine"


@dataclass(frozen=True)
class TrackedScript:
    """A locking script the wallet watches.

    ``script_builder`` maps an unspent record to its locking script, for
    contract types whose outputs differ per output; returning ``None`` skips
    the record. Without a builder every output carries ``script``.
    """

    script_hash: str
    script: str
    contract_type: ContractType = ContractType.RXD
    script_builder: Callable[[ElectrumUtxo], str | None] | None = None

    def build_script(self, utxo: ElectrumUtxo) -> str | None:
        if self.script_builder is None:
            return self.script
        return self.script_builder(utxo)


@dataclass
class ScriptSyncState:
    """In-memory refresh state of one tracked script."""

    generation: int = 0
    syncing: bool = False
    num_synced: int | None = None
    num_total: int | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)


@dataclass(frozen=True)
class SyncResult:
    """What one refresh changed in the cache."""

    script_hash: str
    contract_type: ContractType
    added: list[TrackedOutput] = field(default_factory=list)
    reconfirmed: dict[Outpoint, int | None] = field(default_factory=dict)
    spent: list[Outpoint] = field(default_factory=list)
    total_unspent_count: int = 0


class ChainSyncEngine:
    """Drives refreshes from connection and script status events.

    Usage::

        engine = ChainSyncEngine(manager, store, metrics=metrics)
        engine.track(TrackedScript(sh, script_hex))
        engine.subscribe(on_sync)
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        connection: ConnectionManager,
        store: UTXOStore,
        *,
        metrics: ChainMetrics | None = None,
        channel_size: int = 256,
    ) -> None:
        self._connection = connection
        self._store = store
        self._metrics = metrics
        self._channel_size = channel_size
        self._scripts: dict[str, TrackedScript] = {}
        self._states: dict[str, ScriptSyncState] = {}
        self._callbacks: list[Callable[[SyncResult], Awaitable[None]]] = []
        self._events: asyncio.Queue[ChainEvent] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    @property
    def tracked(self) -> list[TrackedScript]:
        return list(self._scripts.values())

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def track(self, script: TrackedScript) -> None:
        """Watch *script*; it is subscribed on the next (re)connect."""
        self._scripts[script.script_hash] = script
        self._states.setdefault(script.script_hash, ScriptSyncState())
        logger.debug("Tracking %s (%s)", script.script_hash, script.contract_type)

    def untrack(self, script_hash: str) -> None:
        """Stop reacting to events for *script_hash*; cached outputs are kept."""
        self._scripts.pop(script_hash, None)
        self._states.pop(script_hash, None)

    def subscribe(self, callback: Callable[[SyncResult], Awaitable[None]]) -> None:
        """Register an async callback invoked with every committed refresh."""
        self._callbacks.append(callback)

    def state(self, script_hash: str) -> ScriptSyncState | None:
        return self._states.get(script_hash)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start consuming connection manager events."""
        if self.is_running:
            return
        self._events = self._connection.add_subscriber(_SUBSCRIBER_KEY, buffer=self._channel_size)
        self._consumer = asyncio.create_task(self._consume())

    async def stop(self) -> None:
        """Stop the consumer and cancel refreshes in flight."""
        self._connection.remove_subscriber(_SUBSCRIBER_KEY)
        tasks = [t for t in (self._consumer, *self._tasks) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._consumer = None
        self._events = None
        self._tasks.clear()

    async def _consume(self) -> None:
        assert self._events is not None
        while True:
            event = await self._events.get()
            if isinstance(event, ConnectionEvent):
                if event.state == ConnectionState.CONNECTED:
                    self._spawn(self.resubscribe_all())
            elif isinstance(event, ScriptStatusEvent):
                self._spawn(self.handle_status(event.script_hash, event.status))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, SyncFetchFailed):
            logger.warning("%s", exc)
        elif exc is not None:
            logger.error("Sync task failed", exc_info=exc)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def handle_status(
        self, script_hash: str, status: str | None, *, force: bool = False
    ) -> SyncResult | None:
        """React to a status token for *script_hash*.

        Returns ``None`` when nothing was refreshed: the script is not
        tracked, the token is already stored, or a newer event superseded
        this one.

        Raises:
            SyncFetchFailed: The unspent set could not be fetched. The token
                is not stored, so the next event retries.
        """
        tracked = self._scripts.get(script_hash)
        state = self._states.get(script_hash)
        if tracked is None or state is None:
            logger.debug("Status for untracked script %s ignored", script_hash)
            return None

        state.generation += 1
        generation = state.generation

        async with state.lock:
            if generation != state.generation:
                self._record("superseded")
                return None

            if not force:
                stored = await self._store.get_status(script_hash)
                if stored is not None and stored.sync.done and stored.status == status:
                    logger.debug("Status of %s unchanged", script_hash)
                    self._record("unchanged")
                    return None

            state.syncing = True
            try:
                return await self._refresh(tracked, state, status, generation)
            finally:
                state.syncing = False

    async def _refresh(
        self,
        tracked: TrackedScript,
        state: ScriptSyncState,
        status: str | None,
        generation: int,
    ) -> SyncResult | None:
        script_hash = tracked.script_hash
        await self._store.mark_syncing(script_hash, tracked.contract_type)

        try:
            with self._timed():
                utxos = await self._connection.list_unspent(script_hash)
        except ChainError as exc:
            self._record("failed")
            raise SyncFetchFailed(script_hash, exc.user_message) from exc

        if generation != state.generation:
            logger.debug("Discarding superseded unspent set for %s", script_hash)
            self._record("superseded")
            return None

        fetched: dict[Outpoint, ElectrumUtxo] = {Outpoint(u.tx_hash, u.tx_pos): u for u in utxos}
        state.num_total = len(fetched)
        state.num_synced = 0

        cached = await self._store.get_outputs(fetched)
        reconfirmed: dict[Outpoint, int | None] = {}
        fresh: list[ElectrumUtxo] = []
        for outpoint, utxo in fetched.items():
            known = cached.get(outpoint)
            if known is None:
                fresh.append(utxo)
                continue
            height = normalize_height(utxo.height)
            if known.spent or known.height != height:
                reconfirmed[outpoint] = height

        own = await self._store.broadcast_txids(u.tx_hash for u in fresh)
        additions: list[TrackedOutput] = []
        for utxo in fresh:
            script = tracked.build_script(utxo)
            if script is None:
                logger.debug("No script for %s:%d, skipped", utxo.tx_hash, utxo.tx_pos)
                continue
            additions.append(
                TrackedOutput(
                    txid=utxo.tx_hash,
                    vout=utxo.tx_pos,
                    script=script,
                    value=utxo.value,
                    script_hash=script_hash,
                    contract_type=tracked.contract_type,
                    height=normalize_height(utxo.height),
                    self_originated=utxo.tx_hash in own,
                )
            )

        cached_unspent = await self._store.unspent_outputs(script_hash=script_hash)
        spent = [o.outpoint for o in cached_unspent if o.outpoint not in fetched]

        inserted = await self._store.apply_refresh(
            script_hash,
            tracked.contract_type,
            status,
            spent=spent,
            reconfirmed=reconfirmed,
            added=additions,
            unspent_count=len(fetched),
        )
        state.num_synced = len(fetched)

        result = SyncResult(
            script_hash=script_hash,
            contract_type=tracked.contract_type,
            added=inserted,
            reconfirmed=reconfirmed,
            spent=spent,
            total_unspent_count=len(fetched),
        )
        logger.info(
            "Synced %s: +%d ~%d -%d (%d unspent)",
            script_hash[:16],
            len(inserted),
            len(reconfirmed),
            len(spent),
            len(fetched),
        )
        self._record("ok")
        if self._metrics:
            self._metrics.set_unspent_count(script_hash, len(fetched))
        await self._notify(result)
        return result

    async def resubscribe_all(self) -> list[SyncResult]:
        """Subscribe every tracked script and refresh those whose token changed."""
        return await self._sync_all(force=False)

    async def manual_sync(self) -> list[SyncResult]:
        """Refresh every tracked script regardless of stored tokens."""
        return await self._sync_all(force=True)

    async def _sync_all(self, *, force: bool) -> list[SyncResult]:
        statuses: dict[str, str | None] = {}
        for script_hash in list(self._scripts):
            try:
                statuses[script_hash] = await self._connection.subscribe_script(script_hash)
            except ChainError as exc:
                logger.warning("Subscribe failed for %s: %s", script_hash, exc.user_message)

        outcomes = await asyncio.gather(
            *(self.handle_status(sh, status, force=force) for sh, status in statuses.items()),
            return_exceptions=True,
        )
        results: list[SyncResult] = []
        for outcome in outcomes:
            if isinstance(outcome, SyncFetchFailed):
                logger.warning("%s", outcome)
            elif isinstance(outcome, BaseException):
                logger.error("Refresh failed", exc_info=outcome)
            elif outcome is not None:
                results.append(outcome)
        return results

    async def is_utxo_unspent(self, txid: str, vout: int, script_hash: str) -> bool:
        """Ask the server whether ``txid:vout`` is still in *script_hash*'s unspent set."""
        utxos = await self._connection.list_unspent(script_hash)
        return any(u.tx_hash == txid and u.tx_pos == vout for u in utxos)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _notify(self, result: SyncResult) -> None:
        for callback in list(self._callbacks):
            try:
                await callback(result)
            except Exception:
                logger.exception("Sync callback failed for %s", result.script_hash)

    def _record(self, outcome: str) -> None:
        if self._metrics:
            self._metrics.record_refresh(outcome)

    def _timed(self) -> contextlib.AbstractContextManager[None]:
        if self._metrics:
            return self._metrics.track_refresh()
        return contextlib.nullcontext()
