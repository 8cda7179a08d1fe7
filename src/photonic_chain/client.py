"""ChainClient — wallet-facing facade owning the store, connection and sync engine."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from photonic_chain.models import ContractType
from photonic_chain.tx import size
from photonic_chain.tx.coin_select import select_coins
from photonic_chain.tx.transaction import Transaction
from photonic_chain.utils.crypto import script_hash as hash_script

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from photonic_chain.config.settings import AppConfig
    from photonic_chain.datastore.client import Datastore
    from photonic_chain.metrics.collector import ChainMetrics
    from photonic_chain.models import Balance
    from photonic_chain.network.electrum import ElectrumUtxo, TransportFactory
    from photonic_chain.network.manager import ConnectionManager
    from photonic_chain.store.utxo_store import UTXOStore
    from photonic_chain.sync.engine import ChainSyncEngine, SyncResult, TrackedScript
    from photonic_chain.tx.models import CandidateOutput, CoinSelection, SelectableInput

logger = logging.getLogger(__name__)

_ERR_NOT_INITIALIZED = "Client not initialized. Call initialize() first."


class ChainClient:
    """Owns every chain-side component of one wallet session.

    Usage::

        client = ChainClient(AppConfig.from_yaml("photonic.yaml"))
        await client.initialize()
        client.track(p2pkh_script_hex)
        await client.connect(["wss://electrumx.example:50022"], address)
        selection = await client.select_coins(outputs, change_script)
        await client.close()
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        """Initialize client with configuration.

        Args:
            config: Application configuration.
            transport_factory: Builds server connections; websocket by default.
        """
        self._config = config
        self._transport_factory = transport_factory
        self._initialized = False

        self._datastore: Datastore | None = None
        self._store: UTXOStore | None = None
        self._metrics: ChainMetrics | None = None
        self._connection: ConnectionManager | None = None
        self._sync: ChainSyncEngine | None = None

    async def initialize(self) -> None:
        """Open the cache database and start the sync engine.

        Raises:
            RuntimeError: If already initialized.
        """
        if self._initialized:
            msg = "Client already initialized"
            raise RuntimeError(msg)

        from photonic_chain.datastore.client import Datastore
        from photonic_chain.metrics.collector import ChainMetrics
        from photonic_chain.network.manager import ConnectionManager
        from photonic_chain.store.models import Base
        from photonic_chain.store.utxo_store import UTXOStore
        from photonic_chain.sync.engine import ChainSyncEngine

        self._datastore = Datastore(self._config.db)
        await self._datastore.open(base=Base)
        self._store = UTXOStore(self._datastore)

        if self._config.metrics.enabled:
            self._metrics = ChainMetrics()

        self._connection = ConnectionManager(
            self._config.electrum,
            transport_factory=self._transport_factory,
            metrics=self._metrics,
        )
        self._sync = ChainSyncEngine(
            self._connection,
            self._store,
            metrics=self._metrics,
            channel_size=self._config.sync.channel_size,
        )
        await self._sync.start()

        self._initialized = True
        logger.info("Chain client initialized (db=%s)", self._config.db.dsn)

    async def close(self) -> None:
        """Stop syncing, drop the connection and close the database.

        Can be called multiple times (idempotent).
        """
        if not self._initialized:
            return

        if self._sync is not None:
            await self._sync.stop()
            self._sync = None
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

        self._store = None
        self._metrics = None

        if self._datastore is not None:
            await self._datastore.close()
            self._datastore = None

        self._initialized = False

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def store(self) -> UTXOStore:
        if self._store is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._store

    @property
    def connection(self) -> ConnectionManager:
        if self._connection is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._connection

    @property
    def sync(self) -> ChainSyncEngine:
        if self._sync is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._sync

    @property
    def metrics(self) -> ChainMetrics | None:
        """Prometheus metrics, or ``None`` when disabled."""
        return self._metrics

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self, endpoints: Sequence[str], identity: str) -> None:
        """Point the client at *endpoints* and connect for *identity*.

        An unchanged server list keeps the current position so a live
        connection is not torn down.
        """
        endpoints = list(endpoints)
        if endpoints != self.connection.servers:
            self.connection.set_servers(endpoints)
        await self.connection.connect(identity)

    async def disconnect(self) -> None:
        await self.connection.disconnect("user")

    async def broadcast(self, raw_tx: str) -> str:
        """Broadcast *raw_tx* and remember its txid as self-originated.

        Raises:
            ValueError: *raw_tx* is not a well-formed transaction.
            NotConnected: No live server connection.
            ElectrumRequestError: The server rejected the transaction.
        """
        txid = Transaction.from_hex(raw_tx).txid()
        await self.store.record_broadcast(txid, raw_tx)
        reported = await self.connection.broadcast(raw_tx)
        if reported and reported != txid:
            logger.warning("Server reported txid %s for broadcast %s", reported, txid)
        return txid

    async def get_transaction(self, txid: str) -> str:
        return await self.connection.get_transaction(txid)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def track(
        self,
        script: str,
        contract_type: ContractType = ContractType.RXD,
        *,
        script_builder: Callable[[ElectrumUtxo], str | None] | None = None,
    ) -> TrackedScript:
        """Watch the locking script *script* (hex) and return its tracking entry."""
        from photonic_chain.sync.engine import TrackedScript

        tracked = TrackedScript(
            script_hash=hash_script(script),
            script=script,
            contract_type=contract_type,
            script_builder=script_builder,
        )
        self.sync.track(tracked)
        return tracked

    def subscribe(self, callback: Callable[[SyncResult], Awaitable[None]]) -> None:
        self.sync.subscribe(callback)

    async def manual_sync(self) -> list[SyncResult]:
        return await self.sync.manual_sync()

    # ------------------------------------------------------------------
    # Coins
    # ------------------------------------------------------------------

    async def selectable_inputs(
        self, contract_type: ContractType = ContractType.RXD
    ) -> list[SelectableInput]:
        return await self.store.selectable_inputs(contract_type)

    async def balance(
        self,
        *,
        script_hash: str | None = None,
        contract_type: ContractType | None = ContractType.RXD,
    ) -> Balance:
        return await self.store.balance(script_hash=script_hash, contract_type=contract_type)

    async def select_coins(
        self,
        outputs: Sequence[CandidateOutput],
        change_script: str,
        *,
        required_inputs: Sequence[SelectableInput] = (),
        available: Sequence[SelectableInput] | None = None,
        fee_rate: float | None = None,
    ) -> CoinSelection:
        """Select coins from the cache (or *available*) with the configured fee policy."""
        fees = self._config.fee
        if available is None:
            available = await self.selectable_inputs(ContractType.RXD)
        return select_coins(
            available,
            outputs,
            required_inputs,
            fees.default_rate if fee_rate is None else fee_rate,
            change_script,
            dust_multiplier=fees.dust_multiplier,
            max_fee=fees.max_fee,
        )

    @staticmethod
    def estimate_transaction_bytes(
        inputs: Sequence[SelectableInput], outputs: Sequence[CandidateOutput]
    ) -> int:
        return size.estimate_transaction_bytes(inputs, outputs)
