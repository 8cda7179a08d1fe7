"""Connection manager — one live ElectrumX connection with failover.

States::

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED
                        |
                        +--(pause_after_rounds x servers failovers)--> PAUSED

A failover timer moves to the next server when CONNECTING takes longer than
``failover_timeout``. An unexpected close (no reason) schedules a move after
``reconnect_delay``; a close with a reason (``"user"``) leaves the manager at
rest. Lifecycle and script status events fan out one way to bounded queues.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from photonic_chain.errors.definitions import NotConnected
from photonic_chain.network.electrum import ElectrumUtxo, websocket_factory

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from photonic_chain.config.settings import ElectrumConfig
    from photonic_chain.metrics.collector import ChainMetrics
    from photonic_chain.network.electrum import ElectrumTransport, TransportFactory

logger = logging.getLogger(__name__)

_SUBSCRIBE_METHOD = "blockchain.scripthash.subscribe"
_DEFAULT_BUFFER = 256


class ConnectionState(enum.StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    PAUSED = "paused"


@dataclass(frozen=True)
class ConnectionEvent:
    """Connection lifecycle change (or a failed attempt when ``error`` is set)."""

    state: ConnectionState
    server: str = ""
    reason: str = ""
    error: str = ""


@dataclass(frozen=True)
class ScriptStatusEvent:
    """Server push: the history status of a subscribed script changed."""

    script_hash: str
    status: str | None


ChainEvent = ConnectionEvent | ScriptStatusEvent


class ConnectionManager:
    """Owns the single server connection of a wallet session.

    Usage::

        manager = ConnectionManager(config.electrum)
        events = manager.add_subscriber("ui")
        manager.set_servers(["wss://a", "wss://b"])
        await manager.connect(address)
        ...
        await manager.close()
    """

    def __init__(
        self,
        config: ElectrumConfig,
        *,
        transport_factory: TransportFactory | None = None,
        metrics: ChainMetrics | None = None,
    ) -> None:
        self._config = config
        self._factory = transport_factory or websocket_factory(config)
        self._metrics = metrics
        self._servers: list[str] = list(config.servers)
        self._index = 0
        self._attempts = 0
        self._identity = ""
        self._state = ConnectionState.DISCONNECTED
        self._transport: ElectrumTransport | None = None
        self._open_task: asyncio.Task[None] | None = None
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._subscribers: dict[str, asyncio.Queue[ChainEvent]] = {}

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def servers(self) -> list[str]:
        return list(self._servers)

    @property
    def endpoint(self) -> str | None:
        """The server currently selected, connected or not."""
        if not self._servers:
            return None
        return self._servers[self._index]

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def attempts(self) -> int:
        """Failovers since the last successful connection or pause."""
        return self._attempts

    @property
    def is_connected(self) -> bool:
        return (
            self._state == ConnectionState.CONNECTED
            and self._transport is not None
            and self._transport.is_connected
        )

    def pending_timers(self) -> set[str]:
        """Kinds of timers currently armed."""
        return {kind for kind, task in self._timers.items() if not task.done()}

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def add_subscriber(self, key: str, *, buffer: int = _DEFAULT_BUFFER) -> asyncio.Queue[ChainEvent]:
        """Register a subscriber and return its event queue."""
        q: asyncio.Queue[ChainEvent] = asyncio.Queue(maxsize=buffer)
        self._subscribers[key] = q
        return q

    def remove_subscriber(self, key: str) -> None:
        self._subscribers.pop(key, None)

    def _publish(self, event: ChainEvent) -> None:
        for key, q in self._subscribers.items():
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Subscriber %s queue full — dropping %s", key, event)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def set_servers(self, servers: list[str]) -> None:
        """Replace the server list and start again from its first entry."""
        self._servers = list(servers)
        self._index = 0
        logger.debug("Server list set: %s", self._servers)

    async def connect(self, identity: str) -> None:
        """Connect to the current server for *identity*.

        A no-op when already connecting or connected to the same server for
        the same identity.

        Raises:
            ValueError: No servers configured.
        """
        if not self._servers:
            msg = "No ElectrumX servers configured"
            raise ValueError(msg)
        if (
            self._transport is not None
            and self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED)
            and self._transport.endpoint == self.endpoint
            and identity == self._identity
        ):
            logger.debug("Already on %s for %s, skipping connect", self.endpoint, identity)
            return
        self._identity = identity
        await self._open_current()

    async def disconnect(self, reason: str = "user") -> None:
        """Close the connection deliberately; no reconnect is scheduled."""
        self._clear_timers()
        server = self.endpoint or ""
        await self._teardown(reason)
        self._set_state(ConnectionState.DISCONNECTED)
        self._publish(ConnectionEvent(ConnectionState.DISCONNECTED, server=server, reason=reason))

    async def close(self) -> None:
        """Shut down: cancel timers and drop the connection without events."""
        self._clear_timers()
        await self._teardown("shutdown")
        self._set_state(ConnectionState.DISCONNECTED)

    async def try_next_server(self) -> None:
        """Advance to the next server, or pause once every server failed repeatedly."""
        self._attempts += 1
        total = max(1, len(self._servers))
        self._index = (self._index + 1) % total
        if self._metrics:
            self._metrics.record_failover()

        if self._attempts >= self._config.pause_after_rounds * total:
            logger.warning(
                "Tried all %d servers %d times, pausing for %.0fs",
                total,
                self._attempts // total,
                self._config.pause_duration,
            )
            self._clear_timers()
            await self._teardown("")
            self._set_state(ConnectionState.PAUSED)
            if self._metrics:
                self._metrics.record_pause()
            self._publish(
                ConnectionEvent(ConnectionState.PAUSED, server="", reason="all_servers_failed")
            )
            self._arm("pause", self._config.pause_duration, self._resume)
            return

        logger.info("Trying next server (attempt %d): %s", self._attempts, self.endpoint)
        await self._open_current()

    async def _resume(self) -> None:
        self._attempts = 0
        await self._open_current()

    async def _open_current(self) -> None:
        """Tear down any connection and start opening the current server."""
        self._clear_timers()
        await self._teardown("")
        endpoint = self._servers[self._index]
        self._set_state(ConnectionState.CONNECTING)
        self._publish(ConnectionEvent(ConnectionState.CONNECTING, server=endpoint))
        logger.info("Connecting to %s", endpoint)

        transport: ElectrumTransport | None = None

        def on_close(reason: str) -> None:
            self._on_close(transport, reason)

        try:
            transport = self._factory(
                endpoint,
                on_notification=self._on_notification,
                on_close=on_close,
            )
        except Exception:
            logger.exception("Could not create transport for %s", endpoint)
            await self.try_next_server()
            return

        self._transport = transport
        self._open_task = asyncio.create_task(self._open(transport))
        self._arm("failover", self._config.failover_timeout, self.try_next_server)

    async def _open(self, transport: ElectrumTransport) -> None:
        try:
            await transport.open()
        except Exception as exc:  # noqa: BLE001
            if transport is self._transport:
                logger.warning("Connection to %s failed: %s", transport.endpoint, exc)
                self._publish(
                    ConnectionEvent(
                        ConnectionState.CONNECTING, server=transport.endpoint, error=str(exc)
                    )
                )
            return
        if transport is not self._transport:
            await transport.close("superseded")
            return
        self._on_connected(transport)

    def _on_connected(self, transport: ElectrumTransport) -> None:
        self._clear_timers()
        self._attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected to %s", transport.endpoint)
        self._publish(ConnectionEvent(ConnectionState.CONNECTED, server=transport.endpoint))

    def _on_close(self, transport: ElectrumTransport | None, reason: str) -> None:
        # Superseded or detached sockets report nothing.
        if transport is None or transport is not self._transport:
            return
        self._transport = None
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Connection to %s closed (reason=%r)", transport.endpoint, reason)
        self._publish(
            ConnectionEvent(ConnectionState.DISCONNECTED, server=transport.endpoint, reason=reason)
        )
        if not reason:
            self._arm("reconnect", self._config.reconnect_delay, self.try_next_server)

    def _on_notification(self, method: str, params: list[Any]) -> None:
        if method == _SUBSCRIBE_METHOD and len(params) >= 2:
            self._publish(ScriptStatusEvent(script_hash=params[0], status=params[1]))
        else:
            logger.debug("Ignoring notification %s", method)

    async def _teardown(self, reason: str) -> None:
        transport, self._transport = self._transport, None
        open_task, self._open_task = self._open_task, None
        if open_task is not None and not open_task.done() and open_task is not asyncio.current_task():
            open_task.cancel()
            await asyncio.gather(open_task, return_exceptions=True)
        if transport is not None:
            try:
                await transport.close(reason)
            except Exception:
                logger.exception("Error closing connection to %s", transport.endpoint)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        if self._metrics:
            self._metrics.set_connected(state == ConnectionState.CONNECTED)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _arm(self, kind: str, delay: float, action: Callable[[], Awaitable[None]]) -> None:
        self._cancel_timer(kind)
        self._timers[kind] = asyncio.create_task(self._fire(kind, delay, action))

    async def _fire(self, kind: str, delay: float, action: Callable[[], Awaitable[None]]) -> None:
        await asyncio.sleep(delay)
        # Detach before acting so the action may re-arm or clear timers freely.
        if self._timers.get(kind) is asyncio.current_task():
            del self._timers[kind]
        try:
            await action()
        except Exception:
            logger.exception("%s timer action failed", kind)

    def _cancel_timer(self, kind: str) -> None:
        task = self._timers.pop(kind, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _clear_timers(self) -> None:
        for kind in list(self._timers):
            self._cancel_timer(kind)

    # ------------------------------------------------------------------
    # Remote calls
    # ------------------------------------------------------------------

    async def request(self, method: str, *params: Any) -> Any:
        """Forward a JSON-RPC call to the live connection.

        Raises:
            NotConnected: No live connection.
        """
        transport = self._transport
        if transport is None or not self.is_connected:
            raise NotConnected
        return await transport.request(method, *params)

    async def broadcast(self, raw_tx: str) -> str:
        """Broadcast a signed transaction; returns the txid reported by the server."""
        result = await self.request("blockchain.transaction.broadcast", raw_tx)
        logger.info("Broadcast result: %s", result)
        return str(result)

    async def list_unspent(self, script_hash: str) -> list[ElectrumUtxo]:
        items = await self.request("blockchain.scripthash.listunspent", script_hash)
        return [ElectrumUtxo.from_dict(item) for item in items or []]

    async def subscribe_script(self, script_hash: str) -> str | None:
        """Subscribe to status pushes for *script_hash*; returns the current status."""
        return await self.request(_SUBSCRIBE_METHOD, script_hash)

    async def get_transaction(self, txid: str) -> str:
        """Raw transaction hex by txid."""
        return str(await self.request("blockchain.transaction.get", txid))
