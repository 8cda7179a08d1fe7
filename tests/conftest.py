"""Shared test fixtures for the photonic-chain test suite."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest

from photonic_chain.errors.definitions import NotConnected

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

# 25-byte pay-to-public-key-hash locking scripts
P2PKH_SCRIPT = "76a914" + "11" * 20 + "88ac"
CHANGE_SCRIPT = "76a914" + "22" * 20 + "88ac"


# ---------------------------------------------------------------------------
# Fake ElectrumX servers
# ---------------------------------------------------------------------------


class FakeTransport:
    """In-memory stand-in for one websocket connection."""

    def __init__(
        self,
        network: FakeNetwork,
        endpoint: str,
        on_notification: Callable[[str, list[Any]], None],
        on_close: Callable[[str], None],
    ) -> None:
        self.endpoint = endpoint
        self._network = network
        self._on_notification = on_notification
        self._on_close = on_close
        self.connected = False
        self.close_reason: str | None = None
        self._close_fired = False

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def open(self) -> None:
        if self.endpoint in self._network.hanging:
            await asyncio.Event().wait()
        if self.endpoint in self._network.unreachable:
            msg = f"cannot reach {self.endpoint}"
            raise ConnectionError(msg)
        self.connected = True

    async def request(self, method: str, *params: Any) -> Any:
        if not self.connected:
            raise NotConnected
        self._network.calls.append((method, params))
        handler = self._network.responses.get(method)
        result = handler(*params) if callable(handler) else handler
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self, reason: str = "") -> None:
        self.close_reason = reason
        self._fire_close(reason)

    def drop(self) -> None:
        """Simulate the server ending the connection."""
        self._fire_close("")

    def push(self, method: str, params: list[Any]) -> None:
        self._on_notification(method, params)

    def _fire_close(self, reason: str) -> None:
        self.connected = False
        if not self._close_fired:
            self._close_fired = True
            self._on_close(reason)


class FakeNetwork:
    """Transport factory recording every connection it hands out.

    ``hanging`` endpoints never finish opening; ``unreachable`` ones fail.
    ``responses`` maps a method to a result, an exception or a callable.
    """

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []
        self.hanging: set[str] = set()
        self.unreachable: set[str] = set()
        self.responses: dict[str, Any] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def __call__(
        self,
        endpoint: str,
        *,
        on_notification: Callable[[str, list[Any]], None],
        on_close: Callable[[str], None],
    ) -> FakeTransport:
        transport = FakeTransport(self, endpoint, on_notification, on_close)
        self.transports.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]

    def endpoints(self) -> list[str]:
        return [t.endpoint for t in self.transports]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.005)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def app_config():
    """Provide a test AppConfig with an in-memory database and fast timers."""
    from photonic_chain.config.settings import AppConfig, DatabaseConfig, ElectrumConfig

    return AppConfig(
        debug=True,
        db=DatabaseConfig(dsn="sqlite+aiosqlite:///:memory:"),
        electrum=ElectrumConfig(
            servers=["wss://a.example", "wss://b.example"],
            failover_timeout=0.05,
            reconnect_delay=0.05,
            pause_duration=0.05,
        ),
    )


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
async def datastore(app_config) -> AsyncIterator:
    """Open an in-memory datastore with all tables created."""
    from photonic_chain.datastore.client import Datastore
    from photonic_chain.store.models import Base

    ds = Datastore(app_config.db)
    await ds.open(base=Base)
    yield ds
    await ds.close()


@pytest.fixture
def store(datastore):
    from photonic_chain.store.utxo_store import UTXOStore

    return UTXOStore(datastore)
