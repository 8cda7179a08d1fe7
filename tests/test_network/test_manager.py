"""Tests for the connection manager's failover state machine."""

from __future__ import annotations

import asyncio

import pytest

from conftest import wait_until
from photonic_chain.config.settings import ElectrumConfig
from photonic_chain.errors.definitions import NotConnected
from photonic_chain.metrics.collector import ChainMetrics
from photonic_chain.network.electrum import ElectrumUtxo
from photonic_chain.network.manager import (
    ConnectionEvent,
    ConnectionManager,
    ConnectionState,
    ScriptStatusEvent,
)

A, B, C = "wss://a.example", "wss://b.example", "wss://c.example"


def _drain(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.fixture
def electrum_config(app_config) -> ElectrumConfig:
    return app_config.electrum


@pytest.fixture
async def manager(electrum_config, network):
    mgr = ConnectionManager(electrum_config, transport_factory=network, metrics=ChainMetrics())
    yield mgr
    await mgr.close()


async def _connected(manager: ConnectionManager, identity: str = "addr-1") -> None:
    await manager.connect(identity)
    await wait_until(lambda: manager.state == ConnectionState.CONNECTED)


class TestConnect:
    async def test_connects_first_server(self, manager, network) -> None:
        events = manager.add_subscriber("test")
        await _connected(manager)

        assert manager.endpoint == A
        assert manager.is_connected
        assert manager.attempts == 0
        assert manager.pending_timers() == set()
        states = [e.state for e in _drain(events)]
        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]

    async def test_repeat_connect_is_noop(self, manager, network) -> None:
        await _connected(manager)
        await manager.connect("addr-1")
        assert len(network.transports) == 1

    async def test_new_identity_reconnects(self, manager, network) -> None:
        await _connected(manager)
        first = network.current
        await _connected(manager, "addr-2")

        assert len(network.transports) == 2
        assert first.close_reason == ""
        assert manager.identity == "addr-2"

    async def test_no_servers(self, electrum_config, network) -> None:
        mgr = ConnectionManager(electrum_config, transport_factory=network)
        mgr.set_servers([])
        with pytest.raises(ValueError, match="No ElectrumX servers"):
            await mgr.connect("addr")

    async def test_set_servers_resets_position(self, manager) -> None:
        manager.set_servers([C, A])
        assert manager.endpoint == C
        assert manager.servers == [C, A]


class TestFailover:
    async def test_slow_server_skipped(self, manager, network) -> None:
        network.hanging.add(A)
        await _connected(manager)

        assert manager.endpoint == B
        assert network.endpoints() == [A, B]
        assert manager.attempts == 0

    async def test_refused_server_skipped_on_timer(self, manager, network) -> None:
        network.unreachable.add(A)
        events = manager.add_subscriber("test")
        await _connected(manager)

        assert manager.endpoint == B
        errors = [e for e in _drain(events) if isinstance(e, ConnectionEvent) and e.error]
        assert errors
        assert errors[0].server == A

    async def test_pause_after_two_rounds(self, electrum_config, network) -> None:
        config = electrum_config.model_copy(update={"failover_timeout": 60, "pause_duration": 60})
        metrics = ChainMetrics()
        mgr = ConnectionManager(config, transport_factory=network, metrics=metrics)
        network.hanging.update({A, B})
        try:
            await mgr.connect("addr")
            for expected in (1, 2, 3):
                await mgr.try_next_server()
                assert mgr.attempts == expected
                assert mgr.state == ConnectionState.CONNECTING

            await mgr.try_next_server()

            assert mgr.state == ConnectionState.PAUSED
            assert mgr.pending_timers() == {"pause"}
            assert network.endpoints() == [A, B, A, B]
            assert metrics.registry.get_sample_value("photonic_pause_total") == 1
            assert metrics.registry.get_sample_value("photonic_failover_total") == 4
        finally:
            await mgr.close()

    async def test_resumes_after_pause_and_resets(self, manager, network) -> None:
        network.hanging.update({A, B})
        events = manager.add_subscriber("test", buffer=1024)
        await manager.connect("addr")
        await wait_until(lambda: manager.state == ConnectionState.PAUSED)

        network.hanging.clear()
        await wait_until(lambda: manager.state == ConnectionState.CONNECTED)

        assert manager.attempts == 0
        assert any(
            isinstance(e, ConnectionEvent) and e.reason == "all_servers_failed"
            for e in _drain(events)
        )

    async def test_single_server_retries_itself(self, manager, network) -> None:
        manager.set_servers([A])
        network.hanging.add(A)
        await manager.connect("addr")
        await wait_until(lambda: len(network.transports) >= 2)

        network.hanging.clear()
        await wait_until(lambda: manager.state == ConnectionState.CONNECTED)
        assert set(network.endpoints()) == {A}


class TestClose:
    async def test_unexpected_close_moves_on(self, manager, network) -> None:
        await _connected(manager)
        network.current.drop()

        assert manager.state == ConnectionState.DISCONNECTED
        assert "reconnect" in manager.pending_timers()
        await wait_until(lambda: manager.state == ConnectionState.CONNECTED)
        assert manager.endpoint == B

    async def test_user_disconnect_stays_down(self, manager, network) -> None:
        events = manager.add_subscriber("test")
        await _connected(manager)
        await manager.disconnect()
        await asyncio.sleep(0.15)

        assert manager.state == ConnectionState.DISCONNECTED
        assert manager.pending_timers() == set()
        assert len(network.transports) == 1
        assert network.current.close_reason == "user"
        last = _drain(events)[-1]
        assert last == ConnectionEvent(ConnectionState.DISCONNECTED, server=A, reason="user")

    async def test_superseded_socket_close_ignored(self, manager, network) -> None:
        await _connected(manager)
        old = network.current
        await manager.try_next_server()
        old.drop()

        assert manager.state == ConnectionState.CONNECTING
        assert "reconnect" not in manager.pending_timers()
        await wait_until(lambda: manager.state == ConnectionState.CONNECTED)
        assert manager.endpoint == B


class TestEvents:
    async def test_status_push_published(self, manager, network) -> None:
        events = manager.add_subscriber("test")
        await _connected(manager)
        _drain(events)

        network.current.push("blockchain.scripthash.subscribe", ["ab" * 32, "st"])
        network.current.push("blockchain.headers.subscribe", [{"height": 1}])

        assert _drain(events) == [ScriptStatusEvent("ab" * 32, "st")]

    async def test_full_queue_drops(self, manager, network) -> None:
        events = manager.add_subscriber("tiny", buffer=1)
        await _connected(manager)
        assert events.qsize() == 1

    async def test_removed_subscriber(self, manager) -> None:
        events = manager.add_subscriber("gone")
        manager.remove_subscriber("gone")
        await _connected(manager)
        assert events.empty()


class TestRequests:
    async def test_not_connected(self, manager) -> None:
        with pytest.raises(NotConnected):
            await manager.request("server.ping")

    async def test_list_unspent(self, manager, network) -> None:
        network.responses["blockchain.scripthash.listunspent"] = [
            {"tx_hash": "aa" * 32, "tx_pos": 1, "value": 500, "height": 0},
        ]
        await _connected(manager)

        utxos = await manager.list_unspent("ab" * 32)

        assert utxos == [ElectrumUtxo("aa" * 32, 1, 500, 0)]
        assert network.calls == [("blockchain.scripthash.listunspent", ("ab" * 32,))]

    async def test_remote_calls(self, manager, network) -> None:
        network.responses.update(
            {
                "blockchain.scripthash.subscribe": "status-token",
                "blockchain.transaction.broadcast": lambda raw: "cd" * 32,
                "blockchain.transaction.get": "0100",
            }
        )
        await _connected(manager)

        assert await manager.subscribe_script("ab" * 32) == "status-token"
        assert await manager.broadcast("0100") == "cd" * 32
        assert await manager.get_transaction("cd" * 32) == "0100"
