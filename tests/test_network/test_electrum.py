"""Tests for the ElectrumX websocket transport's message handling."""

from __future__ import annotations

import asyncio

import pytest

from photonic_chain.config.settings import ElectrumConfig
from photonic_chain.errors.definitions import ElectrumRequestError, NotConnected
from photonic_chain.network.electrum import ElectrumUtxo, ElectrumWSTransport, websocket_factory


@pytest.fixture
def received() -> list:
    return []


@pytest.fixture
def transport(received) -> ElectrumWSTransport:
    return ElectrumWSTransport(
        "wss://a.example",
        on_notification=lambda method, params: received.append((method, params)),
        on_close=lambda reason: received.append(("closed", reason)),
    )


def _pending(transport: ElectrumWSTransport, request_id: int) -> asyncio.Future:
    future = asyncio.get_running_loop().create_future()
    transport._pending[request_id] = future
    return future


class TestElectrumUtxo:
    def test_from_dict(self) -> None:
        utxo = ElectrumUtxo.from_dict(
            {"tx_hash": "aa" * 32, "tx_pos": "2", "value": 1500, "height": 812000}
        )
        assert utxo == ElectrumUtxo("aa" * 32, 2, 1500, 812000)

    def test_mempool_height_and_refs(self) -> None:
        utxo = ElectrumUtxo.from_dict(
            {
                "tx_hash": "bb" * 32,
                "tx_pos": 0,
                "value": 1,
                "height": None,
                "refs": [{"ref": "cc" * 36, "type": "normal"}],
            }
        )
        assert utxo.height == 0
        assert utxo.refs == ({"ref": "cc" * 36, "type": "normal"},)


class TestDispatch:
    async def test_result_resolves_request(self, transport) -> None:
        future = _pending(transport, 7)
        transport.dispatch({"jsonrpc": "2.0", "id": 7, "result": ["x"]})
        assert await future == ["x"]

    async def test_error_raises(self, transport) -> None:
        future = _pending(transport, 3)
        transport.dispatch({"id": 3, "error": {"code": 1, "message": "bad tx"}})

        with pytest.raises(ElectrumRequestError, match="bad tx") as exc_info:
            await future
        assert exc_info.value.rpc_code == 1

    async def test_batch(self, transport) -> None:
        first, second = _pending(transport, 1), _pending(transport, 2)
        transport.dispatch([{"id": 1, "result": 1}, {"id": 2, "result": 2}])
        assert (await first, await second) == (1, 2)

    async def test_unknown_id_ignored(self, transport) -> None:
        transport.dispatch({"id": 99, "result": None})

    def test_notification_forwarded(self, transport, received) -> None:
        transport.dispatch(
            {"jsonrpc": "2.0", "method": "blockchain.scripthash.subscribe", "params": ["ab", "st"]}
        )
        assert received == [("blockchain.scripthash.subscribe", ["ab", "st"])]

    def test_non_object_ignored(self, transport, received) -> None:
        transport.dispatch("hello")
        assert received == []

    async def test_fail_pending_on_close(self, transport) -> None:
        future = _pending(transport, 5)
        transport._fail_pending()
        with pytest.raises(NotConnected):
            await future


class TestLifecycle:
    async def test_request_before_open(self, transport) -> None:
        assert not transport.is_connected
        with pytest.raises(NotConnected):
            await transport.request("server.ping")

    async def test_close_before_open(self, transport, received) -> None:
        await transport.close("user")
        assert received == []

    def test_factory_uses_config(self, received) -> None:
        config = ElectrumConfig(request_timeout=3, heartbeat=9)
        factory = websocket_factory(config)
        built = factory("wss://b.example", on_notification=print, on_close=print)
        assert isinstance(built, ElectrumWSTransport)
        assert built.endpoint == "wss://b.example"
