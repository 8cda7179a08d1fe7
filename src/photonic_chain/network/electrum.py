"""ElectrumX JSON-RPC 2.0 over websocket.

The transport owns one aiohttp websocket:
- ``request`` sends a call and waits for the response with the same id
- a listener task resolves pending calls and forwards server pushes
  (``blockchain.scripthash.subscribe`` notifications) to ``on_notification``
- ``on_close(reason)`` fires once when the socket ends; *reason* is empty
  unless the socket was closed locally with one
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import aiohttp

from photonic_chain.errors.definitions import ElectrumRequestError, NotConnected

if TYPE_CHECKING:
    from collections.abc import Callable

    from photonic_chain.config.settings import ElectrumConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ElectrumUtxo:
    """One entry of ``blockchain.scripthash.listunspent``."""

    tx_hash: str
    tx_pos: int
    value: int
    height: int  # 0 or -1 while unconfirmed
    refs: tuple[dict[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ElectrumUtxo:
        return cls(
            tx_hash=data["tx_hash"],
            tx_pos=int(data["tx_pos"]),
            value=int(data["value"]),
            height=int(data.get("height") or 0),
            refs=tuple(data.get("refs") or ()),
        )


# ---------------------------------------------------------------------------
# Transport interface
# ---------------------------------------------------------------------------


class ElectrumTransport(Protocol):
    """What the connection manager needs from a server connection."""

    endpoint: str

    @property
    def is_connected(self) -> bool: ...

    async def open(self) -> None: ...

    async def request(self, method: str, *params: Any) -> Any: ...

    async def close(self, reason: str = "") -> None: ...


class TransportFactory(Protocol):
    def __call__(
        self,
        endpoint: str,
        *,
        on_notification: Callable[[str, list[Any]], None],
        on_close: Callable[[str], None],
    ) -> ElectrumTransport: ...


# ---------------------------------------------------------------------------
# Websocket implementation
# ---------------------------------------------------------------------------


class ElectrumWSTransport:
    """JSON-RPC client for one ElectrumX websocket endpoint.

    Usage::

        ws = ElectrumWSTransport(url, on_notification=..., on_close=...)
        await ws.open()
        utxos = await ws.request("blockchain.scripthash.listunspent", sh)
        await ws.close("user")
    """

    def __init__(
        self,
        endpoint: str,
        *,
        on_notification: Callable[[str, list[Any]], None],
        on_close: Callable[[str], None],
        request_timeout: float = 30.0,
        heartbeat: float = 30.0,
        max_message_size: int = 50 * 1000 * 1000,
    ) -> None:
        self.endpoint = endpoint
        self._on_notification = on_notification
        self._on_close = on_close
        self._request_timeout = request_timeout
        self._heartbeat = heartbeat
        self._max_message_size = max_message_size
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._listener: asyncio.Task[None] | None = None
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._ids = itertools.count(1)
        self._close_reason = ""
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def open(self) -> None:
        """Open the websocket and start the listener task."""
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(
                self.endpoint,
                autoclose=True,
                autoping=True,
                heartbeat=self._heartbeat,
                max_msg_size=self._max_message_size,
            )
        except Exception:
            await self._release()
            raise
        self._listener = asyncio.create_task(self._listen())

    async def request(self, method: str, *params: Any) -> Any:
        """Call *method* and return its ``result``.

        Raises:
            NotConnected: The socket is not open.
            ElectrumRequestError: The server returned an error or no answer in time.
        """
        if self._ws is None or self._ws.closed:
            raise NotConnected
        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        payload = {"jsonrpc": "2.0", "method": method, "params": list(params), "id": request_id}
        try:
            await self._ws.send_str(json.dumps(payload))
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise NotConnected(f"send to {self.endpoint} failed: {exc}") from exc
        except TimeoutError:
            msg = f"No response from {self.endpoint} for {method}"
            raise ElectrumRequestError(msg, method=method) from None
        finally:
            self._pending.pop(request_id, None)

    async def close(self, reason: str = "") -> None:
        """Close the socket; ``on_close`` receives *reason*."""
        self._close_reason = reason
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._listener is not None and self._listener is not asyncio.current_task():
            await asyncio.gather(self._listener, return_exceptions=True)
        elif self._listener is None:
            await self._release()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _listen(self) -> None:
        ws = self._ws
        if ws is None:
            raise TypeError("Websocket is None in listener")
        try:
            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    try:
                        self.dispatch(json.loads(message.data))
                    except ValueError:
                        logger.warning("Malformed message from %s", self.endpoint)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("Websocket error from %s: %s", self.endpoint, ws.exception())
                    break
        finally:
            await self._release()
            self._fail_pending()
            if not self._closed:
                self._closed = True
                self._on_close(self._close_reason)

    def dispatch(self, message: Any) -> None:
        """Route one decoded frame: a response, a batch, or a server push."""
        if isinstance(message, list):
            for item in message:
                self.dispatch(item)
            return
        if not isinstance(message, dict):
            logger.warning("Ignoring non-object message from %s", self.endpoint)
            return

        request_id = message.get("id")
        if request_id is not None:
            future = self._pending.get(request_id)
            if future is None or future.done():
                logger.debug("Response for unknown request id %s", request_id)
                return
            error = message.get("error")
            if error:
                if isinstance(error, dict):
                    future.set_exception(
                        ElectrumRequestError(
                            str(error.get("message", error)), rpc_code=error.get("code")
                        )
                    )
                else:
                    future.set_exception(ElectrumRequestError(str(error)))
            else:
                future.set_result(message.get("result"))
        elif "method" in message:
            self._on_notification(message["method"], list(message.get("params") or []))

    def _fail_pending(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(NotConnected(f"connection to {self.endpoint} closed"))
        self._pending.clear()

    async def _release(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._session is not None:
            await self._session.close()
            self._session = None


def websocket_factory(config: ElectrumConfig) -> TransportFactory:
    """Build a :class:`TransportFactory` producing :class:`ElectrumWSTransport`."""

    def factory(
        endpoint: str,
        *,
        on_notification: Callable[[str, list[Any]], None],
        on_close: Callable[[str], None],
    ) -> ElectrumTransport:
        return ElectrumWSTransport(
            endpoint,
            on_notification=on_notification,
            on_close=on_close,
            request_timeout=config.request_timeout,
            heartbeat=config.heartbeat,
            max_message_size=config.max_message_size,
        )

    return factory
