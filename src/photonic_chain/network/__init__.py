"""ElectrumX connectivity — websocket transport and failover manager."""

from photonic_chain.network.electrum import ElectrumUtxo, ElectrumWSTransport, websocket_factory
from photonic_chain.network.manager import (
    ConnectionEvent,
    ConnectionManager,
    ConnectionState,
    ScriptStatusEvent,
)

__all__ = [
    "ConnectionEvent",
    "ConnectionManager",
    "ConnectionState",
    "ElectrumUtxo",
    "ElectrumWSTransport",
    "ScriptStatusEvent",
    "websocket_factory",
]
