"""WebSocket broadcast relay with heartbeat-based dead-connection reaping."""

from .config import RelayConfig
from .registry import Connection, ConnectionRegistry
from .transport import Transport, WebsocketsTransport
from .broadcaster import BroadcastRelay
from .server import RelayServer

__all__ = [
    # Config
    "RelayConfig",
    # Registry
    "Connection",
    "ConnectionRegistry",
    # Transport
    "Transport",
    "WebsocketsTransport",
    # Relay
    "BroadcastRelay",
    "RelayServer",
]
