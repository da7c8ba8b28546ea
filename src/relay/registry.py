"""Connection registry for tracking relay WebSocket connections."""

import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .transport import Transport

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class Connection:
    """A registered subscriber socket and its liveness state."""

    transport: Transport
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    is_alive: bool = True
    last_pong_at: float = field(default_factory=_now_ms)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    messages_sent: int = 0
    send_failures: int = 0

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "is_alive": self.is_alive,
            "last_pong_at": self.last_pong_at,
            "connected_at": self.connected_at.isoformat(),
            "messages_sent": self.messages_sent,
            "send_failures": self.send_failures,
        }


class ConnectionRegistry:
    """Registry of the connections currently attached to one relay.

    All access happens on the relay's event loop, so there is no lock.
    Iteration goes through ``for_each_live``, which walks a snapshot and
    re-checks membership before each visit; callbacks may therefore
    register or unregister connections (including the one being visited)
    without entries being skipped or visited twice.
    """

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def register(self, transport: Transport) -> str:
        """Register a transport and return its new connection id."""
        conn = Connection(transport=transport)
        self._connections[conn.connection_id] = conn
        logger.info(
            "Registered connection %s (%d live)",
            conn.connection_id,
            len(self._connections),
        )
        return conn.connection_id

    def unregister(self, connection_id: str) -> bool:
        """Remove a connection. Returns False for an unknown id."""
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return False
        logger.info(
            "Unregistered connection %s (%d live)",
            connection_id,
            len(self._connections),
        )
        return True

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def mark_alive(self, connection_id: str) -> None:
        """Record a liveness response for a connection."""
        conn = self._connections.get(connection_id)
        if conn:
            conn.is_alive = True
            conn.last_pong_at = _now_ms()

    def mark_pending(self, connection_id: str) -> None:
        """Clear the liveness flag ahead of a ping."""
        conn = self._connections.get(connection_id)
        if conn:
            conn.is_alive = False

    async def for_each_live(self, fn: Callable[[Connection], Any]) -> int:
        """Call *fn* once for every registered connection.

        *fn* may be a plain function or a coroutine function. Connections
        added while iterating are not visited; connections removed while
        iterating are skipped. Returns the number of connections visited.
        """
        visited = 0
        for conn in list(self._connections.values()):
            if self._connections.get(conn.connection_id) is not conn:
                continue
            result = fn(conn)
            if inspect.isawaitable(result):
                await result
            visited += 1
        return visited

    def connections(self) -> List[Connection]:
        """Snapshot of the registered connections."""
        return list(self._connections.values())

    @property
    def count(self) -> int:
        return len(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def get_stats(self) -> dict:
        alive = sum(1 for c in self._connections.values() if c.is_alive)
        return {
            "total_connections": len(self._connections),
            "alive": alive,
            "pending": len(self._connections) - alive,
        }

    def reset(self) -> None:
        """Forget every connection without closing it."""
        self._connections.clear()
