"""Connection Context Management.

Context variables for binding the connection ID (and any extra
key/value pairs) of the WebSocket being handled to log entries.
"""

from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


_connection_id_var: ContextVar[str] = ContextVar("connection_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    conn_id = _connection_id_var.get()
    if conn_id:
        ctx["connection_id"] = conn_id
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class ConnectionContext:
    """Context manager for connection-scoped logging context.

    Each WebSocket handler runs in its own asyncio task, so values bound
    here only show up on log lines emitted by that connection's handler.

    Example:
        with ConnectionContext(connection_id="a1b2c3"):
            logger.info("frame received")  # includes connection_id
    """

    connection_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list = field(default_factory=list, repr=False)

    def __enter__(self) -> "ConnectionContext":
        self._tokens = [
            _connection_id_var.set(self.connection_id),
            _extra_context_var.set(self.extra.copy()),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _connection_id_var.set("")
        _extra_context_var.set({})
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the connection context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get()
        updated = {**current, **kwargs}
        _extra_context_var.set(updated)
        self.extra.update(kwargs)
