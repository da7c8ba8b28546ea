"""Transport adapters used by the relay to talk to one connected socket."""

import logging
from typing import Awaitable, Protocol

from websockets.asyncio.server import ServerConnection
from websockets.protocol import State

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Minimal duplex socket surface the relay depends on."""

    @property
    def is_open(self) -> bool:
        ...

    async def send_text(self, payload: str) -> None:
        ...

    async def ping(self) -> Awaitable[float]:
        """Send a protocol-level ping; the returned future resolves on pong."""
        ...

    async def close(self, code: int = 1000) -> None:
        ...


class WebsocketsTransport:
    """Adapts a ``websockets`` server connection to the relay ``Transport``."""

    def __init__(self, connection: ServerConnection):
        self._ws = connection

    @property
    def is_open(self) -> bool:
        return self._ws.protocol.state is State.OPEN

    async def send_text(self, payload: str) -> None:
        await self._ws.send(payload)

    async def ping(self) -> Awaitable[float]:
        return await self._ws.ping()

    async def close(self, code: int = 1000) -> None:
        await self._ws.close(code=code)

    def __repr__(self) -> str:
        peer = self._ws.remote_address
        return f"WebsocketsTransport(peer={peer[0]}:{peer[1]})" if peer else "WebsocketsTransport()"
