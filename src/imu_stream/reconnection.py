"""Client-side connection lifecycle with automatic reconnect.

State machine::

    connecting -> open -> closed -> (reconnect delay) -> connecting ...

The loop ends only when the owner calls ``stop()``. A failed connect
attempt counts as a close. Malformed frames are reported through the
error callback and never close the socket. Heartbeat pings from the
relay are protocol-level frames answered by the ``websockets`` library.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol

import websockets

from src.imu_stream.config import ConnectionPhase, StreamConfig
from src.imu_stream.exceptions import PacketDecodeError, TransportError
from src.imu_stream.models import Packet, load_frame

logger = logging.getLogger(__name__)


class ClientTransport(Protocol):
    """The subset of a ``websockets`` client connection the manager uses."""

    def __aiter__(self) -> AsyncIterator[Any]:
        ...

    async def close(self) -> None:
        ...


Connector = Callable[[], Awaitable[ClientTransport]]


class ReconnectionManager:
    """Keeps one subscriber socket to the relay open until stopped.

    Args:
        config: Stream configuration (URL and reconnect delay).
        on_packet: Called with every decoded Packet, in arrival order.
        on_open: Called each time a socket opens.
        on_close: Called each time a socket closes or a connect fails.
        on_error: Called with a user-facing error string.
        connector: Coroutine factory returning an open transport.
            Defaults to ``websockets.connect(config.websocket_url)``.
        sleep: Delay coroutine, injectable for tests.
    """

    def __init__(
        self,
        config: Optional[StreamConfig] = None,
        on_packet: Optional[Callable[[Packet], None]] = None,
        on_open: Optional[Callable[[], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        connector: Optional[Connector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or StreamConfig()
        self._on_packet = on_packet or (lambda packet: None)
        self._on_open = on_open or (lambda: None)
        self._on_close = on_close or (lambda: None)
        self._on_error = on_error or (lambda message: None)
        self._connector = connector or self._default_connector
        self._sleep = sleep

        self._state = ConnectionPhase.IDLE
        self._stopped = False
        self._task: Optional[asyncio.Task] = None
        self._transport: Optional[ClientTransport] = None
        self._attempts = 0
        self._last_error: Optional[str] = None

    async def _default_connector(self) -> ClientTransport:
        return await websockets.connect(self.config.websocket_url)

    # ── Status ───────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionPhase:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionPhase.OPEN

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def attempts(self) -> int:
        """Connect attempts made so far, the first one included."""
        return self._attempts

    @property
    def reconnects(self) -> int:
        return max(self._attempts - 1, 0)

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        """Begin connecting. A second call while running is a no-op."""
        if self._task is not None and not self._task.done():
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop for good: cancel any pending reconnect and close the socket."""
        self._stopped = True
        task, self._task = self._task, None
        transport = self._transport
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if transport is not None:
            await self._close_transport(transport)
        self._state = ConnectionPhase.STOPPED
        logger.info("Stream client stopped after %d connect attempt(s)", self._attempts)

    async def _run(self) -> None:
        while not self._stopped:
            await self._connect_once()
            if self._stopped:
                break
            logger.info(
                "Reconnecting in %.1fs (attempt %d)",
                self.config.reconnect_delay_seconds,
                self._attempts + 1,
            )
            await self._sleep(self.config.reconnect_delay_seconds)

    async def _connect_once(self) -> None:
        self._state = ConnectionPhase.CONNECTING
        self._attempts += 1
        try:
            transport = await self._connector()
        except Exception as e:
            logger.warning("Connect to %s failed: %s", self.config.websocket_url, e)
            self._report_error(TransportError(cause=e).message)
            self._state = ConnectionPhase.CLOSED
            self._on_close()
            return

        self._transport = transport
        self._state = ConnectionPhase.OPEN
        self._last_error = None
        logger.info("Connected to %s", self.config.websocket_url)
        self._on_open()
        try:
            await self._pump(transport)
        except Exception as e:
            logger.warning("Connection dropped: %s", e)
            self._report_error(TransportError(cause=e).message)
        finally:
            self._transport = None
            await self._close_transport(transport)
            self._state = ConnectionPhase.CLOSED
            self._on_close()

    async def _pump(self, transport: ClientTransport) -> None:
        async for raw in transport:
            try:
                frame = load_frame(raw)
            except PacketDecodeError as e:
                logger.debug("Dropping malformed frame: %r", e.raw)
                self._report_error(e.message)
                continue

            self._on_packet(Packet.from_dict(frame))

    async def _close_transport(self, transport: ClientTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.debug("Transport close raised: %s", e)

    def _report_error(self, message: str) -> None:
        self._last_error = message
        try:
            self._on_error(message)
        except Exception as e:
            logger.error("Error callback failed: %s", e)
