"""Broadcast relay: fans every inbound frame out to the other connections.

The relay owns a ``ConnectionRegistry`` and a heartbeat task. Each cycle
of the heartbeat reaps connections that did not answer the previous ping
and pings the rest, so a half-open socket holds a registry slot for at
most two heartbeat intervals.

Example::

    relay = BroadcastRelay(RelayConfig(heartbeat_interval_seconds=30))
    relay.start()
    conn_id = relay.connect(transport)
    await relay.on_message(conn_id, raw_frame)
    ...
    await relay.stop()
"""

import asyncio
import logging
from typing import Optional

from .config import RelayConfig
from .registry import Connection, ConnectionRegistry
from .transport import Transport

logger = logging.getLogger(__name__)


class BroadcastRelay:
    """Single-producer, many-subscriber WebSocket fan-out with heartbeats.

    Delivery is best-effort and at-most-once per currently registered
    connection. A failure on one connection unregisters that connection
    and never interrupts delivery to the rest.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        registry: Optional[ConnectionRegistry] = None,
    ):
        self.config = config or RelayConfig()
        self._registry = registry or ConnectionRegistry()
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._messages_relayed = 0
        self._deliveries = 0
        self._delivery_failures = 0
        self._reaped = 0

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def is_running(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    # ── Connection lifecycle ─────────────────────────────────────────

    def connect(self, transport: Transport) -> str:
        """Attach a freshly accepted socket."""
        return self._registry.register(transport)

    def disconnect(self, connection_id: str) -> bool:
        """Detach a socket that closed on its own."""
        return self._registry.unregister(connection_id)

    async def close_all(self, code: int = 1001) -> int:
        """Close and unregister every connection (server shutdown)."""
        closed = 0
        for conn in self._registry.connections():
            await self._drop(conn, "server shutdown", code=code)
            closed += 1
        return closed

    # ── Message fan-out ──────────────────────────────────────────────

    async def on_message(self, from_id: str, payload: str) -> int:
        """Deliver *payload* unmodified to every connection except *from_id*.

        Returns the number of connections the payload reached.
        """
        self._messages_relayed += 1
        delivered = 0

        async def deliver(conn: Connection) -> None:
            nonlocal delivered
            if conn.connection_id == from_id:
                return
            if not conn.transport.is_open:
                logger.debug("Skipping %s: transport not open", conn.connection_id)
                return
            try:
                await conn.transport.send_text(payload)
            except Exception as e:
                conn.send_failures += 1
                self._delivery_failures += 1
                logger.warning("Delivery to %s failed: %s", conn.connection_id, e)
                await self._drop(conn, "send failure")
                return
            conn.messages_sent += 1
            delivered += 1

        await self._registry.for_each_live(deliver)
        self._deliveries += delivered
        logger.debug("Relayed frame from %s", from_id, extra={"recipients": delivered})
        return delivered

    # ── Heartbeat / reap ─────────────────────────────────────────────

    async def heartbeat_cycle(self) -> int:
        """Run one reap-and-ping pass. Returns the number reaped.

        Pings are protocol-level control frames, which every conforming
        client answers with a pong; nothing is added to the data stream.
        """
        reaped = 0

        async def check(conn: Connection) -> None:
            nonlocal reaped
            if not conn.is_alive:
                await self._drop(conn, "heartbeat timeout")
                reaped += 1
                return
            self._registry.mark_pending(conn.connection_id)
            try:
                pong_waiter = await conn.transport.ping()
            except Exception as e:
                logger.warning("Ping to %s failed: %s", conn.connection_id, e)
                await self._drop(conn, "ping failure")
                return
            pong_waiter.add_done_callback(
                lambda waiter, conn_id=conn.connection_id: self._on_pong(conn_id, waiter)
            )

        await self._registry.for_each_live(check)
        if reaped:
            self._reaped += reaped
            logger.info("Heartbeat reaped %d stale connection(s)", reaped)
        return reaped

    def _on_pong(self, connection_id: str, waiter: asyncio.Future) -> None:
        if waiter.cancelled() or waiter.exception() is not None:
            return
        self._registry.mark_alive(connection_id)

    def start(self) -> None:
        """Start the heartbeat task. Calling it again is a no-op."""
        if self.is_running:
            return
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info(
            "Heartbeat started (interval %.1fs)",
            self.config.heartbeat_interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel the heartbeat task. Safe to call repeatedly."""
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Heartbeat stopped")

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval_seconds)
            try:
                await self.heartbeat_cycle()
            except Exception as e:
                logger.error("Heartbeat cycle error: %s", e, exc_info=True)

    # ── Internals ────────────────────────────────────────────────────

    async def _drop(self, conn: Connection, reason: str, code: int = 1000) -> None:
        """Unregister *conn* and close its transport best-effort."""
        if not self._registry.unregister(conn.connection_id):
            return
        logger.info("Dropping connection %s: %s", conn.connection_id, reason)
        try:
            await conn.transport.close(code=code)
        except Exception as e:
            logger.debug("Close of %s raised: %s", conn.connection_id, e)

    def get_stats(self) -> dict:
        return {
            **self._registry.get_stats(),
            "messages_relayed": self._messages_relayed,
            "deliveries": self._deliveries,
            "delivery_failures": self._delivery_failures,
            "reaped": self._reaped,
            "heartbeat_running": self.is_running,
        }
