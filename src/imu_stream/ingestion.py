"""Ingestion buffer and flush scheduler.

Packets arrive in bursts at whatever rate the producer and network
deliver them. The buffer collects them between ticks; the scheduler
drains the buffer on a fixed period and hands each drained batch, in
arrival order, to a single downstream callback.

The buffer is unbounded: if the producer outpaces the consumer the queue
grows without a backpressure signal.
"""

import asyncio
import dataclasses
import logging
import math
from typing import Callable, List, Optional

from src.imu_stream.models import Packet, now_ms

logger = logging.getLogger(__name__)

BatchHandler = Callable[[List[Packet]], None]


class IngestionBuffer:
    """Arrival-ordered queue of packets awaiting the next flush."""

    def __init__(self):
        self._queue: List[Packet] = []
        self._total_enqueued = 0

    def enqueue(self, packet: Packet) -> None:
        """Append a packet, stamping receipt time if the producer did not."""
        if packet.timestamp is None or not math.isfinite(packet.timestamp):
            packet = dataclasses.replace(packet, timestamp=now_ms())
        self._queue.append(packet)
        self._total_enqueued += 1

    def drain(self) -> List[Packet]:
        """Swap the queue for an empty one and return what it held."""
        batch, self._queue = self._queue, []
        return batch

    def clear(self) -> int:
        dropped = len(self._queue)
        self._queue = []
        return dropped

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def total_enqueued(self) -> int:
        return self._total_enqueued


class FlushScheduler:
    """Periodically drains an ``IngestionBuffer`` into a batch handler.

    Example::

        scheduler = FlushScheduler(buffer, pipeline.push_batch)
        scheduler.start(30)   # 30 flushes per second
        scheduler.start(10)   # restart at the new rate, queue kept
        await scheduler.stop()
    """

    def __init__(self, buffer: IngestionBuffer, on_batch: BatchHandler):
        self._buffer = buffer
        self._on_batch = on_batch
        self._task: Optional[asyncio.Task] = None
        self._rate_hz: Optional[float] = None
        self._batches = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def rate_hz(self) -> Optional[float]:
        return self._rate_hz

    @property
    def interval_seconds(self) -> float:
        return 1.0 / max(self._rate_hz or 1.0, 1.0)

    @property
    def batches_flushed(self) -> int:
        return self._batches

    def start(self, rate_hz: float) -> None:
        """Start (or restart) the flush loop at *rate_hz* flushes/second.

        Any previous loop is cancelled first so only one timer ever runs.
        Packets already queued stay queued for the new loop.
        """
        self._cancel()
        self._rate_hz = rate_hz
        self._task = asyncio.create_task(self._run())
        logger.debug("Flush loop started at %.1f Hz", max(rate_hz or 1.0, 1.0))

    async def stop(self) -> None:
        """Cancel the flush loop. Safe to call repeatedly."""
        task = self._cancel()
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def flush(self) -> Optional[List[Packet]]:
        """Run one tick: drain and dispatch. Returns the batch, or None."""
        if not self._buffer.pending:
            return None
        batch = self._buffer.drain()
        self._batches += 1
        try:
            self._on_batch(batch)
        except Exception as e:
            logger.error("Batch handler failed on %d packet(s): %s", len(batch), e, exc_info=True)
        return batch

    def _cancel(self) -> Optional[asyncio.Task]:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.flush()
