"""Live IMU stream: relay socket -> buffer -> flush -> smooth -> history.

``LiveIMUStream`` wires the pipeline pieces together for one consumer
session and exposes what a dashboard needs: the latest sample, the
history and its trailing window, connection status, the last
user-facing error, and impact events.

Example::

    stream = LiveIMUStream(StreamConfig(websocket_url="ws://relay:8080/ws"))
    stream.add_impact_listener(lambda event: print(event.to_dict()))
    stream.start()
    ...
    recent = stream.windowed()
    await stream.stop()
"""

import logging
from typing import Callable, List, Optional

from src.imu_stream.config import WINDOW_CHOICES, StreamConfig
from src.imu_stream.detector import ImpactEvent, PeakDetector
from src.imu_stream.history import HistoryStore
from src.imu_stream.ingestion import FlushScheduler, IngestionBuffer
from src.imu_stream.models import Packet, Sample, format_packet
from src.imu_stream.reconnection import Connector, ReconnectionManager
from src.imu_stream.smoothing import SmoothingFilter

logger = logging.getLogger(__name__)

ImpactListener = Callable[[ImpactEvent], None]


class LiveIMUStream:
    """One consumer session against the relay."""

    def __init__(
        self,
        config: Optional[StreamConfig] = None,
        connector: Optional[Connector] = None,
    ):
        self.config = config or StreamConfig()
        self.buffer = IngestionBuffer()
        self.scheduler = FlushScheduler(self.buffer, self.push_batch)
        self.smoother = SmoothingFilter(self.config.smoothing_factor)
        self.history = HistoryStore(self.config.max_history)
        self.detector = PeakDetector(
            self.config.impact_threshold,
            cooldown_ms=self.config.impact_cooldown_ms,
        )
        self.connection = ReconnectionManager(
            self.config,
            on_packet=self.buffer.enqueue,
            on_open=self._handle_open,
            on_close=self._handle_close,
            on_error=self._handle_error,
            connector=connector,
        )
        self._latest: Optional[Sample] = None
        self._error: Optional[str] = None
        self._impact_listeners: List[ImpactListener] = []

    # ── Status ───────────────────────────────────────────────────────

    @property
    def data(self) -> Optional[Sample]:
        """Most recent smoothed sample."""
        return self._latest

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    @property
    def error(self) -> Optional[str]:
        return self._error

    def snapshot(self) -> List[Sample]:
        return self.history.snapshot()

    def windowed(self, window_seconds: Optional[float] = None) -> List[Sample]:
        return self.history.windowed(window_seconds or self.config.window_seconds)

    # ── Controls ─────────────────────────────────────────────────────

    def start(self) -> None:
        self.connection.start()

    async def stop(self) -> None:
        await self.connection.stop()
        await self.scheduler.stop()

    def set_sample_rate(self, rate_hz: float) -> None:
        """Change the flush rate; a running flush loop restarts at the new period."""
        self.config.sample_rate_hz = rate_hz
        if self.scheduler.is_running:
            self.scheduler.start(rate_hz)

    def set_smoothing_factor(self, factor: float) -> None:
        self.config.smoothing_factor = factor
        self.smoother.factor = factor

    def set_window(self, window_seconds: int) -> None:
        if window_seconds not in WINDOW_CHOICES:
            raise ValueError(f"window_seconds must be one of {WINDOW_CHOICES}")
        self.config.window_seconds = window_seconds

    def clear_history(self) -> None:
        self.history.clear()
        self.smoother.reset()
        self._latest = None

    def add_impact_listener(self, listener: ImpactListener) -> None:
        self._impact_listeners.append(listener)

    # ── Pipeline ─────────────────────────────────────────────────────

    def push_batch(self, packets: List[Packet]) -> List[Sample]:
        """Format, detect, smooth and store one flushed batch."""
        if not packets:
            return []
        formatted = [format_packet(p) for p in packets]
        for sample in formatted:
            event = self.detector.observe(sample.impact, sample.timestamp)
            if event is not None:
                self._notify_impact(event)

        smoothed = self.smoother.apply_batch(formatted)
        self.history.append(smoothed)
        self._latest = smoothed[-1]
        logger.debug("Flushed %d sample(s)", len(smoothed), extra={"batch_size": len(smoothed)})
        return smoothed

    def _notify_impact(self, event: ImpactEvent) -> None:
        for listener in list(self._impact_listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning("Impact listener failed: %s", e)

    def _handle_open(self) -> None:
        self._error = None
        self.smoother.reset()
        self.scheduler.start(self.config.sample_rate_hz)

    def _handle_close(self) -> None:
        logger.debug("Stream disconnected (%d packet(s) pending)", self.buffer.pending)

    def _handle_error(self, message: str) -> None:
        self._error = message
