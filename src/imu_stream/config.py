"""Configuration for the client-side IMU stream pipeline."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from src.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# Selectable trailing windows on the dashboard, in seconds.
WINDOW_CHOICES = (10, 30, 60)

MAX_SMOOTHING_FACTOR = 0.95


class ConnectionPhase(str, Enum):
    """Lifecycle states of the client connection."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    STOPPED = "stopped"


@dataclass
class StreamConfig:
    """Master configuration for the stream client."""

    websocket_url: str = "ws://localhost:8080/ws"
    sample_rate_hz: float = 30.0
    smoothing_factor: float = 0.2
    window_seconds: int = 30
    max_history: int = 1800
    impact_threshold: float = 12.0
    impact_cooldown_ms: float = 900.0
    reconnect_delay_seconds: float = 1.2

    def __post_init__(self):
        if self.window_seconds not in WINDOW_CHOICES:
            raise ValueError(
                f"window_seconds must be one of {WINDOW_CHOICES}, got {self.window_seconds}"
            )
        if self.max_history <= 0:
            raise ValueError("max_history must be positive")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "StreamConfig":
        """Build a stream config from environment-backed settings."""
        settings = settings or get_settings()
        return cls(
            websocket_url=settings.websocket_url,
            sample_rate_hz=settings.sample_rate_hz,
            smoothing_factor=settings.smoothing_factor,
            window_seconds=settings.window_seconds,
            max_history=settings.max_history,
            impact_threshold=settings.impact_threshold,
            impact_cooldown_ms=settings.impact_cooldown_ms,
            reconnect_delay_seconds=settings.reconnect_delay_seconds,
        )
