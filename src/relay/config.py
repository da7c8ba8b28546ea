"""Configuration for the WebSocket broadcast relay."""

import logging
from dataclasses import dataclass
from typing import Optional

from src.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class RelayConfig:
    """Master configuration for the broadcast relay."""

    host: str = "0.0.0.0"
    port: int = 8080
    heartbeat_interval_seconds: float = 30.0
    banner: str = "Smart Physics Ball WebSocket Relay"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RelayConfig":
        """Build a relay config from environment-backed settings."""
        settings = settings or get_settings()
        return cls(
            host=settings.host,
            port=settings.port,
            heartbeat_interval_seconds=settings.heartbeat_interval_seconds,
        )
