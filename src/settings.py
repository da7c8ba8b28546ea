"""Centralized settings for the Smart Physics Ball relay and stream client.

Uses pydantic-settings to load from environment variables (prefixed SPB_)
with defaults matching the values the dashboard and relay ship with.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Platform settings loaded from environment variables."""

    # --- Relay server ---
    host: str = "0.0.0.0"
    port: int = 8080
    heartbeat_interval_seconds: float = 30.0

    # --- Stream client ---
    websocket_url: str = "ws://localhost:8080/ws"
    sample_rate_hz: float = 30.0
    smoothing_factor: float = 0.2
    window_seconds: int = 30
    max_history: int = 1800
    reconnect_delay_seconds: float = 1.2

    # --- Impact detection ---
    impact_threshold: float = 12.0
    impact_cooldown_ms: float = 900.0

    model_config = {
        "env_prefix": "SPB_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
