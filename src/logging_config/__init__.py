"""Structured Logging.

Provides structured JSON logging and connection ID propagation
for the relay server and the stream client.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import ConnectionContext
from src.logging_config.setup import configure_logging

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "ConnectionContext",
    "configure_logging",
]
