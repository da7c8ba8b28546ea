"""Standalone CLI entry point for the relay server.

Usage:
    python -m src.relay
    python -m src.relay --port 9000 --heartbeat-interval 15
    python -m src.relay --log-level DEBUG --log-format console
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from src.logging_config import LogFormat, LoggingConfig, LogLevel, configure_logging
from src.relay.config import RelayConfig
from src.relay.server import RelayServer

logger = logging.getLogger("spb.relay")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    defaults = RelayConfig.from_settings()
    parser = argparse.ArgumentParser(
        prog="python -m src.relay",
        description="Smart Physics Ball WebSocket relay",
    )
    parser.add_argument(
        "--host", type=str, default=defaults.host,
        help=f"Interface to bind (default: {defaults.host})",
    )
    parser.add_argument(
        "--port", type=int, default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})",
    )
    parser.add_argument(
        "--heartbeat-interval", type=float, default=defaults.heartbeat_interval_seconds,
        help="Seconds between heartbeat pings (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=[level.value for level in LogLevel],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format", type=str, default="json",
        choices=[fmt.value for fmt in LogFormat],
        help="Log output format (default: json)",
    )
    return parser.parse_args(argv)


async def run(config: RelayConfig) -> None:
    server = RelayServer(config)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    await server.start()
    try:
        await shutdown.wait()
    finally:
        await server.stop()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    configure_logging(LoggingConfig(
        level=LogLevel(args.log_level),
        format=LogFormat(args.log_format),
        service_name="spb-relay",
    ))

    config = RelayConfig(
        host=args.host,
        port=args.port,
        heartbeat_interval_seconds=args.heartbeat_interval,
    )
    asyncio.run(run(config))
    return 0


if __name__ == "__main__":
    sys.exit(main())
