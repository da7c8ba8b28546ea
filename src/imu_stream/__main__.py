"""Standalone CLI that tails a relay and logs impacts.

Usage:
    python -m src.imu_stream
    python -m src.imu_stream --url ws://relay.local:8080/ws --rate 20
    python -m src.imu_stream --threshold 15 --log-format console
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys

import numpy as np

from src.imu_stream.config import WINDOW_CHOICES, StreamConfig
from src.imu_stream.detector import ImpactEvent
from src.imu_stream.pipeline import LiveIMUStream
from src.logging_config import LogFormat, LoggingConfig, LogLevel, configure_logging

logger = logging.getLogger("spb.stream")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    defaults = StreamConfig.from_settings()
    parser = argparse.ArgumentParser(
        prog="python -m src.imu_stream",
        description="Smart Physics Ball live stream client",
    )
    parser.add_argument(
        "--url", type=str, default=defaults.websocket_url,
        help=f"Relay WebSocket URL (default: {defaults.websocket_url})",
    )
    parser.add_argument(
        "--rate", type=float, default=defaults.sample_rate_hz,
        help="Flush rate in Hz (default: %(default)s)",
    )
    parser.add_argument(
        "--smoothing", type=float, default=defaults.smoothing_factor,
        help="Smoothing factor 0-0.95 (default: %(default)s)",
    )
    parser.add_argument(
        "--window", type=int, default=defaults.window_seconds, choices=WINDOW_CHOICES,
        help="Trailing window in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--threshold", type=float, default=defaults.impact_threshold,
        help="Impact threshold (default: %(default)s)",
    )
    parser.add_argument(
        "--report-interval", type=float, default=5.0,
        help="Seconds between window summaries (default: 5)",
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=[level.value for level in LogLevel],
    )
    parser.add_argument(
        "--log-format", type=str, default="console",
        choices=[fmt.value for fmt in LogFormat],
    )
    return parser.parse_args(argv)


def summarize_window(stream: LiveIMUStream) -> dict:
    """Peak acceleration, peak impact and mean speed over the current window."""
    window = stream.windowed()
    if not window:
        return {"samples": 0}
    accel = np.array([[s.ax, s.ay, s.az] for s in window])
    return {
        "samples": len(window),
        "peak_accel": round(float(np.linalg.norm(accel, axis=1).max()), 3),
        "peak_impact": round(max(s.impact for s in window), 3),
        "mean_velocity": round(float(np.mean([s.velocity for s in window])), 3),
    }


async def run(config: StreamConfig, report_interval: float) -> None:
    stream = LiveIMUStream(config)

    def on_impact(event: ImpactEvent) -> None:
        logger.warning("Impact detected: %.2f N", event.value)

    stream.add_impact_listener(on_impact)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    stream.start()
    logger.info("Streaming from %s", config.websocket_url)
    try:
        while not shutdown.is_set():
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=report_interval)
            except asyncio.TimeoutError:
                pass
            logger.info(
                "connected=%s error=%s window=%s",
                stream.is_connected,
                stream.error,
                summarize_window(stream),
            )
    finally:
        await stream.stop()
        logger.info("Stream client shutdown complete")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(LoggingConfig(
        level=LogLevel(args.log_level),
        format=LogFormat(args.log_format),
        service_name="spb-stream",
    ))
    config = dataclasses.replace(
        StreamConfig.from_settings(),
        websocket_url=args.url,
        sample_rate_hz=args.rate,
        smoothing_factor=args.smoothing,
        window_seconds=args.window,
        impact_threshold=args.threshold,
    )
    asyncio.run(run(config, args.report_interval))
    return 0


if __name__ == "__main__":
    sys.exit(main())
