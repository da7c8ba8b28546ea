"""Client-side IMU stream pipeline.

Turns the bursty packet stream coming off the relay into a bounded,
smoothed time series with a trailing window and impact detection.
"""

from .config import ConnectionPhase, StreamConfig, WINDOW_CHOICES
from .exceptions import PacketDecodeError, StreamError, TransportError
from .models import Packet, Sample, Vector3, decode_packet, format_packet
from .ingestion import FlushScheduler, IngestionBuffer
from .smoothing import SmoothingFilter, SmoothingState, clamp_factor, smooth_sample
from .history import HistoryStore
from .detector import ImpactEvent, PeakDetector
from .reconnection import ReconnectionManager
from .pipeline import LiveIMUStream

__all__ = [
    # Config
    "ConnectionPhase",
    "StreamConfig",
    "WINDOW_CHOICES",
    # Errors
    "PacketDecodeError",
    "StreamError",
    "TransportError",
    # Models
    "Packet",
    "Sample",
    "Vector3",
    "decode_packet",
    "format_packet",
    # Ingestion
    "FlushScheduler",
    "IngestionBuffer",
    # Smoothing
    "SmoothingFilter",
    "SmoothingState",
    "clamp_factor",
    "smooth_sample",
    # History
    "HistoryStore",
    # Detection
    "ImpactEvent",
    "PeakDetector",
    # Connection
    "ReconnectionManager",
    "LiveIMUStream",
]
