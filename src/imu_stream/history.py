"""Capped sample history and the trailing time-window view over it."""

import logging
from collections import deque
from typing import Deque, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from src.imu_stream.models import NUMERIC_CHANNELS, ORIENTATION_CHANNELS, Sample

logger = logging.getLogger(__name__)


class HistoryStore:
    """Ordered, capacity-bounded sequence of samples.

    Oldest samples are evicted first once ``max_history`` is exceeded.
    Only the stream pipeline appends; readers get copies.
    """

    def __init__(self, max_history: int = 1800):
        if max_history <= 0:
            raise ValueError("max_history must be positive")
        self._samples: Deque[Sample] = deque(maxlen=max_history)

    @property
    def max_history(self) -> int:
        return self._samples.maxlen

    def append(self, samples: Iterable[Sample]) -> None:
        """Append in order, evicting from the front past capacity."""
        self._samples.extend(samples)

    def windowed(self, window_seconds: float) -> List[Sample]:
        """Samples within *window_seconds* of the latest timestamp."""
        if not self._samples:
            return []
        cutoff = self._samples[-1].timestamp - window_seconds * 1000
        # Full scan: batches from separate sessions need not be monotonic.
        return [s for s in self._samples if s.timestamp >= cutoff]

    def snapshot(self) -> List[Sample]:
        """Defensive copy of the whole buffer."""
        return list(self._samples)

    @property
    def latest(self) -> Optional[Sample]:
        return self._samples[-1] if self._samples else None

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def to_array(self, channels: Sequence[str] = ("timestamp",) + NUMERIC_CHANNELS) -> np.ndarray:
        """Stack the requested channels into an ``(n, len(channels))`` array."""
        if not self._samples:
            return np.empty((0, len(channels)), dtype=float)
        return np.array(
            [[getattr(s, c) for c in channels] for s in self._samples],
            dtype=float,
        )

    def to_frame(self) -> pd.DataFrame:
        """History as a DataFrame indexed by timestamp (ms)."""
        columns = ["timestamp", *NUMERIC_CHANNELS, *ORIENTATION_CHANNELS]
        frame = pd.DataFrame([s.to_dict() for s in self._samples], columns=columns)
        return frame.set_index("timestamp")
