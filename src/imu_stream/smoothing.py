"""Single-pole exponential smoothing over the numeric sample channels.

    smoothed = value * (1 - factor) + previous * factor

The per-channel ``previous`` values live in a ``SmoothingState`` that the
filter owns and resets explicitly: on a factor change and whenever the
transport reconnects, so one session's history never bleeds into the
next.
"""

import dataclasses
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from src.imu_stream.config import MAX_SMOOTHING_FACTOR
from src.imu_stream.models import SMOOTHED_CHANNELS, Sample

logger = logging.getLogger(__name__)


def clamp_factor(factor: Optional[float]) -> float:
    """Clamp a smoothing factor into [0, 0.95]; None and NaN become 0."""
    if factor is None or not math.isfinite(factor):
        return 0.0
    return min(max(factor, 0.0), MAX_SMOOTHING_FACTOR)


@dataclass
class SmoothingState:
    """Previous smoothed value per channel; empty until the first sample."""

    previous: Dict[str, float] = field(default_factory=dict)
    primed: bool = False

    def reset(self) -> None:
        self.previous.clear()
        self.primed = False


def smooth_sample(
    sample: Sample,
    state: SmoothingState,
    factor: float,
    channels: Iterable[str] = SMOOTHED_CHANNELS,
) -> Sample:
    """Smooth *sample* against *state*, updating *state* in place.

    The first sample after a reset seeds the state and is returned as is.
    Non-finite channel values pass through without touching their state.
    """
    if factor <= 0:
        return sample

    if not state.primed:
        for channel in channels:
            value = getattr(sample, channel)
            if math.isfinite(value):
                state.previous[channel] = value
        state.primed = True
        return sample

    updates = {}
    for channel in channels:
        value = getattr(sample, channel)
        if not math.isfinite(value):
            continue
        prev = state.previous.get(channel, value)
        smoothed = value * (1 - factor) + prev * factor
        state.previous[channel] = smoothed
        updates[channel] = smoothed

    return dataclasses.replace(sample, **updates) if updates else sample


class SmoothingFilter:
    """Stateful exponential smoother for a single stream session."""

    def __init__(self, factor: Optional[float] = 0.0):
        self._factor = clamp_factor(factor)
        self._state = SmoothingState()

    @property
    def factor(self) -> float:
        return self._factor

    @factor.setter
    def factor(self, value: Optional[float]) -> None:
        clamped = clamp_factor(value)
        if clamped != self._factor:
            logger.debug("Smoothing factor %.2f -> %.2f; state reset", self._factor, clamped)
            self._factor = clamped
            self._state.reset()

    @property
    def state(self) -> SmoothingState:
        return self._state

    def apply(self, sample: Sample) -> Sample:
        return smooth_sample(sample, self._state, self._factor)

    def apply_batch(self, samples: Iterable[Sample]) -> List[Sample]:
        return [self.apply(s) for s in samples]

    def reset(self) -> None:
        """Forget smoothing history (new session or reconnect)."""
        self._state.reset()
