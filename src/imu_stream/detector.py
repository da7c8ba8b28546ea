"""Edge-triggered, debounced threshold detector for impact events.

Fires only on a below -> above crossing, and only if more than
``cooldown_ms`` has passed since the last event. Staying above the
threshold never re-fires; the detector re-arms after it has seen at
least one sub-threshold value.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from src.imu_stream.models import now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImpactEvent:
    """A detected threshold crossing."""

    timestamp: float
    value: float
    threshold: float

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "value": round(self.value, 3),
            "threshold": self.threshold,
        }


class PeakDetector:
    """Threshold crossing detector with cooldown for one channel."""

    def __init__(self, threshold: float, cooldown_ms: float = 900.0):
        self.threshold = threshold
        self.cooldown_ms = cooldown_ms
        self._last_trigger_time: Optional[float] = None
        self._last_value: Optional[float] = None
        self._fired = 0

    @property
    def last_value(self) -> Optional[float]:
        return self._last_value

    @property
    def last_trigger_time(self) -> Optional[float]:
        return self._last_trigger_time

    @property
    def is_above(self) -> bool:
        return self._last_value is not None and self._last_value >= self.threshold

    @property
    def events_fired(self) -> int:
        return self._fired

    def observe(self, value: float, timestamp: Optional[float] = None) -> Optional[ImpactEvent]:
        """Feed one value; return an ``ImpactEvent`` if it fires.

        *timestamp* is in milliseconds; wall-clock time is used if omitted.
        The first value only establishes the previous value. Non-finite
        values are ignored and leave the detector state untouched.
        """
        if not math.isfinite(value):
            return None
        now = now_ms() if timestamp is None else timestamp
        previous, self._last_value = self._last_value, value
        if previous is None:
            return None

        crossed = value >= self.threshold and previous < self.threshold
        if not crossed:
            return None
        if (
            self._last_trigger_time is not None
            and now - self._last_trigger_time <= self.cooldown_ms
        ):
            logger.debug("Impact %.2f suppressed by cooldown", value)
            return None

        self._last_trigger_time = now
        self._fired += 1
        logger.info("Impact detected: %.2f (threshold %.2f)", value, self.threshold)
        return ImpactEvent(timestamp=now, value=value, threshold=self.threshold)

    def reset(self) -> None:
        self._last_trigger_time = None
        self._last_value = None
