"""
Speed bump detection.

A bump shows up in a GPS speed trace as an abrupt deceleration. The detector is a
small state machine over the previous speed (km/h) and fires on either of two
independent rules, both gated on the vehicle having been above a minimum speed:

- large drop: `previous - current > drop_threshold_kmh`
- near stop:  `current < near_stop_speed_kmh`

There is no smoothing or debouncing beyond the optional rolling window: a single
noisy sample can fire a false positive and also lower the baseline for the next
sample.
"""

from __future__ import annotations

import logging
from collections import deque

from bumplog.config.settings import DetectionSettings
from bumplog.domain.models import Detection, PositionSample

logger = logging.getLogger(__name__)

MPS_TO_KMH = 3.6


def to_kmh(speed_mps: float | None) -> float:
    """Convert m/s to km/h; a missing speed counts as stationary."""
    return float(speed_mps or 0.0) * MPS_TO_KMH


def is_large_drop(
    previous_kmh: float,
    current_kmh: float,
    *,
    min_previous_kmh: float = 15.0,
    drop_threshold_kmh: float = 10.0,
) -> bool:
    return previous_kmh > min_previous_kmh and (previous_kmh - current_kmh) > drop_threshold_kmh


def is_near_stop(
    previous_kmh: float,
    current_kmh: float,
    *,
    min_previous_kmh: float = 15.0,
    near_stop_kmh: float = 8.0,
) -> bool:
    return previous_kmh > min_previous_kmh and current_kmh < near_stop_kmh


class SpeedBumpDetector:
    """Consumes one `PositionSample` at a time and returns a `Detection` on trigger.

    With `window_size == 1` (default) the comparison basis is exactly the
    previous sample's speed. Larger windows compare against the mean of the
    last N speeds to ride out GPS jitter.
    """

    def __init__(self, settings: DetectionSettings | None = None):
        self._settings = settings or DetectionSettings()
        self._history: deque[float] = deque(maxlen=int(self._settings.window_size))

    @property
    def previous_speed_kmh(self) -> float:
        if not self._history:
            return 0.0
        return sum(self._history) / len(self._history)

    def reset(self) -> None:
        self._history.clear()

    def process(self, sample: PositionSample) -> Detection | None:
        s = self._settings
        speed_kmh = to_kmh(sample.speed_mps)
        previous = self.previous_speed_kmh

        large_drop = is_large_drop(
            previous,
            speed_kmh,
            min_previous_kmh=s.min_previous_speed_kmh,
            drop_threshold_kmh=s.drop_threshold_kmh,
        )
        near_stop = is_near_stop(
            previous,
            speed_kmh,
            min_previous_kmh=s.min_previous_speed_kmh,
            near_stop_kmh=s.near_stop_speed_kmh,
        )
        logger.debug(
            "Speed check: speed=%.1f previous=%.1f drop=%.1f large_drop=%s near_stop=%s",
            speed_kmh,
            previous,
            previous - speed_kmh,
            large_drop,
            near_stop,
        )

        # The baseline always moves on, triggered or not.
        self._history.append(speed_kmh)

        if not (large_drop or near_stop):
            return None

        logger.info(
            "Speed bump detected at (%.6f, %.6f): %.1f -> %.1f km/h",
            sample.latitude,
            sample.longitude,
            previous,
            speed_kmh,
        )
        return Detection(
            latitude=sample.latitude,
            longitude=sample.longitude,
            speed_kmh=speed_kmh,
            previous_speed_kmh=previous,
            timestamp_ms=sample.timestamp_ms,
            accuracy_m=sample.accuracy_m,
            large_drop=large_drop,
            near_stop=near_stop,
        )
