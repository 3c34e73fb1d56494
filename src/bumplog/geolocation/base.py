"""
Geolocation source contract.

Every backend turns a platform's continuous position reporting into the same
shape: `start_watching()` returns an opaque handle and then invokes `on_sample`
for each fix (or `on_error` with a `GeolocationError`) until `stop_watching()`
is called with that handle.

Callbacks are plain functions invoked from the event loop; they must not await.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from bumplog.core.errors import GeolocationError, PositionTimeout
from bumplog.domain.models import PositionSample

logger = logging.getLogger(__name__)

SampleCallback = Callable[[PositionSample], None]
ErrorCallback = Callable[[GeolocationError], None]


@dataclass(frozen=True)
class WatchOptions:
    """Options recognized by every backend (names follow the W3C PositionOptions)."""

    high_accuracy: bool = True
    timeout_ms: int = 10_000
    max_cached_age_ms: int = 0


class Watch:
    """Per-handle bookkeeping shared by backends.

    Applies the `max_cached_age_ms` filter and the `timeout_ms` fix timer so the
    backends only have to parse their wire format.
    """

    def __init__(
        self,
        handle: str,
        options: WatchOptions,
        on_sample: SampleCallback,
        on_error: ErrorCallback,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.handle = handle
        self.options = options
        self._on_sample = on_sample
        self._on_error = on_error
        self._clock = clock
        self._last_timestamp_ms: float | None = None
        self._timer: asyncio.TimerHandle | None = None
        self.closed = False

    def _is_stale(self, sample: PositionSample) -> bool:
        max_age = self.options.max_cached_age_ms
        if max_age <= 0:
            # Fresh fixes only: a timestamp we've already delivered is a cached repeat.
            return self._last_timestamp_ms is not None and sample.timestamp_ms <= self._last_timestamp_ms
        age_ms = self._clock() * 1000.0 - sample.timestamp_ms
        return age_ms > max_age

    def deliver(self, sample: PositionSample) -> bool:
        """Forward a sample to the subscriber unless closed or stale."""
        if self.closed:
            return False
        if self._is_stale(sample):
            logger.debug("Dropping cached fix for watch %s (ts=%s)", self.handle, sample.timestamp_ms)
            return False
        self._last_timestamp_ms = sample.timestamp_ms
        self.arm_timer()
        self._on_sample(sample)
        return True

    def fail(self, error: GeolocationError) -> None:
        if self.closed:
            return
        self._on_error(error)

    def arm_timer(self) -> None:
        """(Re)start the fix timer; requires a running event loop."""
        self._cancel_timer()
        if self.closed or self.options.timeout_ms <= 0:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.options.timeout_ms / 1000.0, self._on_timeout)

    def _on_timeout(self) -> None:
        self._timer = None
        if self.closed:
            return
        self.fail(PositionTimeout(f"No position fix within {self.options.timeout_ms} ms"))
        # The watch stays open; keep waiting for the next fix.
        self.arm_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        self.closed = True
        self._cancel_timer()


class GeolocationSource(ABC):
    """Abstract geolocation backend."""

    #: Name reported in logs and `/api/settings`.
    name: str = "abstract"
    #: Default fix timeout used by the controller for this backend.
    default_timeout_ms: int = 10_000
    #: Whether a timeout before the first fix should end the monitoring session.
    stop_on_initial_timeout: bool = False

    @abstractmethod
    async def start_watching(
        self, options: WatchOptions, on_sample: SampleCallback, on_error: ErrorCallback
    ) -> str:
        """Open a watch and return its handle.

        Raises:
            PermissionDenied: location access was refused.
            SourceUnavailable: the platform has no usable position source.
        """

    @abstractmethod
    async def stop_watching(self, handle: str) -> None:
        """Close the watch; unknown or already-closed handles are ignored."""

    async def is_available(self) -> bool:
        """Runtime capability check used by backend selection."""
        return True
