"""
Monitoring lifecycle: geolocation → detector → gateway.

The controller owns the watch handle, the detector state and the live values the
presentation layer reads (speed, flag, bump list, distance to nearest bump). It
has two states, Idle and Monitoring; `start()` from Monitoring and `stop()` from
Idle are no-ops.

Callbacks from the geolocation source and the realtime feed are synchronous and
finish their whole state update before returning; the only awaits are the
permission/watch handshake, watch teardown and store calls.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from bumplog.config.settings import Settings
from bumplog.core.errors import GeolocationError, PositionTimeout
from bumplog.core.geo import nearest_distance_m
from bumplog.detection.detector import SpeedBumpDetector, to_kmh
from bumplog.domain.models import Detection, MonitoringSnapshot, PositionSample, SpeedBumpEvent
from bumplog.geolocation.base import GeolocationSource
from bumplog.geolocation.select import watch_options_for
from bumplog.store.gateway import PersistenceGateway

logger = logging.getLogger(__name__)

DetectionHook = Callable[[Detection], None]


class MonitoringController:
    def __init__(
        self,
        settings: Settings,
        *,
        source: GeolocationSource,
        gateway: PersistenceGateway,
        on_detection: DetectionHook | None = None,
    ):
        self._settings = settings
        self._source = source
        self._gateway = gateway
        self._detector = SpeedBumpDetector(settings.detection)
        # Haptic/audible feedback on detection; not part of detection correctness.
        self._on_detection = on_detection

        self._monitoring = False
        self._starting = False
        self._stop_requested = False
        self._handle: str | None = None
        self._current_speed = 0.0
        self._last_position: PositionSample | None = None
        self._distance_to_nearest: float | None = None
        self._last_error: GeolocationError | None = None
        self._pending_writes: set[asyncio.Task[SpeedBumpEvent | None]] = set()

        gateway.collection.subscribe(self._recompute_distance)

    # --- read-only state -------------------------------------------------

    @property
    def source(self) -> GeolocationSource:
        return self._source

    @property
    def gateway(self) -> PersistenceGateway:
        return self._gateway

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def current_speed(self) -> float:
        return self._current_speed

    @property
    def previous_speed(self) -> float:
        return self._detector.previous_speed_kmh

    @property
    def watch_handle(self) -> str | None:
        return self._handle

    @property
    def last_position(self) -> PositionSample | None:
        return self._last_position

    @property
    def distance_to_nearest(self) -> float | None:
        return self._distance_to_nearest

    @property
    def last_error(self) -> GeolocationError | None:
        return self._last_error

    @property
    def bumps(self) -> list[SpeedBumpEvent]:
        return self._gateway.collection.events

    def snapshot(self) -> MonitoringSnapshot:
        bumps = self.bumps
        return MonitoringSnapshot(
            is_monitoring=self._monitoring,
            current_speed=self._current_speed,
            distance_to_nearest=self._distance_to_nearest,
            last_position=self._last_position,
            last_error=str(self._last_error) if self._last_error else None,
            bump_count=len(bumps),
            bumps=bumps,
        )

    # --- commands --------------------------------------------------------

    async def start(self) -> str | None:
        """Open a geolocation watch; returns the handle (None if already monitoring).

        Raises:
            PermissionDenied / SourceUnavailable: the session could not start.
        """
        if self._monitoring or self._starting:
            logger.debug("start() ignored: already monitoring")
            return None

        options = watch_options_for(self._source, self._settings.geolocation)
        self._starting = True
        self._stop_requested = False
        self._detector.reset()
        self._last_error = None
        try:
            handle = await self._source.start_watching(options, self._on_sample, self._on_error)
        except GeolocationError as exc:
            self._last_error = exc
            logger.warning("Monitoring could not start: %s", exc)
            raise
        finally:
            self._starting = False

        if self._stop_requested:
            # stop() ran while the watch was being opened.
            self._stop_requested = False
            await self._source.stop_watching(handle)
            logger.info("Monitoring start cancelled by stop()")
            return None

        self._handle = handle
        self._monitoring = True
        logger.info("Monitoring started (backend=%s, handle=%s)", self._source.name, handle)
        return handle

    def _reset_session(self) -> str | None:
        handle, self._handle = self._handle, None
        self._monitoring = False
        self._current_speed = 0.0
        self._detector.reset()
        self._last_position = None
        self._distance_to_nearest = None
        return handle

    async def stop(self) -> None:
        if self._starting:
            self._stop_requested = True
            return
        if not self._monitoring:
            logger.debug("stop() ignored: not monitoring")
            return
        handle = self._reset_session()
        if handle is not None:
            await self._source.stop_watching(handle)
        logger.info("Monitoring stopped")

    async def clear_history(self) -> None:
        await self._gateway.clear()

    async def close(self) -> None:
        """Tear down everything bound to the hosting scope."""
        await self.stop()
        for task in list(self._pending_writes):
            task.cancel()
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes, return_exceptions=True)
        await self._gateway.close()

    async def drain(self) -> None:
        """Wait for in-flight detection writes."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    # --- callbacks -------------------------------------------------------

    def _on_sample(self, sample: PositionSample) -> None:
        if not self._monitoring:
            return
        self._last_position = sample
        self._current_speed = to_kmh(sample.speed_mps)
        detection = self._detector.process(sample)
        if detection is not None:
            self._persist(detection)
            if self._on_detection is not None:
                self._on_detection(detection)
        self._recompute_distance()

    def _on_error(self, error: GeolocationError) -> None:
        if not self._monitoring:
            return
        if isinstance(error, PositionTimeout):
            initial = self._last_position is None
            if not (initial and self._source.stop_on_initial_timeout):
                logger.info("Geolocation timeout (watch continues): %s", error)
                return
        logger.warning("Geolocation error; stopping monitoring: %s", error)
        self._last_error = error
        handle = self._reset_session()
        if handle is not None:
            task = asyncio.create_task(self._source.stop_watching(handle))
            task.add_done_callback(self._log_task_error)

    def _persist(self, detection: Detection) -> None:
        task = asyncio.create_task(self._gateway.write(detection))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)
        task.add_done_callback(self._log_task_error)

    @staticmethod
    def _log_task_error(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed: %r", exc)

    def _recompute_distance(self) -> None:
        if self._last_position is None:
            self._distance_to_nearest = None
            return
        self._distance_to_nearest = nearest_distance_m(self._last_position.point, self.bumps)
