"""
Web geolocation backend: a browser page relays `navigator.geolocation`.

The page calls `watchPosition()` with the options of the watch it was handed and
POSTs each `GeolocationPosition` (and each `GeolocationPositionError`) to the API,
which forwards them here. This class owns no socket; it is a hub keyed by handle.

A browser without `navigator.geolocation` reports that through
`report_capability(False)`, after which new watches fail with `SourceUnavailable`.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from bumplog.core.errors import SourceUnavailable, geolocation_error_from_code
from bumplog.domain.models import PositionSample
from bumplog.geolocation.base import (
    ErrorCallback,
    GeolocationSource,
    SampleCallback,
    Watch,
    WatchOptions,
)

logger = logging.getLogger(__name__)


def parse_browser_position(payload: dict[str, Any]) -> PositionSample:
    """Parse a JSON-serialized W3C `GeolocationPosition`.

    Raises:
        ValueError: If coordinates are missing or out of range.
    """
    coords = payload.get("coords")
    if not isinstance(coords, dict):
        raise ValueError("position payload is missing 'coords'")
    return PositionSample(
        latitude=coords.get("latitude"),
        longitude=coords.get("longitude"),
        timestamp_ms=payload.get("timestamp"),
        speed_mps=coords.get("speed"),
        accuracy_m=coords.get("accuracy"),
    )


class BrowserGeolocationSource(GeolocationSource):
    """Geolocation fed by a browser client through the HTTP API."""

    name = "web"
    default_timeout_ms = 10_000
    stop_on_initial_timeout = True

    def __init__(self) -> None:
        self._watches: dict[str, Watch] = {}
        self._supported = True

    @property
    def supported(self) -> bool:
        return self._supported

    def report_capability(self, supported: bool) -> None:
        self._supported = bool(supported)

    async def is_available(self) -> bool:
        return self._supported

    async def start_watching(
        self, options: WatchOptions, on_sample: SampleCallback, on_error: ErrorCallback
    ) -> str:
        if not self._supported:
            raise SourceUnavailable("Geolocation is not supported by this browser.")
        handle = f"web-{uuid.uuid4().hex[:12]}"
        watch = Watch(handle, options, on_sample, on_error)
        self._watches[handle] = watch
        watch.arm_timer()
        logger.info("Opened browser watch %s", handle)
        return handle

    async def stop_watching(self, handle: str) -> None:
        watch = self._watches.pop(handle, None)
        if watch is None:
            return
        watch.close()
        logger.info("Closed browser watch %s", handle)

    def get_watch(self, handle: str) -> Watch | None:
        return self._watches.get(handle)

    def push_position(self, handle: str, payload: dict[str, Any]) -> bool:
        """Deliver one position; returns False when it was dropped as stale.

        Raises:
            KeyError: Unknown or closed handle (the page should stop its watch).
            ValueError: Malformed position payload.
        """
        watch = self._watches.get(handle)
        if watch is None:
            raise KeyError(handle)
        return watch.deliver(parse_browser_position(payload))

    def push_error(self, handle: str, code: int, message: str = "") -> None:
        watch = self._watches.get(handle)
        if watch is None:
            raise KeyError(handle)
        logger.warning("Browser geolocation error on %s (code=%s): %s", handle, code, message)
        watch.fail(geolocation_error_from_code(code, message))
