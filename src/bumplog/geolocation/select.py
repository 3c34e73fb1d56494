"""Backend selection: native gpsd when reachable, browser relay otherwise."""

from __future__ import annotations

import logging

from bumplog.config.settings import GeolocationSettings
from bumplog.geolocation.base import GeolocationSource, WatchOptions
from bumplog.geolocation.browser import BrowserGeolocationSource
from bumplog.geolocation.gpsd import GpsdGeolocationSource

logger = logging.getLogger(__name__)


async def select_source(
    settings: GeolocationSettings,
    *,
    native: GeolocationSource | None = None,
    web: GeolocationSource | None = None,
) -> GeolocationSource:
    """Pick the backend named in settings, or probe for gpsd when it is `auto`."""
    native = native or GpsdGeolocationSource(settings.gpsd)
    web = web or BrowserGeolocationSource()

    if settings.backend == "native":
        return native
    if settings.backend == "web":
        return web

    if await native.is_available():
        logger.info("Using native (gpsd) geolocation backend")
        return native
    logger.info("gpsd not reachable; using browser geolocation backend")
    return web


def watch_options_for(source: GeolocationSource, settings: GeolocationSettings) -> WatchOptions:
    """Watch options the controller opens with: best accuracy, no cached fixes."""
    if source.name == "native":
        timeout_ms = settings.native_timeout_ms
    elif source.name == "web":
        timeout_ms = settings.web_timeout_ms
    else:
        timeout_ms = source.default_timeout_ms
    return WatchOptions(
        high_accuracy=settings.high_accuracy,
        timeout_ms=timeout_ms,
        max_cached_age_ms=settings.max_cached_age_ms,
    )
