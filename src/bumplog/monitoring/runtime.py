"""Wiring helpers shared by the CLI and the API."""

from __future__ import annotations

from bumplog.config.settings import Settings
from bumplog.core.cache import LocalCache
from bumplog.core.env import resolve_project_path
from bumplog.geolocation.base import GeolocationSource
from bumplog.geolocation.select import select_source
from bumplog.monitoring.controller import DetectionHook, MonitoringController
from bumplog.store.client import SupabaseStoreClient
from bumplog.store.gateway import PersistenceGateway


def build_cache(settings: Settings) -> LocalCache:
    """Create the local cache based on settings."""
    return LocalCache(
        base_dir=resolve_project_path(settings.cache.dir),
        enabled=bool(settings.cache.enabled),
    )


def build_gateway(settings: Settings) -> PersistenceGateway:
    return PersistenceGateway(
        settings,
        store=SupabaseStoreClient(settings),
        cache=build_cache(settings),
    )


async def build_controller(
    settings: Settings,
    *,
    source: GeolocationSource | None = None,
    on_detection: DetectionHook | None = None,
) -> MonitoringController:
    """Build a controller with a selected backend and an activated gateway."""
    if source is None:
        source = await select_source(settings.geolocation)
    gateway = build_gateway(settings)
    controller = MonitoringController(settings, source=source, gateway=gateway, on_detection=on_detection)
    await gateway.activate()
    return controller
