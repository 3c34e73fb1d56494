"""
API routes.

Endpoints:
- GET    `/api/state`: live monitoring state (speed, flag, distance, bumps).
- GET    `/api/bumps`: the visible bump collection.
- POST   `/api/monitoring/start` / `/api/monitoring/stop`
- DELETE `/api/bumps`: clear history (the UI asks for confirmation first).
- GET    `/api/settings`: public settings for the web UI (secrets redacted).
- `/api/geolocation/watches/{handle}...`: relay for the browser geolocation backend.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from bumplog.config.settings import get_settings
from bumplog.core.errors import GeolocationError, PermissionDenied
from bumplog.domain.models import MonitoringSnapshot
from bumplog.geolocation.browser import BrowserGeolocationSource
from bumplog.monitoring.controller import MonitoringController

router = APIRouter()


class StartRequest(BaseModel):
    """Sent by the page; browsers without `navigator.geolocation` report it here."""

    geolocation_supported: bool = True


class PositionCoords(BaseModel):
    latitude: float
    longitude: float
    accuracy: float | None = None
    speed: float | None = None
    altitude: float | None = None
    altitudeAccuracy: float | None = None
    heading: float | None = None


class PositionPayload(BaseModel):
    """JSON form of a W3C `GeolocationPosition`."""

    coords: PositionCoords
    timestamp: float


class PositionErrorPayload(BaseModel):
    """JSON form of a W3C `GeolocationPositionError`."""

    code: int = Field(..., ge=1, le=3)
    message: str = ""


def _controller(request: Request) -> MonitoringController:
    return request.app.state.controller


def _browser_source(request: Request) -> BrowserGeolocationSource:
    source = _controller(request).source
    if not isinstance(source, BrowserGeolocationSource):
        raise HTTPException(status_code=409, detail="The browser geolocation backend is not active.")
    return source


def _watch_payload(controller: MonitoringController) -> dict[str, Any] | None:
    handle = controller.watch_handle
    source = controller.source
    if handle is None:
        return None
    out: dict[str, Any] = {"handle": handle, "backend": source.name}
    if isinstance(source, BrowserGeolocationSource):
        watch = source.get_watch(handle)
        if watch is not None:
            out["options"] = _watch_options(watch.options)
    return out


def _watch_options(options: Any) -> dict[str, Any]:
    # Names the page passes straight to navigator.geolocation.watchPosition().
    return {
        "enableHighAccuracy": options.high_accuracy,
        "timeout": options.timeout_ms,
        "maximumAge": options.max_cached_age_ms,
    }


@router.get("/api/state", response_model=MonitoringSnapshot)
async def get_state(request: Request) -> MonitoringSnapshot:
    return _controller(request).snapshot()


@router.get("/api/bumps")
async def get_bumps(request: Request) -> dict:
    bumps = _controller(request).bumps
    return {"count": len(bumps), "bumps": [b.model_dump(mode="json") for b in bumps]}


@router.delete("/api/bumps")
async def clear_bumps(request: Request) -> dict:
    await _controller(request).clear_history()
    return {"cleared": True}


@router.post("/api/monitoring/start")
async def start_monitoring(request: Request, body: StartRequest | None = None) -> dict:
    controller = _controller(request)
    source = controller.source
    if isinstance(source, BrowserGeolocationSource):
        source.report_capability((body or StartRequest()).geolocation_supported)
    try:
        await controller.start()
    except PermissionDenied as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except GeolocationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"is_monitoring": controller.is_monitoring, "watch": _watch_payload(controller)}


@router.post("/api/monitoring/stop")
async def stop_monitoring(request: Request) -> dict:
    controller = _controller(request)
    await controller.stop()
    return {"is_monitoring": controller.is_monitoring}


@router.get("/api/settings")
async def get_public_settings(request: Request) -> dict:
    """Return settings the web UI needs (store key redacted)."""
    settings = get_settings()
    return {
        "app": settings.app.model_dump(),
        "detection": settings.detection.model_dump(),
        "geolocation": {"backend": _controller(request).source.name},
        "map": settings.map.model_dump(),
        "store": {
            "url": settings.store.url,
            "anon_key_configured": bool(settings.store.anon_key),
            "realtime_enabled": settings.store.realtime.enabled,
            "outbox_enabled": settings.store.outbox.enabled,
        },
    }


@router.get("/api/geolocation/watches/{handle}")
async def get_watch(handle: str, request: Request) -> dict:
    watch = _browser_source(request).get_watch(handle)
    if watch is None:
        raise HTTPException(status_code=404, detail=f"No open watch {handle!r}")
    return {"handle": handle, "options": _watch_options(watch.options)}


@router.post("/api/geolocation/watches/{handle}/positions")
async def post_position(handle: str, body: PositionPayload, request: Request) -> dict:
    source = _browser_source(request)
    try:
        accepted = source.push_position(handle, body.model_dump())
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"No open watch {handle!r}") from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    controller = _controller(request)
    return {
        "accepted": accepted,
        "current_speed": controller.current_speed,
        "distance_to_nearest": controller.distance_to_nearest,
    }


@router.post("/api/geolocation/watches/{handle}/errors")
async def post_position_error(handle: str, body: PositionErrorPayload, request: Request) -> dict:
    source = _browser_source(request)
    try:
        source.push_error(handle, body.code, body.message)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"No open watch {handle!r}") from exc
    return {"is_monitoring": _controller(request).is_monitoring}
