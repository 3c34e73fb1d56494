from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from bumplog.config.settings import Settings
from bumplog.core.cache import LocalCache
from bumplog.core.errors import PermissionDenied, StoreUnavailable
from bumplog.domain.models import NewSpeedBump, PositionSample, SpeedBumpEvent
from bumplog.geolocation.base import GeolocationSource, WatchOptions
from bumplog.store.gateway import PersistenceGateway

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_event(event_id: str, *, days_ago: float = 0, lat: float = 52.0, lon: float = 13.0) -> SpeedBumpEvent:
    detected = NOW - timedelta(days=days_ago)
    return SpeedBumpEvent(
        id=event_id,
        latitude=lat,
        longitude=lon,
        speed=4.0,
        detected_at=detected,
        created_at=detected,
        accuracy=5.0,
    )


def sample(kmh: float, *, ts: float, lat: float = 52.0, lon: float = 13.0) -> PositionSample:
    return PositionSample(latitude=lat, longitude=lon, timestamp_ms=ts, speed_mps=kmh / 3.6, accuracy_m=4.0)


class FakeStore:
    """In-memory stand-in for the Supabase table."""

    def __init__(self, rows: list[SpeedBumpEvent] | None = None):
        self.rows = list(rows or [])
        self.fail_select = False
        self.fail_insert = False
        self.fail_delete = False
        self.inserted: list[NewSpeedBump] = []
        self.delete_cutoffs: list[datetime] = []
        self.select_limits: list[int] = []
        self.closed = False
        self.next_ids = (f"srv-{n}" for n in itertools.count(1))

    async def select_recent(self, limit: int) -> list[SpeedBumpEvent]:
        self.select_limits.append(limit)
        if self.fail_select:
            raise StoreUnavailable("select", "connection refused")
        return sorted(self.rows, key=lambda e: e.detected_at, reverse=True)[:limit]

    async def insert(self, payload: NewSpeedBump) -> SpeedBumpEvent:
        if self.fail_insert:
            raise StoreUnavailable("insert", "connection refused")
        self.inserted.append(payload)
        event = SpeedBumpEvent(
            id=next(self.next_ids),
            latitude=payload.latitude,
            longitude=payload.longitude,
            speed=payload.speed,
            detected_at=payload.detected_at,
            created_at=NOW,
            accuracy=payload.accuracy,
        )
        self.rows.append(event)
        return event

    async def delete_since(self, cutoff: datetime) -> None:
        self.delete_cutoffs.append(cutoff)
        if self.fail_delete:
            raise StoreUnavailable("delete", "connection refused")
        self.rows = [r for r in self.rows if r.detected_at < cutoff]

    async def aclose(self) -> None:
        self.closed = True


class FakeRealtime:
    def __init__(self, on_insert):
        self.on_insert = on_insert
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True


class FakeSource(GeolocationSource):
    """Geolocation backend driven by the test."""

    name = "fake"
    default_timeout_ms = 1000

    def __init__(self, *, stop_on_initial_timeout: bool = False, deny: bool = False):
        self.stop_on_initial_timeout = stop_on_initial_timeout
        self.deny = deny
        self.started: list[WatchOptions] = []
        self.stopped: list[str] = []
        self.on_sample = None
        self.on_error = None

    async def start_watching(self, options, on_sample, on_error) -> str:
        if self.deny:
            raise PermissionDenied("Location permission is required")
        self.started.append(options)
        self.on_sample = on_sample
        self.on_error = on_error
        return f"watch-{len(self.started)}"

    async def stop_watching(self, handle: str) -> None:
        self.stopped.append(handle)

    def emit(self, s: PositionSample) -> None:
        self.on_sample(s)

    def fail(self, error) -> None:
        self.on_error(error)


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def cache(tmp_path) -> LocalCache:
    return LocalCache(tmp_path, enabled=True)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def realtimes() -> list[FakeRealtime]:
    return []


@pytest.fixture
def gateway(settings, store, cache, realtimes) -> PersistenceGateway:
    def factory(on_insert):
        rt = FakeRealtime(on_insert)
        realtimes.append(rt)
        return rt

    return PersistenceGateway(settings, store=store, cache=cache, realtime_factory=factory, now=lambda: NOW)
