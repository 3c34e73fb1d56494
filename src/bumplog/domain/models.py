"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- geolocation backends produce `PositionSample`
- the detector emits `Detection`
- the store speaks `NewSpeedBump` (insert payload) and `SpeedBumpEvent` (stored row)
- the controller exposes `MonitoringSnapshot` to the API/CLI
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from bumplog.core.geo import GeoPoint
from bumplog.core.time import ensure_utc, from_epoch_ms, to_iso


class PositionSample(BaseModel):
    """One fix from a geolocation backend (consumed once, never persisted)."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp_ms: float
    speed_mps: float = 0.0
    accuracy_m: float = 0.0

    @field_validator("speed_mps", "accuracy_m", mode="before")
    @classmethod
    def _absent_as_zero(cls, value: Any) -> Any:
        # Browsers report `null` speed when stationary or without a GPS fix.
        return 0.0 if value is None else value

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(lat=self.latitude, lon=self.longitude)


class Detection(BaseModel):
    """A triggered speed-drop, before it has been persisted."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    speed_kmh: float
    previous_speed_kmh: float
    timestamp_ms: float
    accuracy_m: float
    large_drop: bool = False
    near_stop: bool = False


class NewSpeedBump(BaseModel):
    """Insert payload for the `speed_bumps` table."""

    latitude: float
    longitude: float
    speed: float
    detected_at: str
    accuracy: float | None = None

    @classmethod
    def from_detection(cls, detection: Detection) -> "NewSpeedBump":
        return cls(
            latitude=detection.latitude,
            longitude=detection.longitude,
            speed=detection.speed_kmh,
            detected_at=to_iso(from_epoch_ms(detection.timestamp_ms)),
            accuracy=detection.accuracy_m,
        )


class SpeedBumpEvent(BaseModel):
    """A stored speed bump row. Immutable once the store has assigned its id."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    latitude: float
    longitude: float
    speed: float
    detected_at: datetime
    created_at: datetime
    accuracy: float | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        # Tables keyed by bigint serial come back as ints.
        return str(value) if isinstance(value, int) else value

    @field_validator("detected_at", "created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def maps_url(self) -> str:
        return f"https://www.google.com/maps?q={self.latitude},{self.longitude}"


class MonitoringSnapshot(BaseModel):
    """Read-only view of the controller state for the presentation layer."""

    is_monitoring: bool
    current_speed: float
    distance_to_nearest: float | None = None
    last_position: PositionSample | None = None
    last_error: str | None = None
    bump_count: int = 0
    bumps: list[SpeedBumpEvent] = Field(default_factory=list)
