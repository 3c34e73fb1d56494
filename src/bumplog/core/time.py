"""
Timestamp conversion helpers.

Geolocation backends report epoch milliseconds; the store speaks ISO-8601. All
datetimes handled by the package are timezone-aware UTC.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def from_epoch_ms(ms: float) -> datetime:
    return datetime.fromtimestamp(float(ms) / 1000.0, tz=timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    return int(round(ensure_utc(dt).timestamp() * 1000))


def parse_datetime(value: str) -> datetime:
    """Parse ISO-8601 datetime string and ensure tzinfo is present.

    Notes:
    - Accepts a trailing `Z` (UTC) and converts it to `+00:00` for `fromisoformat`.
    - Naive values are treated as UTC.
    """
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def to_iso(dt: datetime) -> str:
    """Format as ISO-8601 with millisecond precision and a `Z` suffix."""
    return ensure_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def days_ago(days: int, *, now: datetime | None = None) -> datetime:
    return (now or utc_now()) - timedelta(days=days)
