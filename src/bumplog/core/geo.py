from __future__ import annotations
from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt
from typing import Iterable, Protocol

"""
Proximity helpers.

Distances to logged bumps are recomputed from scratch on every position or
collection change; a linear scan is fine for the low hundreds of events a
session holds.
"""

EARTH_RADIUS_M = 6_371_000


class HasLatLon(Protocol):
    latitude: float
    longitude: float


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Compute great-circle distance in meters between two points."""
    lat1 = radians(a.lat)
    lon1 = radians(a.lon)
    lat2 = radians(b.lat)
    lon2 = radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(1.0, h)))


def nearest_distance_m(point: GeoPoint, items: Iterable[HasLatLon]) -> float | None:
    """Return the distance to the closest item, or None when there are no items."""
    best: float | None = None
    for item in items:
        d = haversine_m(point, GeoPoint(lat=item.latitude, lon=item.longitude))
        if best is None or d < best:
            best = d
    return best
