"""Great-circle distance and coordinate helpers."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

EARTH_RADIUS_M = 6_371_000.0
METERS_PER_DEGREE_LAT = 111_320.0


@dataclass(frozen=True)
class GeoPoint:
    """A validated WGS84 point."""

    latitude: float
    longitude: float

    @classmethod
    def parse(cls, latitude: Any, longitude: Any) -> Optional[GeoPoint]:
        """Build a point from loosely typed input, or None if it is not usable."""
        lat = _to_float(latitude)
        lng = _to_float(longitude)
        if lat is None or lng is None:
            return None
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
            return None
        return cls(lat, lng)


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, point: GeoPoint) -> bool:
        return (
            self.min_lat <= point.latitude <= self.max_lat
            and self.min_lng <= point.longitude <= self.max_lng
        )


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in meters."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.longitude - a.longitude)

    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bounding_box(center: GeoPoint, radius_m: float) -> BoundingBox:
    """Smallest lat/lng rectangle containing the circle around ``center``.

    Used as an index-friendly SQL prefilter; exact radius filtering is done
    with :func:`haversine_m` afterwards.
    """
    d_lat = radius_m / METERS_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(center.latitude))
    if cos_lat < 1e-6:
        d_lng = 180.0
    else:
        d_lng = min(180.0, radius_m / (METERS_PER_DEGREE_LAT * cos_lat))

    return BoundingBox(
        min_lat=max(-90.0, center.latitude - d_lat),
        max_lat=min(90.0, center.latitude + d_lat),
        min_lng=max(-180.0, center.longitude - d_lng),
        max_lng=min(180.0, center.longitude + d_lng),
    )


def format_distance_km(distance_m: Optional[float]) -> Optional[float]:
    """Kilometers rounded to one decimal, for display."""
    if distance_m is None:
        return None
    return round(distance_m / 1000.0, 1)
