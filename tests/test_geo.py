"""Tests for coordinate parsing and great-circle helpers."""

from __future__ import annotations

import math

import pytest

from dispatch.services.geo import GeoPoint, bounding_box, format_distance_km, haversine_m


class TestGeoPoint:
    """Tests for GeoPoint.parse."""

    @pytest.mark.parametrize(
        "latitude,longitude",
        [
            (None, 77.58),
            (12.9, None),
            ("abc", 77.58),
            (91, 0),
            (0, -181),
            (math.nan, 0),
            (math.inf, 0),
        ],
    )
    def test_rejects_unusable_input(self, latitude, longitude):
        assert GeoPoint.parse(latitude, longitude) is None

    def test_accepts_numeric_strings(self):
        point = GeoPoint.parse("12.9", "77.58")

        assert point == GeoPoint(12.9, 77.58)


class TestHaversine:
    """Tests for haversine_m."""

    def test_zero_distance(self):
        point = GeoPoint(12.9, 77.58)
        assert haversine_m(point, point) == 0

    def test_one_degree_of_latitude(self):
        distance = haversine_m(GeoPoint(0, 0), GeoPoint(1, 0))
        assert distance == pytest.approx(111_195, rel=1e-3)

    def test_symmetric(self):
        a, b = GeoPoint(12.9, 77.58), GeoPoint(12.95, 77.62)
        assert haversine_m(a, b) == pytest.approx(haversine_m(b, a))


class TestBoundingBox:
    """Tests for bounding_box."""

    def test_contains_points_within_radius(self):
        center = GeoPoint(12.9, 77.58)
        box = bounding_box(center, 2_000)

        north = GeoPoint(12.9 + 0.017, 77.58)  # about 1.9 km
        east = GeoPoint(12.9, 77.58 + 0.0175)

        assert haversine_m(center, north) < 2_000
        assert box.contains(north)
        assert box.contains(east)
        assert not box.contains(GeoPoint(13.0, 77.58))

    def test_clamped_at_the_pole(self):
        box = bounding_box(GeoPoint(90, 0), 10_000)
        assert box.max_lat == 90.0
        assert box.min_lng == -180.0
        assert box.max_lng == 180.0


def test_format_distance_km():
    assert format_distance_km(None) is None
    assert format_distance_km(1_549) == 1.5
    assert format_distance_km(12) == 0.0
