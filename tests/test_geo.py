"""
tests/test_geo.py — Geofence Proximity Tests
=============================================
Covers haversine distance, the inclusive radius check and coordinate
validation.
"""

from __future__ import annotations

import math

import pytest

from photoquest.engine.geo import (
    Coordinate,
    distance_km,
    is_within_radius,
    proximity,
)

TARGET = Coordinate(37.7694, -122.4862)


def _north_of(origin: Coordinate, meters: float) -> Coordinate:
    """Point *meters* due north of *origin* on the 6371 km sphere."""
    dlat = math.degrees(meters / 6_371_000)
    return Coordinate(origin.latitude + dlat, origin.longitude)


class TestDistance:
    def test_same_point_is_zero(self):
        assert distance_km(TARGET, TARGET) == 0.0

    def test_symmetric(self):
        other = Coordinate(40.7128, -74.0060)
        assert distance_km(TARGET, other) == pytest.approx(distance_km(other, TARGET))

    def test_san_francisco_to_new_york(self):
        nyc = Coordinate(40.7128, -74.0060)
        assert distance_km(TARGET, nyc) == pytest.approx(4135, rel=0.02)

    def test_one_degree_of_latitude(self):
        a = Coordinate(0.0, 0.0)
        b = Coordinate(1.0, 0.0)
        assert distance_km(a, b) == pytest.approx(111.195, rel=1e-4)

    def test_antipodal_points_do_not_fail(self):
        a = Coordinate(0.0, 0.0)
        b = Coordinate(0.0, 180.0)
        assert distance_km(a, b) == pytest.approx(math.pi * 6371.0)


class TestRadius:
    def test_inside(self):
        assert is_within_radius(_north_of(TARGET, 30), TARGET, 50)

    def test_outside(self):
        """120 m away from a 50 m geofence is out of range."""
        result = proximity(_north_of(TARGET, 120), TARGET, 50)
        assert not result.inside
        assert result.distance_m == pytest.approx(120, abs=0.5)

    def test_boundary_is_inclusive(self):
        user = _north_of(TARGET, 50)
        exact = distance_km(user, TARGET) * 1000
        assert is_within_radius(user, TARGET, exact)

    def test_zero_radius_only_matches_exact_point(self):
        assert is_within_radius(TARGET, TARGET, 0)
        assert not is_within_radius(_north_of(TARGET, 1), TARGET, 0)


class TestCoordinate:
    @pytest.mark.parametrize("lat,lon", [
        (91.0, 0.0),
        (-90.5, 0.0),
        (0.0, 180.1),
        (0.0, -181.0),
        (float("nan"), 0.0),
        (0.0, float("inf")),
    ])
    def test_rejects_invalid(self, lat, lon):
        with pytest.raises(ValueError):
            Coordinate(lat, lon)

    def test_rejects_non_numbers(self):
        with pytest.raises(ValueError):
            Coordinate("37.7", -122.4)
        with pytest.raises(ValueError):
            Coordinate(True, 0.0)

    def test_rejects_negative_accuracy(self):
        with pytest.raises(ValueError):
            Coordinate(0.0, 0.0, accuracy=-1.0)

    def test_poles_and_date_line_are_valid(self):
        Coordinate(90.0, 180.0)
        Coordinate(-90.0, -180.0)

    def test_from_mapping(self):
        c = Coordinate.from_mapping({"latitude": 1.5, "longitude": 2.5, "accuracy": 8})
        assert (c.latitude, c.longitude, c.accuracy) == (1.5, 2.5, 8)

    def test_from_mapping_missing_key(self):
        with pytest.raises(ValueError, match="longitude"):
            Coordinate.from_mapping({"latitude": 1.0})
