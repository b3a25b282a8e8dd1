"""Tests for great-circle distance and geofence validation.

Covers Haversine accuracy against known distances, the geofence
boundary, the two failure classes, simulation bypass, radius
validation, and nearest-station lookup.
"""

from __future__ import annotations

import math

import pytest

from checkin.contracts import GeofenceFailure, Station
from checkin.geo import haversine_meters, nearest_station, validate_geofence

_KINGS_CROSS = (51.5308, -0.1238)


def _north(coordinates: tuple[float, float], meters: float) -> tuple[float, float]:
    """Point exactly ``meters`` due north along the meridian."""
    return (coordinates[0] + math.degrees(meters / 6_371_000.0), coordinates[1])


class TestHaversine:
    """Validate distance computation."""

    def test_identical_points(self) -> None:
        assert haversine_meters(51.5, -0.1, 51.5, -0.1) == 0.0

    def test_one_degree_of_latitude(self) -> None:
        expected = 6_371_000.0 * math.radians(1.0)
        assert haversine_meters(0.0, 0.0, 1.0, 0.0) == pytest.approx(expected)

    def test_meridian_offset_is_exact(self) -> None:
        north = _north(_KINGS_CROSS, 612.0)
        distance = haversine_meters(*_KINGS_CROSS, *north)
        assert distance == pytest.approx(612.0, abs=1e-6)

    def test_symmetric(self) -> None:
        a = haversine_meters(51.5308, -0.1238, 51.4927, -0.2240)
        b = haversine_meters(51.4927, -0.2240, 51.5308, -0.1238)
        assert a == pytest.approx(b)

    def test_london_to_paris(self) -> None:
        # Charing Cross to Notre-Dame, roughly 343 km
        distance = haversine_meters(51.5074, -0.1278, 48.8530, 2.3499)
        assert 335_000 < distance < 350_000


class TestValidateGeofence:
    """Validate geofence outcomes."""

    def test_inside_radius_passes(self) -> None:
        outcome = validate_geofence(_north(_KINGS_CROSS, 50.0), _KINGS_CROSS, 500, False)
        assert outcome.passed
        assert not outcome.bypassed
        assert outcome.failure is None
        assert outcome.distance_meters == pytest.approx(50.0, abs=1e-6)
        assert outcome.radius_meters == 500

    def test_on_boundary_passes(self) -> None:
        outcome = validate_geofence(_KINGS_CROSS, _KINGS_CROSS, 1, False)
        assert outcome.passed

    def test_outside_radius_fails(self) -> None:
        outcome = validate_geofence(_north(_KINGS_CROSS, 612.0), _KINGS_CROSS, 500, False)
        assert not outcome.passed
        assert outcome.failure is GeofenceFailure.OUT_OF_RANGE
        assert outcome.distance_meters == pytest.approx(612.0, abs=1e-6)

    def test_distance_is_not_rounded(self) -> None:
        outcome = validate_geofence(_north(_KINGS_CROSS, 123.456), _KINGS_CROSS, 500, False)
        assert outcome.distance_meters == pytest.approx(123.456, abs=1e-6)

    def test_no_location_is_gps_unavailable(self) -> None:
        outcome = validate_geofence(None, _KINGS_CROSS, 500, False)
        assert not outcome.passed
        assert outcome.failure is GeofenceFailure.GPS_UNAVAILABLE
        assert outcome.distance_meters is None

    def test_bypass_passes_far_away(self) -> None:
        outcome = validate_geofence(_north(_KINGS_CROSS, 5_000.0), _KINGS_CROSS, 500, True)
        assert outcome.passed
        assert outcome.bypassed
        assert outcome.failure is None
        assert outcome.distance_meters == pytest.approx(5_000.0, abs=1e-5)

    def test_bypass_without_location(self) -> None:
        outcome = validate_geofence(None, _KINGS_CROSS, 500, True)
        assert outcome.passed
        assert outcome.bypassed
        assert outcome.distance_meters is None

    @pytest.mark.parametrize("radius", [0, -10])
    def test_invalid_radius_raises(self, radius: int) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            validate_geofence(_KINGS_CROSS, _KINGS_CROSS, radius, False)


class TestNearestStation:
    """Validate nearest-station lookup."""

    def test_picks_closest(self) -> None:
        near = Station(id="A", canonical_name="Near", coordinates=(51.5010, -0.1000))
        far = Station(id="B", canonical_name="Far", coordinates=(51.5300, -0.1000))
        station, distance = nearest_station((51.5000, -0.1000), [far, near])
        assert station is near
        assert distance == pytest.approx(6_371_000.0 * math.radians(0.001))

    def test_equal_distance_keeps_first(self) -> None:
        listed_first = Station(id="N", canonical_name="North", coordinates=(51.501, -0.1))
        listed_second = Station(id="S", canonical_name="South", coordinates=(51.501, -0.1))
        station, _ = nearest_station((51.5, -0.1), [listed_first, listed_second])
        assert station is listed_first

    def test_empty_raises(self) -> None:
        with pytest.raises(ValueError, match="at least one"):
            nearest_station((51.5, -0.1), [])
