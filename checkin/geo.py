"""Geofence validation and great-circle distance utilities.

Provides Haversine distance in meters, nearest-station lookup used by
GPS disambiguation, and the geofence check that decides whether a
device location is plausible for a claimed station.  All computations
use the standard library ``math`` module in double precision with no
rounding; display rounding is the caller's concern.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from typing import Final

from checkin.contracts import Coordinates, GeofenceFailure, GeofenceOutcome, Station

logger: Final = logging.getLogger(__name__)

_EARTH_RADIUS_M: Final = 6_371_000.0


def haversine_meters(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Compute great-circle distance between two coordinate pairs.

    Applies the Haversine formula:
    ``a = sin²(dlat/2) + cos(lat1) * cos(lat2) * sin²(dlon/2)``
    ``c = 2 * asin(sqrt(a))``
    ``d = R * c``

    Args:
        lat1: Latitude of the first point in decimal degrees.
        lon1: Longitude of the first point in decimal degrees.
        lat2: Latitude of the second point in decimal degrees.
        lon2: Longitude of the second point in decimal degrees.

    Returns:
        Distance in meters.  Returns ``0.0`` for identical coordinates.
    """
    if lat1 == lat2 and lon1 == lon2:
        return 0.0

    rlat1 = math.radians(lat1)
    rlat2 = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    return _EARTH_RADIUS_M * c


def distance_to(location: Coordinates, coordinates: Coordinates) -> float:
    """Distance in meters between two ``(lat, lon)`` tuples."""
    return haversine_meters(location[0], location[1], coordinates[0], coordinates[1])


def nearest_station(
    location: Coordinates,
    stations: Iterable[Station],
) -> tuple[Station, float]:
    """Return the station closest to ``location`` and its distance.

    Equal distances resolve to the station seen first, so callers
    control tie order through iteration order.

    Raises:
        ValueError: If ``stations`` is empty.
    """
    best: tuple[Station, float] | None = None
    for station in stations:
        distance = distance_to(location, station.coordinates)
        if best is None or distance < best[1]:
            best = (station, distance)
    if best is None:
        msg = "nearest_station requires at least one station"
        raise ValueError(msg)
    return best


def validate_geofence(
    device_location: Coordinates | None,
    station_coordinates: Coordinates,
    radius_meters: int,
    bypass: bool,
) -> GeofenceOutcome:
    """Check a device location against a circular station geofence.

    Args:
        device_location: ``(lat, lon)`` of the device, or None when the
            device reported no fix.
        station_coordinates: ``(lat, lon)`` of the claimed station.
        radius_meters: Geofence radius; must be at least 1.
        bypass: Simulation mode.  The check always passes but the
            distance is still measured when a location is available.

    Returns:
        A GeofenceOutcome.  Failed outcomes carry ``GPS_UNAVAILABLE``
        or ``OUT_OF_RANGE`` in ``failure``.

    Raises:
        ValueError: If ``radius_meters`` is below 1.
    """
    if radius_meters < 1:
        msg = f"Geofence radius must be at least 1 meter, got {radius_meters}"
        raise ValueError(msg)

    distance = (
        None
        if device_location is None
        else distance_to(device_location, station_coordinates)
    )

    if bypass:
        logger.info(
            "Geofence bypassed (simulation mode), distance=%s",
            "n/a" if distance is None else f"{distance:.1f}m",
        )
        return GeofenceOutcome(
            radius_meters=radius_meters,
            passed=True,
            bypassed=True,
            distance_meters=distance,
        )

    if distance is None:
        logger.info("Geofence failed: no device location")
        return GeofenceOutcome(
            radius_meters=radius_meters,
            passed=False,
            failure=GeofenceFailure.GPS_UNAVAILABLE,
        )

    if distance <= radius_meters:
        logger.info("Geofence passed: %.1fm within %dm", distance, radius_meters)
        return GeofenceOutcome(
            radius_meters=radius_meters,
            passed=True,
            distance_meters=distance,
        )

    logger.info("Geofence failed: %.1fm exceeds %dm", distance, radius_meters)
    return GeofenceOutcome(
        radius_meters=radius_meters,
        passed=False,
        distance_meters=distance,
        failure=GeofenceFailure.OUT_OF_RANGE,
    )
