"""Generate station_registry.csv from the TfL station GeoJSON.

Fetches the station FeatureCollection, caches the raw JSON for
reproducibility, keeps station-level features only, validates
coordinates against the Greater London bounding box, and writes the
seed CSV consumed by ``checkin.registry.load_registry_csv``.

Feature parsing and the station-level id filter are shared with
``checkin.registry.load_registry_geojson``.

Usage:
    python -m checkin.generate_station_registry
    python -m checkin.generate_station_registry --from-cache
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Any, Final

from checkin.contracts import Station
from checkin.registry import (
    RegistryError,
    RegistryFetchError,
    StationRegistry,
    feature_to_station,
    fetch_geojson,
    read_geojson,
    save_geojson,
    write_registry_csv,
)

logger: Final = logging.getLogger(__name__)

_GEOJSON_URL: Final = (
    "https://raw.githubusercontent.com/oobrien/vis/master/tubecreature/data/tfl_stations.json"
)
_CACHE_PATH: Final = Path("data/working/tfl_stations.json")
_OUTPUT_PATH: Final = Path("seeds/station_registry.csv")

_DEFAULT_ZONE: Final = "1"

# Greater London plus the outer Metropolitan and Elizabeth line termini
_LAT_MIN: Final = 51.25
_LAT_MAX: Final = 51.80
_LON_MIN: Final = -1.05
_LON_MAX: Final = 0.40


def _in_london(station: Station) -> bool:
    lat, lon = station.coordinates
    return _LAT_MIN <= lat <= _LAT_MAX and _LON_MIN <= lon <= _LON_MAX


def parse_stations(data: dict[str, Any]) -> list[Station]:
    """Extract seed stations from a TfL station FeatureCollection.

    Features are converted with ``checkin.registry.feature_to_station``,
    so only station-level Point features survive.  Stations with
    malformed coordinates, a blank name, a position outside the London
    bounding box, or an id already seen are logged and skipped.  A
    missing zone defaults to zone 1.

    Returns:
        Stations sorted by id.
    """
    stations: dict[str, Station] = {}

    for feature in data.get("features", []):
        try:
            station = feature_to_station(feature)
        except RegistryError as exc:
            logger.warning("Skipping feature: %s", exc)
            continue
        if station is None:
            continue

        if not station.canonical_name:
            logger.warning("Skipping station %s with blank name", station.id)
            continue

        if not _in_london(station):
            logger.warning(
                "Station %s (%.6f, %.6f) outside London bbox",
                station.id,
                station.latitude,
                station.longitude,
            )
            continue

        if station.id in stations:
            logger.warning("Duplicate station_id: %s", station.id)
            continue

        if not station.zone:
            station = dataclasses.replace(station, zone=_DEFAULT_ZONE)
        stations[station.id] = station

    return sorted(stations.values(), key=lambda s: s.id)


def validate_stations(stations: list[Station]) -> StationRegistry:
    """Build the registry the seed will load into.

    Raises:
        ValueError: If no stations were parsed.
        RegistryError: If the stations do not form a valid registry.
    """
    if not stations:
        msg = "No stations parsed from GeoJSON data"
        raise ValueError(msg)

    registry = StationRegistry(stations)
    logger.info("Validation passed: %d stations", len(registry))
    return registry


def main(argv: list[str] | None = None) -> int:
    """Entry point: fetch, parse, validate, and write the station registry."""
    parser = argparse.ArgumentParser(
        description="Generate station_registry.csv from TfL station GeoJSON",
    )
    parser.add_argument(
        "--from-cache",
        action="store_true",
        help="Read from cached JSON instead of fetching the GeoJSON",
    )
    parser.add_argument(
        "--url",
        default=_GEOJSON_URL,
        help="GeoJSON source URL",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )

    if args.from_cache:
        if not _CACHE_PATH.exists():
            logger.error("Cache file not found: %s", _CACHE_PATH)
            return 1
        data = read_geojson(_CACHE_PATH)
    else:
        try:
            data = fetch_geojson(args.url)
        except RegistryFetchError as exc:
            logger.error("Station GeoJSON request failed: HTTP %d", exc.status_code)
            return 1
        save_geojson(data, _CACHE_PATH)

    registry = validate_stations(parse_stations(data))
    output = write_registry_csv(registry, _OUTPUT_PATH)
    print(f"Wrote {len(registry)} stations to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
