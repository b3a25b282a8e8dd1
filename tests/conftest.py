"""Shared pytest fixtures for the check-in pipeline tests.

Builds a small London station registry programmatically.  File fixtures
(seed CSV, GeoJSON) are written into ``tmp_path`` so no data files are
committed.  The registry deliberately includes two stations named
"Hammersmith" on different lines and two near-identical "Shepherd's
Bush" names to exercise disambiguation.
"""

from __future__ import annotations

import csv
import json
from typing import TYPE_CHECKING, Any

import pytest

from checkin.contracts import Station
from checkin.ledger import InMemoryVisitLedger
from checkin.registry import CSV_COLUMNS, StationRegistry

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Reference stations
# ---------------------------------------------------------------------------

KINGS_CROSS = Station(
    id="KSX",
    canonical_name="King's Cross St. Pancras",
    coordinates=(51.5308, -0.1238),
    aliases=frozenset({"Kings Cross St Pancras", "King's Cross"}),
    zone="1",
    lines=frozenset(
        {"Circle", "Hammersmith & City", "Metropolitan", "Northern", "Piccadilly", "Victoria"}
    ),
)

HAMMERSMITH_DP = Station(
    id="HSD",
    canonical_name="Hammersmith",
    coordinates=(51.4927, -0.2240),
    zone="2",
    lines=frozenset({"District", "Piccadilly"}),
)

HAMMERSMITH_HC = Station(
    id="HSC",
    canonical_name="Hammersmith",
    coordinates=(51.4936, -0.2251),
    zone="2",
    lines=frozenset({"Circle", "Hammersmith & City"}),
)

BOND_STREET = Station(
    id="BND",
    canonical_name="Bond Street",
    coordinates=(51.5142, -0.1494),
    zone="1",
    lines=frozenset({"Central", "Jubilee", "Elizabeth"}),
)

BAKER_STREET = Station(
    id="BST",
    canonical_name="Baker Street",
    coordinates=(51.5226, -0.1571),
    zone="1",
    lines=frozenset(
        {"Bakerloo", "Circle", "Hammersmith & City", "Jubilee", "Metropolitan"}
    ),
)

EUSTON = Station(
    id="EUS",
    canonical_name="Euston",
    coordinates=(51.5282, -0.1337),
    zone="1",
    lines=frozenset({"Northern", "Victoria"}),
)

VICTORIA = Station(
    id="VIC",
    canonical_name="Victoria",
    coordinates=(51.4965, -0.1447),
    zone="1",
    lines=frozenset({"Circle", "District", "Victoria"}),
)

BANK = Station(
    id="BNK",
    canonical_name="Bank",
    coordinates=(51.5133, -0.0886),
    aliases=frozenset({"Bank and Monument", "Monument"}),
    zone="1",
    lines=frozenset({"Central", "Northern", "Waterloo & City"}),
)

SHEPHERDS_BUSH_MARKET = Station(
    id="SBM",
    canonical_name="Shepherd's Bush Market",
    coordinates=(51.5058, -0.2265),
    zone="2",
    lines=frozenset({"Circle", "Hammersmith & City"}),
)

SHEPHERDS_BUSH = Station(
    id="SBC",
    canonical_name="Shepherd's Bush",
    coordinates=(51.5046, -0.2187),
    zone="2",
    lines=frozenset({"Central"}),
)

LONDON_STATIONS: tuple[Station, ...] = (
    KINGS_CROSS,
    HAMMERSMITH_DP,
    HAMMERSMITH_HC,
    BOND_STREET,
    BAKER_STREET,
    EUSTON,
    VICTORIA,
    BANK,
    SHEPHERDS_BUSH_MARKET,
    SHEPHERDS_BUSH,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry() -> StationRegistry:
    """Ten-station London registry."""
    return StationRegistry(LONDON_STATIONS)


@pytest.fixture
def ledger() -> InMemoryVisitLedger:
    """Empty in-memory ledger with the duplicate guard enabled."""
    return InMemoryVisitLedger()


def _csv_row(station: Station) -> dict[str, str]:
    return {
        "station_id": station.id,
        "canonical_name": station.canonical_name,
        "aliases": "|".join(sorted(station.aliases)),
        "zone": station.zone,
        "latitude": f"{station.latitude:.6f}",
        "longitude": f"{station.longitude:.6f}",
        "lines": "|".join(sorted(station.lines)),
    }


@pytest.fixture
def registry_csv(tmp_path: Path) -> Path:
    """Seed CSV containing every reference station."""
    path = tmp_path / "station_registry.csv"
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        writer.writerows(_csv_row(s) for s in LONDON_STATIONS)
    return path


def _feature(
    station_id: str,
    name: str,
    lat: float,
    lon: float,
    *,
    lines: list[str] | None = None,
    zone: str = "1",
    aliases: list[str] | None = None,
) -> dict[str, Any]:
    """Build a TfL-style GeoJSON station feature."""
    props: dict[str, Any] = {
        "id": station_id,
        "name": name,
        "zone": zone,
        "lines": [{"name": line} for line in lines or []],
    }
    if aliases is not None:
        props["aliases"] = aliases
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lon, lat]},
        "properties": props,
    }


def _collection(features: list[dict[str, Any]]) -> dict[str, Any]:
    """Wrap features in a FeatureCollection."""
    return {"type": "FeatureCollection", "features": features}


@pytest.fixture
def station_geojson() -> dict[str, Any]:
    """GeoJSON with three stations (two sharing a name) and a LineString."""
    return _collection(
        [
            _feature(
                "940GZZLUHSD",
                "Hammersmith",
                51.4927,
                -0.2240,
                lines=["District", "Piccadilly"],
                zone="2",
            ),
            _feature(
                "940GZZLUHSC",
                "Hammersmith",
                51.4936,
                -0.2251,
                lines=["Circle", "Hammersmith & City"],
                zone="2",
            ),
            _feature(
                "940GZZLUBND",
                "Bond Street",
                51.5142,
                -0.1494,
                lines=["Central", "Jubilee"],
                aliases=["Bond St"],
            ),
            {
                "type": "Feature",
                "geometry": {
                    "type": "LineString",
                    "coordinates": [[-0.2240, 51.4927], [-0.1494, 51.5142]],
                },
                "properties": {"id": "route-1", "name": "Segment"},
            },
        ]
    )


@pytest.fixture
def registry_geojson(tmp_path: Path, station_geojson: dict[str, Any]) -> Path:
    """GeoJSON file written from ``station_geojson``."""
    path = tmp_path / "stations.geojson"
    path.write_text(json.dumps(station_geojson), encoding="utf-8")
    return path
