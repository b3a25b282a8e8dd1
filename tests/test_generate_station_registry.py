"""Tests for station registry seed generation.

Validates GeoJSON feature filtering, the London bounding box, registry
validation, and the fetch and cache paths through the command-line
entry point.
"""

from __future__ import annotations

import csv
from typing import TYPE_CHECKING, Any, Final

import httpx
import pytest
import respx

from checkin.contracts import Station
from checkin.generate_station_registry import (
    _GEOJSON_URL,
    main,
    parse_stations,
    validate_stations,
)
from checkin.registry import CSV_COLUMNS, RegistryError, load_registry_csv, save_geojson

if TYPE_CHECKING:
    from pathlib import Path

_BOND_STREET: Final[dict[str, Any]] = {
    "type": "Feature",
    "geometry": {"type": "Point", "coordinates": [-0.1494, 51.5142]},
    "properties": {
        "id": "940GZZLUBND",
        "name": "Bond Street",
        "zone": "1",
        "lines": [{"name": "Jubilee"}, {"name": "Central"}],
    },
}

_PADDINGTON_HUB: Final[dict[str, Any]] = {
    "type": "Feature",
    "geometry": {"type": "Point", "coordinates": [-0.1759, 51.5154]},
    "properties": {
        "id": "HUBPAD",
        "name": "Paddington",
        "lines": [{"name": "Elizabeth"}, {"name": "Bakerloo"}],
        "aliases": ["London Paddington"],
    },
}

_STRATFORD_RAIL: Final[dict[str, Any]] = {
    "type": "Feature",
    "geometry": {"type": "Point", "coordinates": [-0.0036, 51.5416]},
    "properties": {"id": "910GSTFD", "name": "Stratford", "zone": "2/3"},
}

_PLATFORM: Final[dict[str, Any]] = {
    "type": "Feature",
    "geometry": {"type": "Point", "coordinates": [-0.1494, 51.5142]},
    "properties": {"id": "9400ZZLUBND1", "name": "Bond Street Platform 1"},
}


def _make_geojson(features: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """Build a minimal station FeatureCollection for testing."""
    return {
        "type": "FeatureCollection",
        "features": features if features is not None else [_BOND_STREET],
    }


def _with(feature: dict[str, Any], **props: Any) -> dict[str, Any]:
    return {**feature, "properties": {**feature["properties"], **props}}


class TestParseStations:
    """Validate GeoJSON to station conversion."""

    def test_parse_valid_station(self) -> None:
        stations = parse_stations(_make_geojson())
        assert stations == [
            Station(
                id="940GZZLUBND",
                canonical_name="Bond Street",
                coordinates=(51.5142, -0.1494),
                zone="1",
                lines=frozenset({"Central", "Jubilee"}),
            )
        ]

    def test_keeps_hub_and_rail_ids(self) -> None:
        stations = parse_stations(
            _make_geojson([_BOND_STREET, _PADDINGTON_HUB, _STRATFORD_RAIL])
        )
        assert [s.id for s in stations] == ["910GSTFD", "940GZZLUBND", "HUBPAD"]

    def test_drops_platform_features(self) -> None:
        stations = parse_stations(_make_geojson([_BOND_STREET, _PLATFORM]))
        assert [s.id for s in stations] == ["940GZZLUBND"]

    def test_drops_non_point_features(self) -> None:
        line = {
            "type": "Feature",
            "geometry": {"type": "LineString", "coordinates": [[-0.1, 51.5], [-0.2, 51.6]]},
            "properties": {"id": "940GZZLUXXX", "name": "Segment"},
        }
        assert parse_stations(_make_geojson([line])) == []

    def test_aliases_and_lines(self) -> None:
        station = parse_stations(_make_geojson([_PADDINGTON_HUB]))[0]
        assert station.aliases == frozenset({"London Paddington"})
        assert station.lines == frozenset({"Bakerloo", "Elizabeth"})

    def test_default_zone(self) -> None:
        assert parse_stations(_make_geojson([_PADDINGTON_HUB]))[0].zone == "1"

    def test_outside_bbox_skipped(self) -> None:
        manchester = {
            **_BOND_STREET,
            "geometry": {"type": "Point", "coordinates": [-2.2426, 53.4808]},
        }
        assert parse_stations(_make_geojson([manchester])) == []

    def test_blank_name_skipped(self) -> None:
        assert parse_stations(_make_geojson([_with(_BOND_STREET, name="  ")])) == []

    def test_duplicate_id_skipped(self) -> None:
        duplicate = _with(_BOND_STREET, name="Bond Street (Elizabeth)")
        stations = parse_stations(_make_geojson([_BOND_STREET, duplicate]))
        assert len(stations) == 1
        assert stations[0].canonical_name == "Bond Street"

    def test_point_without_coordinates_skipped(self) -> None:
        no_coordinates = {**_BOND_STREET, "geometry": {"type": "Point"}}
        stations = parse_stations(_make_geojson([no_coordinates, _STRATFORD_RAIL]))
        assert [s.id for s in stations] == ["910GSTFD"]

    def test_non_object_line_entries_ignored(self) -> None:
        odd_lines = _with(_BOND_STREET, lines=["Jubilee", None, {"name": "Central"}])
        station = parse_stations(_make_geojson([odd_lines]))[0]
        assert station.lines == frozenset({"Central"})


class TestValidateStations:
    """Validate post-generation checks."""

    def test_empty(self) -> None:
        with pytest.raises(ValueError, match="No stations"):
            validate_stations([])

    def test_invalid_station_rejected(self) -> None:
        station = parse_stations(_make_geojson())[0]
        with pytest.raises(RegistryError, match="Duplicate"):
            validate_stations([station, station])

    def test_builds_registry(self) -> None:
        stations = parse_stations(_make_geojson([_BOND_STREET, _PADDINGTON_HUB]))
        registry = validate_stations(stations)
        assert len(registry) == 2
        assert registry.get("HUBPAD").aliases == frozenset({"London Paddington"})


class TestMain:
    """Validate the command-line entry point."""

    @respx.mock
    def test_fetch_and_write(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        respx.get(_GEOJSON_URL).mock(
            return_value=httpx.Response(200, json=_make_geojson([_BOND_STREET, _PADDINGTON_HUB]))
        )

        assert main([]) == 0

        assert (tmp_path / "data" / "working" / "tfl_stations.json").exists()
        output = tmp_path / "seeds" / "station_registry.csv"
        with output.open(encoding="utf-8") as f:
            assert csv.DictReader(f).fieldnames == CSV_COLUMNS
        registry = load_registry_csv(output)
        assert len(registry) == 2
        assert registry.get("940GZZLUBND").coordinates == (51.5142, -0.1494)

    @respx.mock
    def test_fetch_failure(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        respx.get(_GEOJSON_URL).mock(return_value=httpx.Response(404, text="missing"))

        assert main([]) == 1
        assert not (tmp_path / "seeds").exists()

    def test_from_cache(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        save_geojson(
            _make_geojson([_STRATFORD_RAIL]), tmp_path / "data" / "working" / "tfl_stations.json"
        )

        assert main(["--from-cache"]) == 0
        registry = load_registry_csv(tmp_path / "seeds" / "station_registry.csv")
        assert registry.get("910GSTFD").zone == "2/3"

    def test_missing_cache(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert main(["--from-cache"]) == 1
        assert not (tmp_path / "seeds").exists()
