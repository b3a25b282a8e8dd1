"""Immutable station registry and its loaders.

The registry is the authoritative catalog of canonical stations that
every check-in must resolve to.  It is built once from a seed CSV or a
TfL-style GeoJSON FeatureCollection, validated, and then shared
read-only across threads: stations live in a tuple, the id index in a
``MappingProxyType``, and per-station name entries are precomputed so
the matcher never re-normalizes registry strings.

Loaders:
    - ``load_registry_csv`` / ``write_registry_csv``: seed CSV via pandas.
    - ``load_registry_geojson`` / ``parse_geojson``: GeoJSON stations.
    - ``fetch_geojson``: GeoJSON over HTTP via httpx.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final, NamedTuple

import httpx
import pandas as pd

from checkin.contracts import Station
from checkin.normalize import match_key, normalize

logger: Final = logging.getLogger(__name__)

CSV_COLUMNS: Final[list[str]] = [
    "station_id",
    "canonical_name",
    "aliases",
    "zone",
    "latitude",
    "longitude",
    "lines",
]

LIST_SEPARATOR: Final = "|"

_MAX_QUALIFYING_LINES: Final = 3

_STATION_ID_PREFIXES: Final[tuple[str, ...]] = ("940G", "910G")
_HUB_IDS: Final[frozenset[str]] = frozenset({"HUBPAD"})


class RegistryError(ValueError):
    """Raised when station registry data is malformed.

    Attributes:
        station_id: Identifier of the offending station, if known.
    """

    def __init__(self, message: str, *, station_id: str = "") -> None:
        self.station_id: Final[str] = station_id
        super().__init__(message)


class RegistryFetchError(Exception):
    """Raised when the station GeoJSON request fails with a non-success status."""

    def __init__(self, url: str, status_code: int, body: str) -> None:
        self.url: Final[str] = url
        self.status_code: Final[int] = status_code
        self.body: Final[str] = body
        super().__init__(f"HTTP {status_code} for {url}: {body[:200]}")


class NameEntry(NamedTuple):
    """A matchable station name with its precomputed comparison forms."""

    name: str
    normalized: str
    key: str
    is_alias: bool


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class StationRegistry:
    """Read-only catalog of canonical stations.

    Construction validates the catalog and raises ``RegistryError`` for
    empty or duplicate ids, blank names, and coordinates outside the
    valid latitude/longitude ranges.  After construction nothing is
    mutable, so a single instance may be shared by concurrent pipelines.
    """

    __slots__ = ("_by_id", "_display_names", "_name_entries", "_stations")

    def __init__(self, stations: Iterable[Station]) -> None:
        ordered = tuple(stations)
        by_id: dict[str, Station] = {}
        for station in ordered:
            _validate_station(station)
            if station.id in by_id:
                raise RegistryError(
                    f"Duplicate station id: {station.id}", station_id=station.id
                )
            by_id[station.id] = station

        self._stations: tuple[Station, ...] = ordered
        self._by_id: Mapping[str, Station] = MappingProxyType(by_id)
        self._display_names: Mapping[str, str] = MappingProxyType(
            _build_display_names(ordered)
        )
        self._name_entries: Mapping[str, tuple[NameEntry, ...]] = MappingProxyType(
            {station.id: _build_name_entries(station) for station in ordered}
        )
        logger.debug("Registry built with %d stations", len(ordered))

    def __len__(self) -> int:
        return len(self._stations)

    def __iter__(self) -> Iterator[Station]:
        return iter(self._stations)

    def __contains__(self, station_id: object) -> bool:
        return station_id in self._by_id

    def __repr__(self) -> str:
        return f"StationRegistry({len(self._stations)} stations)"

    @property
    def stations(self) -> tuple[Station, ...]:
        return self._stations

    def get(self, station_id: str) -> Station:
        """Return the station with ``station_id``.

        Raises:
            KeyError: If no such station exists.
        """
        try:
            return self._by_id[station_id]
        except KeyError:
            raise KeyError(f"Unknown station id: {station_id}") from None

    def display_name(self, station_id: str) -> str:
        """Unique display name, line-qualified for shared canonical names."""
        self.get(station_id)
        return self._display_names[station_id]

    def name_entries(self, station_id: str) -> tuple[NameEntry, ...]:
        """Canonical name followed by aliases, with comparison forms."""
        self.get(station_id)
        return self._name_entries[station_id]


def _validate_station(station: Station) -> None:
    if not station.id or not station.id.strip():
        raise RegistryError("Station id must be non-empty")
    if not station.canonical_name.strip():
        raise RegistryError(
            f"Station {station.id} has a blank canonical name",
            station_id=station.id,
        )
    lat, lon = station.coordinates
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise RegistryError(
            f"Station {station.id} has invalid coordinates ({lat}, {lon})",
            station_id=station.id,
        )


def _build_name_entries(station: Station) -> tuple[NameEntry, ...]:
    entries = [
        NameEntry(
            station.canonical_name,
            normalize(station.canonical_name),
            match_key(station.canonical_name),
            is_alias=False,
        )
    ]
    for alias in sorted(station.aliases):
        if not alias.strip():
            continue
        entries.append(NameEntry(alias, normalize(alias), match_key(alias), is_alias=True))
    return tuple(entries)


def _build_display_names(stations: tuple[Station, ...]) -> dict[str, str]:
    """Qualify shared canonical names with up to three line names.

    "Hammersmith" served by two distinct stations becomes
    "Hammersmith (District, Piccadilly)" and "Hammersmith (Circle,
    Hammersmith & City)".  Stations without line data, or whose
    qualified names still collide, fall back to their id.
    """
    counts = Counter(normalize(s.canonical_name) for s in stations)
    names: dict[str, str] = {}
    for station in stations:
        if counts[normalize(station.canonical_name)] == 1:
            names[station.id] = station.canonical_name
            continue
        lines = sorted(station.lines)[:_MAX_QUALIFYING_LINES]
        qualifier = ", ".join(lines) if lines else station.id
        names[station.id] = f"{station.canonical_name} ({qualifier})"

    collisions = Counter(names.values())
    for station in stations:
        if collisions[names[station.id]] > 1:
            names[station.id] = f"{station.canonical_name} ({station.id})"
    return names


# ---------------------------------------------------------------------------
# CSV loader
# ---------------------------------------------------------------------------


def split_list(value: str) -> frozenset[str]:
    """Split a ``|``-separated cell into a frozenset of trimmed values."""
    return frozenset(part.strip() for part in value.split(LIST_SEPARATOR) if part.strip())


def load_registry_csv(path: Path) -> StationRegistry:
    """Load a station registry from a seed CSV.

    Expects the columns in ``CSV_COLUMNS``.  ``aliases`` and ``lines``
    are ``|``-separated lists and may be empty.

    Raises:
        RegistryError: If required columns are missing or a row carries
            non-numeric coordinates.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    missing = [c for c in CSV_COLUMNS if c not in df.columns]
    if missing:
        raise RegistryError(f"{path}: missing columns {', '.join(missing)}")

    stations: list[Station] = []
    for row in df.itertuples(index=False):
        station_id = row.station_id.strip()
        try:
            coordinates = (float(row.latitude), float(row.longitude))
        except ValueError:
            raise RegistryError(
                f"Station {station_id} has non-numeric coordinates",
                station_id=station_id,
            ) from None
        stations.append(
            Station(
                id=station_id,
                canonical_name=row.canonical_name.strip(),
                coordinates=coordinates,
                aliases=split_list(row.aliases),
                zone=row.zone.strip(),
                lines=split_list(row.lines),
            )
        )

    logger.info("Loaded %d stations from %s", len(stations), path)
    return StationRegistry(stations)


def write_registry_csv(stations: Iterable[Station], path: Path) -> Path:
    """Write stations as a seed CSV readable by ``load_registry_csv``.

    Coordinates are written with six decimal places; ``aliases`` and
    ``lines`` are sorted and ``|``-joined.
    """
    df = pd.DataFrame(
        [
            {
                "station_id": s.id,
                "canonical_name": s.canonical_name,
                "aliases": LIST_SEPARATOR.join(sorted(s.aliases)),
                "zone": s.zone,
                "latitude": f"{s.latitude:.6f}",
                "longitude": f"{s.longitude:.6f}",
                "lines": LIST_SEPARATOR.join(sorted(s.lines)),
            }
            for s in stations
        ],
        columns=CSV_COLUMNS,
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    logger.info("Wrote %d stations to %s", len(df), path)
    return path


# ---------------------------------------------------------------------------
# GeoJSON loader
# ---------------------------------------------------------------------------


def is_station_id(station_id: str) -> bool:
    """Whether a feature id names a station rather than a platform or entrance.

    Station-level ids start with ``940G`` (Underground) or ``910G`` (rail,
    Overground, Elizabeth line), or are an interchange hub such as
    ``HUBPAD``.
    """
    return station_id.startswith(_STATION_ID_PREFIXES) or station_id in _HUB_IDS


def feature_to_station(feature: Mapping[str, Any]) -> Station | None:
    """Convert one GeoJSON feature to a Station.

    Returns ``None`` for non-Point geometries and for features whose id
    is not station-level.  List properties that are not lists, and line
    entries that are not objects, are ignored.

    Raises:
        RegistryError: If a station feature has malformed coordinates.
    """
    geometry = feature.get("geometry") or {}
    props: Mapping[str, Any] = feature.get("properties") or {}
    station_id = str(props.get("id", "")).strip()
    if geometry.get("type") != "Point" or not is_station_id(station_id):
        return None

    try:
        lon, lat = geometry["coordinates"][:2]
        coordinates = (float(lat), float(lon))
    except (KeyError, TypeError, ValueError):
        raise RegistryError(
            f"Station {station_id} has malformed coordinates",
            station_id=station_id,
        ) from None

    raw_lines = props.get("lines")
    raw_aliases = props.get("aliases")
    lines = frozenset(
        str(line["name"]).strip()
        for line in (raw_lines if isinstance(raw_lines, list) else [])
        if isinstance(line, Mapping) and line.get("name")
    )
    aliases = frozenset(
        str(alias).strip()
        for alias in (raw_aliases if isinstance(raw_aliases, list) else [])
        if str(alias).strip()
    )
    return Station(
        id=station_id,
        canonical_name=str(props.get("name", "") or "").strip(),
        coordinates=coordinates,
        aliases=aliases,
        zone=str(props.get("zone", "") or "").strip(),
        lines=lines,
    )


def parse_geojson(data: Mapping[str, Any]) -> StationRegistry:
    """Build a registry from a GeoJSON FeatureCollection of stations.

    Only station-level ``Point`` features are used (see
    ``is_station_id``); platforms, entrances and other geometries are
    skipped.  Coordinates are ``[lon, lat]``.  ``properties.lines`` holds
    objects with a ``name`` key and ``properties.aliases`` an optional
    list.

    Raises:
        RegistryError: If the document is not a FeatureCollection or a
            station is malformed.
    """
    if data.get("type") != "FeatureCollection":
        raise RegistryError("GeoJSON document is not a FeatureCollection")

    stations: list[Station] = []
    skipped = 0
    for feature in data.get("features") or []:
        station = feature_to_station(feature)
        if station is None:
            skipped += 1
            continue
        stations.append(station)

    if skipped:
        logger.info("Skipped %d non-station features", skipped)
    return StationRegistry(stations)


def read_geojson(path: Path) -> dict[str, Any]:
    with path.open(encoding="utf-8") as f:
        data: dict[str, Any] = json.load(f)
    return data


def save_geojson(data: Mapping[str, Any], path: Path) -> Path:
    """Write a GeoJSON document, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Saved station GeoJSON to %s", path)
    return path


def load_registry_geojson(path: Path) -> StationRegistry:
    """Load a station registry from a GeoJSON file."""
    registry = parse_geojson(read_geojson(path))
    logger.info("Loaded %d stations from %s", len(registry), path)
    return registry


def load_registry(path: Path) -> StationRegistry:
    """Load a registry, choosing the loader from the file suffix."""
    match path.suffix.lower():
        case ".csv":
            return load_registry_csv(path)
        case ".json" | ".geojson":
            return load_registry_geojson(path)
        case _:
            raise RegistryError(f"Unsupported registry format: {path.suffix or path.name}")


def fetch_geojson(url: str, *, timeout: float = 30.0) -> dict[str, Any]:
    """Fetch a station GeoJSON document over HTTP.

    Raises:
        RegistryFetchError: If the server responds with a non-200 status.
    """
    logger.info("Fetching station GeoJSON from %s", url)
    response = httpx.get(url, timeout=timeout, follow_redirects=True)
    if response.status_code != 200:
        raise RegistryFetchError(url, response.status_code, response.text)
    data: dict[str, Any] = response.json()
    return data
