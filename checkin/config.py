"""Pipeline configuration with layered resolution.

Values resolve in this order, later layers winning:

1. Field defaults on ``PipelineConfig``.
2. The ``[checkin]`` table of an optional TOML file.
3. ``CHECKIN_<FIELD>`` environment variables.

Every value is validated when the config is constructed, so an invalid
setting fails at startup with a ``ConfigError`` naming the option.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

logger: Final = logging.getLogger(__name__)

_TOML_TABLE: Final = "checkin"
_ENV_PREFIX: Final = "CHECKIN_"

_TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigError(ValueError):
    """Raised when a configuration value is missing or invalid.

    Attributes:
        option: Name of the offending option, if known.
    """

    def __init__(self, message: str, *, option: str = "") -> None:
        self.option: Final[str] = option
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Tunable thresholds and switches for the check-in pipeline.

    Attributes:
        geofence_radius_meters: Geofence radius, integer meters >= 1.
        simulation_mode: Bypass geofence enforcement (testing only).
        match_score_floor: Minimum matcher score for a candidate.
        disambiguation_margin: Lead the best candidate needs over the
            runner-up to win without GPS.
        max_suggestions: Cap on suggestions returned with an error.
        relaxed_suggestion_floor: Matcher floor for not-found suggestions.
    """

    geofence_radius_meters: int = 500
    simulation_mode: bool = False
    match_score_floor: float = 0.55
    disambiguation_margin: float = 0.08
    max_suggestions: int = 3
    relaxed_suggestion_floor: float = 0.35

    def __post_init__(self) -> None:
        radius = self.geofence_radius_meters
        if isinstance(radius, bool) or not isinstance(radius, int) or radius < 1:
            raise ConfigError(
                f"geofence_radius_meters must be an integer >= 1, got {radius!r}",
                option="geofence_radius_meters",
            )
        if not isinstance(self.simulation_mode, bool):
            raise ConfigError(
                f"simulation_mode must be a boolean, got {self.simulation_mode!r}",
                option="simulation_mode",
            )
        if (
            isinstance(self.max_suggestions, bool)
            or not isinstance(self.max_suggestions, int)
            or self.max_suggestions < 1
        ):
            raise ConfigError(
                f"max_suggestions must be an integer >= 1, got {self.max_suggestions!r}",
                option="max_suggestions",
            )
        for name in ("match_score_floor", "relaxed_suggestion_floor", "disambiguation_margin"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{name} must be a number, got {value!r}", option=name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {value}", option=name)
        if self.relaxed_suggestion_floor > self.match_score_floor:
            raise ConfigError(
                "relaxed_suggestion_floor must not exceed match_score_floor "
                f"({self.relaxed_suggestion_floor} > {self.match_score_floor})",
                option="relaxed_suggestion_floor",
            )


# ---- Environment parsing ----------------------------------------------------


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


_PARSERS: Final[dict[str, Callable[[str], Any]]] = {
    "geofence_radius_meters": int,
    "simulation_mode": _parse_bool,
    "match_score_floor": float,
    "disambiguation_margin": float,
    "max_suggestions": int,
    "relaxed_suggestion_floor": float,
}

_FIELDS: Final[frozenset[str]] = frozenset(f.name for f in dataclasses.fields(PipelineConfig))


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with path.open("rb") as fh:
            document = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    table = document.get(_TOML_TABLE, {})
    if not isinstance(table, dict):
        raise ConfigError(f"[{_TOML_TABLE}] in {path} must be a table")
    unknown = sorted(set(table) - _FIELDS)
    if unknown:
        raise ConfigError(
            f"Unknown option(s) in [{_TOML_TABLE}]: {', '.join(unknown)}",
            option=unknown[0],
        )
    logger.info("Loaded configuration from %s", path)
    return dict(table)


def _read_env(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name, parse in _PARSERS.items():
        raw = env.get(_ENV_PREFIX + name.upper())
        if raw is None or not raw.strip():
            continue
        try:
            values[name] = parse(raw.strip())
        except ValueError:
            raise ConfigError(
                f"{_ENV_PREFIX}{name.upper()} has an invalid value: {raw!r}",
                option=name,
            ) from None
    return values


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> PipelineConfig:
    """Resolve a PipelineConfig from defaults, TOML and environment.

    Args:
        path: Optional TOML file with a ``[checkin]`` table.
        env: Environment mapping; defaults to ``os.environ``.

    Returns:
        Validated PipelineConfig.

    Raises:
        ConfigError: If the file is missing or malformed, names an
            unknown option, or any resolved value is invalid.
    """
    values: dict[str, Any] = {}
    if path is not None:
        values.update(_read_toml(path))
    values.update(_read_env(os.environ if env is None else env))
    return PipelineConfig(**values)
