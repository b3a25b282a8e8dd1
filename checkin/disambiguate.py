"""Collapse ranked match candidates into a single station identity.

Rules, applied in order:

1. One candidate, or the best leads the runner-up by at least the
   margin: accept the best.
2. A near-tie and a device location: pick the tied station nearest the
   device (``gps-disambiguated``).  This is the only place GPS takes
   part in identity resolution.
3. A near-tie and no location: ``ambiguous`` with the tied candidates
   as suggestions.
4. No candidates: ``not_found`` with suggestions from a relaxed-floor
   pass of the matcher.

An ambiguity is never resolved silently outside rules 1 and 2.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Final

from checkin.contracts import (
    Coordinates,
    MatchingRule,
    ResolutionError,
    ResolutionReason,
    ResolvedStation,
    Suggestion,
)
from checkin.geo import nearest_station
from checkin.matcher import MatchCandidate, match

if TYPE_CHECKING:
    from checkin.config import PipelineConfig
    from checkin.registry import StationRegistry

logger: Final = logging.getLogger(__name__)

DEFAULT_MARGIN: Final = 0.08
DEFAULT_MAX_SUGGESTIONS: Final = 3
DEFAULT_RELAXED_FLOOR: Final = 0.35

# Tolerance for float error in score differences
_EPSILON: Final = 1e-9


def _resolved(
    candidate: MatchCandidate,
    registry: StationRegistry,
    rule: MatchingRule,
) -> ResolvedStation:
    return ResolvedStation(
        station_id=candidate.station_id,
        display_name=registry.display_name(candidate.station_id),
        coordinates=candidate.station.coordinates,
        matching_rule=rule,
        match_score=candidate.score,
        lines=tuple(sorted(candidate.station.lines)),
    )


def _suggestions(
    candidates: Sequence[MatchCandidate],
    registry: StationRegistry,
    limit: int,
) -> tuple[Suggestion, ...]:
    return tuple(
        Suggestion(c.station_id, registry.display_name(c.station_id), c.score)
        for c in candidates[:limit]
    )


def disambiguate(
    candidates: Sequence[MatchCandidate],
    registry: StationRegistry,
    *,
    raw_text: str,
    device_location: Coordinates | None = None,
    margin: float = DEFAULT_MARGIN,
    max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
    relaxed_floor: float = DEFAULT_RELAXED_FLOOR,
) -> ResolvedStation | ResolutionError:
    """Resolve ranked candidates to one station or a typed error.

    Args:
        candidates: Matcher output, best first.
        registry: Catalog the candidates were drawn from.
        raw_text: The query, reused for the relaxed not-found pass.
        device_location: Optional ``(lat, lon)`` fix for tie-breaking.
        margin: Minimum lead the best candidate needs to win outright.
        max_suggestions: Cap on suggestions in a ResolutionError.
        relaxed_floor: Matcher floor for not-found suggestions.

    Returns:
        ResolvedStation on success, ResolutionError otherwise.
    """
    if not candidates:
        relaxed = match(raw_text, registry, floor=relaxed_floor) if raw_text.strip() else []
        suggestions = _suggestions(relaxed, registry, max_suggestions)
        logger.warning(
            "No station matched %r; offering %d suggestion(s)", raw_text, len(suggestions)
        )
        return ResolutionError(ResolutionReason.NOT_FOUND, suggestions, raw_text)

    best = candidates[0]
    if len(candidates) == 1 or best.score - candidates[1].score >= margin - _EPSILON:
        resolved = _resolved(best, registry, best.rule)
        logger.info(
            "Resolved %r to %s (%s, score=%.3f)",
            raw_text,
            resolved.station_id,
            resolved.matching_rule.value,
            resolved.match_score,
        )
        return resolved

    tied = [c for c in candidates if best.score - c.score < margin - _EPSILON]

    if device_location is not None:
        by_id = {c.station_id: c for c in tied}
        station, distance = nearest_station(device_location, (c.station for c in tied))
        resolved = _resolved(by_id[station.id], registry, MatchingRule.GPS_DISAMBIGUATED)
        logger.info(
            "Resolved %r to %s by GPS among %d tied candidates (%.1fm away)",
            raw_text,
            resolved.station_id,
            len(tied),
            distance,
        )
        return resolved

    suggestions = _suggestions(tied, registry, max_suggestions)
    logger.warning(
        "Ambiguous station text %r: %s",
        raw_text,
        ", ".join(s.station_id for s in suggestions),
    )
    return ResolutionError(ResolutionReason.AMBIGUOUS, suggestions, raw_text)


def resolve_text(
    raw_text: str,
    registry: StationRegistry,
    config: PipelineConfig,
    device_location: Coordinates | None = None,
) -> ResolvedStation | ResolutionError:
    """Match and disambiguate ``raw_text`` with configured thresholds.

    Raises:
        ValueError: If ``raw_text`` is blank.
    """
    candidates = match(raw_text, registry, floor=config.match_score_floor)
    return disambiguate(
        candidates,
        registry,
        raw_text=raw_text,
        device_location=device_location,
        margin=config.disambiguation_margin,
        max_suggestions=config.max_suggestions,
        relaxed_floor=config.relaxed_suggestion_floor,
    )


def select_station(station_id: str, registry: StationRegistry) -> ResolvedStation:
    """Resolve a suggestion the user picked by hand.

    Raises:
        KeyError: If ``station_id`` is not in the registry.
    """
    station = registry.get(station_id)
    logger.info("Station %s selected manually", station_id)
    return ResolvedStation(
        station_id=station.id,
        display_name=registry.display_name(station.id),
        coordinates=station.coordinates,
        matching_rule=MatchingRule.MANUAL,
        match_score=1.0,
        lines=tuple(sorted(station.lines)),
    )
