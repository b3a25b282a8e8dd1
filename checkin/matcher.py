"""Fuzzy station matcher.

Scores a raw OCR string against every name in the registry and returns
the stations that clear the score floor, best first.  Scoring applies
three tiers per registry name, in priority order:

1. Normalized equality: 1.0 (``exact`` on the canonical name, ``alias``
   on an alias).
2. Equal match keys (abbreviation and suffix variants): 0.95, ``alias``.
3. Levenshtein similarity of the normalized forms: ``fuzzy``.

A station scores the maximum over its names.  Ordering is fully
deterministic: score descending, then shorter canonical name, then
station id.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final, NamedTuple

from checkin.contracts import MatchingRule, Station
from checkin.normalize import match_key, normalize, similarity

if TYPE_CHECKING:
    from checkin.registry import NameEntry, StationRegistry

logger: Final = logging.getLogger(__name__)

DEFAULT_SCORE_FLOOR: Final = 0.55

_VARIANT_SCORE: Final = 0.95

# Equal scores prefer the stronger rule
_RULE_RANK: Final[dict[MatchingRule, int]] = {
    MatchingRule.EXACT: 2,
    MatchingRule.ALIAS: 1,
    MatchingRule.FUZZY: 0,
}


class MatchCandidate(NamedTuple):
    """A station that cleared the score floor for a query."""

    station_id: str
    score: float
    rule: MatchingRule
    matched_name: str
    station: Station


def _score_name(query: str, query_key: str, entry: NameEntry) -> tuple[float, MatchingRule]:
    if query == entry.normalized:
        return 1.0, MatchingRule.ALIAS if entry.is_alias else MatchingRule.EXACT
    if query_key and query_key == entry.key:
        return _VARIANT_SCORE, MatchingRule.ALIAS
    return similarity(query, entry.normalized), MatchingRule.FUZZY


def score_station(
    query: str,
    query_key: str,
    entries: tuple[NameEntry, ...],
) -> tuple[float, MatchingRule, str]:
    """Best (score, rule, matched name) for a station's name entries.

    ``query`` and ``query_key`` must already be normalized.
    """
    best: tuple[float, MatchingRule, str] | None = None
    for entry in entries:
        score, rule = _score_name(query, query_key, entry)
        if (
            best is None
            or score > best[0]
            or (score == best[0] and _RULE_RANK[rule] > _RULE_RANK[best[1]])
        ):
            best = (score, rule, entry.name)
    if best is None:
        return 0.0, MatchingRule.FUZZY, ""
    return best


def match(
    raw_text: str,
    registry: StationRegistry,
    *,
    floor: float = DEFAULT_SCORE_FLOOR,
) -> list[MatchCandidate]:
    """Rank registry stations against an OCR-derived string.

    Args:
        raw_text: Station text from OCR or user input.
        registry: Station catalog to search.
        floor: Minimum score a station must reach to be returned.

    Returns:
        Candidates with ``score >= floor``, best first.  Empty when no
        station clears the floor or the text has no letters or digits.

    Raises:
        ValueError: If ``raw_text`` is empty or whitespace only.
    """
    if not raw_text or not raw_text.strip():
        msg = "Cannot match blank station text"
        raise ValueError(msg)

    query = normalize(raw_text)
    if not query:
        logger.debug("Station text %r normalizes to nothing", raw_text)
        return []
    query_key = match_key(raw_text)

    candidates: list[MatchCandidate] = []
    for station in registry:
        score, rule, matched_name = score_station(
            query, query_key, registry.name_entries(station.id)
        )
        if score >= floor:
            candidates.append(MatchCandidate(station.id, score, rule, matched_name, station))

    candidates.sort(key=lambda c: (-c.score, len(c.station.canonical_name), c.station_id))
    logger.debug(
        "Matched %r to %d candidate(s) at floor %.2f", raw_text, len(candidates), floor
    )
    return candidates
