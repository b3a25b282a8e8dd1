"""Text normalization and string similarity for station name matching.

``normalize`` produces the canonical comparison form of any station
string: accents folded, lowercase, punctuation removed, whitespace
collapsed.  ``match_key`` goes one step further for the matcher's
variant tier by expanding signage abbreviations and stripping
"station" style suffixes, so "Kings X St Pancras Stn" and
"King's Cross St. Pancras" compare equal.

All functions are pure and safe to call from any thread.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Final

from rapidfuzz.distance import Levenshtein

_WHITESPACE: Final = re.compile(r"\s+")
_SEPARATORS: Final = re.compile(r"[-\u2010-\u2015/_]")

# Single-token abbreviations seen on signage and in OCR output
_ABBREVIATIONS: Final[dict[str, str]] = {
    "x": "cross",
    "rd": "road",
    "sq": "square",
    "pk": "park",
    "jn": "junction",
    "jct": "junction",
}

# Order matters: longest first
_STATION_SUFFIXES: Final[tuple[str, ...]] = (
    " underground station",
    " tube station",
    " rail station",
    " station",
    " stn",
)


def normalize(text: str) -> str:
    """Return the canonical comparison form of a station string.

    Lowercases, decomposes accented characters and drops the combining
    marks, turns dashes and slashes into spaces, removes every other
    character that is not a letter, digit or whitespace, and collapses
    whitespace runs.  Idempotent.
    """
    decomposed = unicodedata.normalize("NFKD", text.lower()).lower()
    spaced = _SEPARATORS.sub(" ", decomposed)
    kept = "".join(ch for ch in spaced if ch.isalnum() or ch.isspace())
    return _WHITESPACE.sub(" ", kept).strip()


def match_key(text: str) -> str:
    """Return the variant form used by the matcher's alias tier.

    Normalizes ``&`` to "and", expands common abbreviations token by
    token, then strips trailing station suffixes.  A suffix is never
    stripped when doing so would leave an empty key, so "Station" on its
    own stays "station".
    """
    tokens = normalize(text.replace("&", " and ")).split()
    key = " ".join(_ABBREVIATIONS.get(token, token) for token in tokens)

    stripped = True
    while stripped:
        stripped = False
        for suffix in _STATION_SUFFIXES:
            if key.endswith(suffix):
                key = key[: -len(suffix)].rstrip()
                stripped = True
                break
    return key


def levenshtein(a: str, b: str) -> int:
    """Compute the unit-cost edit distance between two strings."""
    if a == b:
        return 0
    if not a or not b:
        return len(a) + len(b)
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """Return ``1 - levenshtein(a, b) / max(len(a), len(b))`` in [0, 1].

    Equal strings (including two empty strings) score 1.0; a comparison
    where exactly one side is empty scores 0.0.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)
