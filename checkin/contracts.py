"""Data contracts for the station check-in verification pipeline.

Defines typed, frozen records for every value that crosses a stage
boundary: the canonical Station entity supplied by the registry, the
OCRResult produced by the image-recognition collaborator, the
ResolvedStation / ResolutionError pair returned by identity resolution,
the GeofenceOutcome of location validation, and the CheckInRecord
persisted by the visit ledger.

Enum values are the lowercase wire strings shared with the hosted
database and the mobile client.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from datetime import datetime

Coordinates = tuple[float, float]

# OCR payloads have used three different names for the roundel gate.
_DETECTION_KEYS: Final[tuple[str, ...]] = ("detected", "is_roundel", "has_roundel")
_HINT_KEYS: Final[tuple[str, ...]] = ("station_name_hint", "station_name")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MatchingRule(enum.Enum):
    """Rule that produced a resolved station identity."""

    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"
    GPS_DISAMBIGUATED = "gps-disambiguated"
    MANUAL = "manual"


class ResolutionReason(enum.Enum):
    """Why identity resolution did not produce a single station."""

    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"


class GeofenceFailure(enum.Enum):
    """Failure class of a geofence check that did not pass."""

    GPS_UNAVAILABLE = "gps_unavailable"
    OUT_OF_RANGE = "out_of_range"


class CheckInStatus(enum.Enum):
    """Verification status of a persisted check-in."""

    PENDING = "pending"
    VERIFIED = "verified"


class VerificationMethod(enum.Enum):
    """Evidence that backed a persisted check-in."""

    GPS = "gps"
    OCR = "ocr"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class OCRPayloadError(ValueError):
    """Raised when an OCR collaborator payload has an unrecognised shape.

    Attributes:
        payload: The offending payload, as received.
    """

    def __init__(self, message: str, *, payload: object = None) -> None:
        self.payload: Final = payload
        super().__init__(message)


# ---------------------------------------------------------------------------
# Registry entity
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Station:
    """Canonical station entry from the station registry.

    Attributes:
        id: Stable unique identifier (TfL NaPTAN-style id in production).
        canonical_name: Authoritative display name.
        coordinates: (latitude, longitude) in decimal degrees.
        aliases: Alternate spellings, historic names and abbreviations.
        zone: Fare-zone label, informational only.
        lines: Names of the lines serving the station.
    """

    id: str
    canonical_name: str
    coordinates: Coordinates
    aliases: frozenset[str] = field(default_factory=frozenset)
    zone: str = ""
    lines: frozenset[str] = field(default_factory=frozenset)

    @property
    def latitude(self) -> float:
        return self.coordinates[0]

    @property
    def longitude(self) -> float:
        return self.coordinates[1]

    @property
    def names(self) -> tuple[str, ...]:
        """Canonical name followed by aliases in sorted order."""
        return (self.canonical_name, *sorted(self.aliases))


# ---------------------------------------------------------------------------
# OCR boundary record
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OCRResult:
    """Output of the OCR collaborator for a single roundel photograph.

    Attributes:
        raw_text: Full text recognised in the image.
        station_text_raw: Best-guess substring naming a station.
        detected: Whether the image contained a recognisable roundel.
        confidence: Recognition confidence in [0, 1].
        station_name_hint: Optional secondary guess at the station name.
    """

    raw_text: str
    station_text_raw: str
    detected: bool
    confidence: float = 0.0
    station_name_hint: str | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            msg = f"OCR confidence must be within [0, 1], got {self.confidence}"
            raise ValueError(msg)

    @classmethod
    def from_payload(cls, payload: object) -> OCRResult:
        """Build an OCRResult from a duck-typed collaborator payload.

        Accepts the historical key variants for the detection gate
        (``detected``, ``is_roundel``, ``has_roundel``) and the hint
        (``station_name_hint``, ``station_name``). ``extracted_name`` is
        used only when neither station text nor hint is present.
        Confidence is clamped to [0, 1]; a missing confidence reads as 0.

        Raises:
            OCRPayloadError: If the payload is not a mapping, has no
                detection flag, or carries fields of the wrong type.
        """
        if not isinstance(payload, Mapping):
            raise OCRPayloadError(
                f"OCR payload must be a mapping, got {type(payload).__name__}",
                payload=payload,
            )

        detected = _first_present(payload, _DETECTION_KEYS)
        if not isinstance(detected, bool):
            raise OCRPayloadError(
                "OCR payload has no boolean detection flag "
                f"(expected one of: {', '.join(_DETECTION_KEYS)})",
                payload=payload,
            )

        station_text = _optional_str(payload, "station_text_raw") or ""
        hint = None
        for key in _HINT_KEYS:
            hint = _optional_str(payload, key)
            if hint:
                break
        if not station_text.strip() and not hint:
            hint = _optional_str(payload, "extracted_name")

        raw_text = _optional_str(payload, "raw_text") or station_text

        confidence = payload.get("confidence", 0.0)
        if confidence is None:
            confidence = 0.0
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise OCRPayloadError(
                f"OCR confidence must be numeric, got {confidence!r}",
                payload=payload,
            )

        return cls(
            raw_text=raw_text,
            station_text_raw=station_text,
            detected=detected,
            confidence=min(1.0, max(0.0, float(confidence))),
            station_name_hint=hint or None,
        )

    @property
    def station_text(self) -> str:
        """Text to resolve: primary text, or the hint when primary is blank."""
        if self.station_text_raw.strip():
            return self.station_text_raw
        return self.station_name_hint or ""


def _first_present(payload: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _optional_str(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None or isinstance(value, str):
        return value
    raise OCRPayloadError(
        f"OCR field '{key}' must be a string, got {type(value).__name__}",
        payload=payload,
    )


# ---------------------------------------------------------------------------
# Resolution results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ResolvedStation:
    """Single canonical station identity produced by resolution.

    Attributes:
        station_id: Registry identifier of the resolved station.
        display_name: Unique display name (line-qualified when the
            canonical name is shared by several stations).
        coordinates: (latitude, longitude) of the station.
        matching_rule: Rule that produced the identity.
        match_score: Similarity score in [0, 1].
        lines: Sorted line names, for presentation.
    """

    station_id: str
    display_name: str
    coordinates: Coordinates
    matching_rule: MatchingRule
    match_score: float
    lines: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Suggestion:
    """A "did you mean" candidate offered when resolution fails."""

    station_id: str
    display_name: str
    score: float


@dataclass(frozen=True, slots=True)
class ResolutionError:
    """Unsuccessful resolution outcome. Returned as a value, never raised.

    Attributes:
        reason: NOT_FOUND or AMBIGUOUS.
        suggestions: Up to N candidates ordered best score first.
        raw_text: The text that failed to resolve.
    """

    reason: ResolutionReason
    suggestions: tuple[Suggestion, ...] = ()
    raw_text: str = ""


# ---------------------------------------------------------------------------
# Geofence and ledger records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class GeofenceOutcome:
    """Result of validating a device location against a station geofence.

    Attributes:
        radius_meters: Radius the check was evaluated against.
        passed: Whether the check-in is location-plausible.
        bypassed: True when simulation mode skipped enforcement.
        distance_meters: Great-circle distance, unrounded; None when no
            device location was available.
        failure: Failure class when ``passed`` is False.
    """

    radius_meters: int
    passed: bool
    bypassed: bool = False
    distance_meters: float | None = None
    failure: GeofenceFailure | None = None


@dataclass(frozen=True, slots=True)
class CheckInRecord:
    """Persisted station visit, immutable once written.

    Attributes:
        activity_id: Activity (journey) the visit belongs to.
        station_id: Canonical station identifier.
        sequence_number: 1-based position within the activity.
        status: PENDING or VERIFIED.
        verification_method: Evidence that backed the check-in.
        geofence_distance_meters: Distance to the station, if measured.
        captured_at: Photo capture time reported by the client.
        visited_at: Time the ledger accepted the record.
        pending_reason: Geofence failure the user accepted; None for a
            verified record.
        ocr_confidence: Recognition confidence of the photo, if any.
    """

    activity_id: str
    station_id: str
    sequence_number: int
    status: CheckInStatus
    verification_method: VerificationMethod
    geofence_distance_meters: float | None
    captured_at: datetime | None
    visited_at: datetime
    pending_reason: GeofenceFailure | None = None
    ocr_confidence: float | None = None
