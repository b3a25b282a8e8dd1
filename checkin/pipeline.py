"""Check-in verification pipeline.

Orchestrates a single check-in through four stages in strict order::

    INTAKE -> RESOLVE -> GEOFENCE -> PERSIST -> DONE

Every stage returns either its product or a ``CheckInFailure``; the
pipeline never raises for a recoverable outcome.  Failures carry a
typed ``ErrorKind``, the stage that produced them, and enough context
for the caller to recover without starting over:

- ``resolve_selection`` re-enters RESOLVE with a suggestion the user
  picked, skipping OCR.
- ``check_location`` re-enters GEOFENCE with a fresh GPS fix, skipping
  OCR and resolution.
- ``save_pending`` re-enters PERSIST with ``status=pending`` after the
  user accepts a geofence failure.

No stage retries on its own.  Resolution is a pure function of its
inputs; persistence is not idempotent.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from checkin.config import PipelineConfig
from checkin.contracts import (
    CheckInRecord,
    CheckInStatus,
    Coordinates,
    GeofenceFailure,
    GeofenceOutcome,
    MatchingRule,
    OCRResult,
    ResolutionError,
    ResolutionReason,
    ResolvedStation,
    Suggestion,
    VerificationMethod,
)
from checkin.disambiguate import resolve_text, select_station
from checkin.geo import validate_geofence
from checkin.ledger import DuplicateVisitError

if TYPE_CHECKING:
    from datetime import datetime

    from checkin.ledger import VisitLedger
    from checkin.registry import StationRegistry

logger: Final = logging.getLogger(__name__)


class PipelineStage(enum.Enum):
    """Pipeline stages, in execution order."""

    INTAKE = "intake"
    RESOLVE = "resolve"
    GEOFENCE = "geofence"
    PERSIST = "persist"
    DONE = "done"


class ErrorKind(enum.Enum):
    """Recoverable check-in failure classes."""

    NO_ROUNDEL = "no_roundel"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    GPS_UNAVAILABLE = "gps_unavailable"
    OUT_OF_RANGE = "out_of_range"
    DUPLICATE_VISIT = "duplicate_visit"


_REMEDIATIONS: Final[dict[ErrorKind, str]] = {
    ErrorKind.NO_ROUNDEL: "No roundel detected. Retake the photo with the station sign in frame.",
    ErrorKind.NOT_FOUND: "Station not recognised. Pick from the suggestions or retake the photo.",
    ErrorKind.AMBIGUOUS: "Several stations match. Pick the right one from the suggestions.",
    ErrorKind.GPS_UNAVAILABLE: "Location unavailable. Enable location or save as pending.",
    ErrorKind.OUT_OF_RANGE: "Too far from the station. Move closer or save as pending.",
    ErrorKind.DUPLICATE_VISIT: "Already checked in to this station in this activity.",
}

_PENDING_ELIGIBLE: Final[frozenset[ErrorKind]] = frozenset(
    {ErrorKind.GPS_UNAVAILABLE, ErrorKind.OUT_OF_RANGE}
)

_RESOLUTION_KINDS: Final[dict[ResolutionReason, ErrorKind]] = {
    ResolutionReason.NOT_FOUND: ErrorKind.NOT_FOUND,
    ResolutionReason.AMBIGUOUS: ErrorKind.AMBIGUOUS,
}

_GEOFENCE_KINDS: Final[dict[GeofenceFailure, ErrorKind]] = {
    GeofenceFailure.GPS_UNAVAILABLE: ErrorKind.GPS_UNAVAILABLE,
    GeofenceFailure.OUT_OF_RANGE: ErrorKind.OUT_OF_RANGE,
}

_PENDING_REASONS: Final[dict[ErrorKind, GeofenceFailure]] = {
    kind: failure for failure, kind in _GEOFENCE_KINDS.items()
}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CheckInFailure:
    """A check-in that stopped before producing a verified record.

    Attributes:
        kind: Failure class.
        stage: Stage that produced the failure.
        message: Human-readable explanation.
        suggestions: Candidate stations for NOT_FOUND and AMBIGUOUS.
        resolved: Station identity, retained for geofence failures.
        geofence: Geofence outcome, for geofence failures.
        ocr_confidence: Recognition confidence of the photo, if any.
        activity_id: Activity the attempt belongs to.
        captured_at: Photo capture time, reused by a pending save.
        existing_record: The earlier record, for DUPLICATE_VISIT.
    """

    kind: ErrorKind
    stage: PipelineStage
    message: str
    suggestions: tuple[Suggestion, ...] = ()
    resolved: ResolvedStation | None = None
    geofence: GeofenceOutcome | None = None
    ocr_confidence: float | None = None
    activity_id: str | None = None
    captured_at: datetime | None = None
    existing_record: CheckInRecord | None = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def remediation(self) -> str:
        return _REMEDIATIONS[self.kind]

    @property
    def can_save_pending(self) -> bool:
        """Whether ``save_pending`` accepts this failure."""
        return (
            self.kind in _PENDING_ELIGIBLE
            and self.resolved is not None
            and self.activity_id is not None
        )


@dataclass(frozen=True, slots=True)
class CheckInSuccess:
    """A persisted check-in.

    Attributes:
        record: The record as written by the ledger.
        resolved: Station identity the record refers to.
        geofence: Geofence outcome that backed the record.
    """

    record: CheckInRecord
    resolved: ResolvedStation
    geofence: GeofenceOutcome | None

    @property
    def ok(self) -> bool:
        return True

    @property
    def stage(self) -> PipelineStage:
        return PipelineStage.DONE


CheckInResult = CheckInSuccess | CheckInFailure


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class CheckInPipeline:
    """Verify and persist station check-ins.

    Args:
        registry: Immutable station catalog, shareable across pipelines.
        ledger: Persistence collaborator.
        config: Thresholds and switches; defaults to ``PipelineConfig()``.
    """

    def __init__(
        self,
        registry: StationRegistry,
        ledger: VisitLedger,
        config: PipelineConfig | None = None,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._config = config or PipelineConfig()

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def run(
        self,
        activity_id: str,
        ocr: OCRResult,
        device_location: Coordinates | None = None,
        *,
        captured_at: datetime | None = None,
    ) -> CheckInResult:
        """Run a full check-in from an OCR result."""
        intake = self.intake(ocr)
        if isinstance(intake, CheckInFailure):
            return dataclasses.replace(intake, activity_id=activity_id, captured_at=captured_at)

        resolved = self.resolve(intake, device_location)
        if isinstance(resolved, CheckInFailure):
            return dataclasses.replace(
                resolved,
                activity_id=activity_id,
                captured_at=captured_at,
                ocr_confidence=ocr.confidence,
            )

        return self.check_location(
            activity_id,
            resolved,
            device_location,
            ocr_confidence=ocr.confidence,
            captured_at=captured_at,
        )

    # ---- INTAKE -------------------------------------------------------------

    def intake(self, ocr: OCRResult) -> OCRResult | CheckInFailure:
        """Gate on roundel detection."""
        if not ocr.detected:
            logger.info("Intake rejected: no roundel detected")
            return CheckInFailure(
                kind=ErrorKind.NO_ROUNDEL,
                stage=PipelineStage.INTAKE,
                message="No station roundel was detected in the photo.",
                ocr_confidence=ocr.confidence,
            )
        return ocr

    # ---- RESOLVE ------------------------------------------------------------

    def resolve(
        self,
        ocr_or_text: OCRResult | str,
        device_location: Coordinates | None = None,
    ) -> ResolvedStation | CheckInFailure:
        """Resolve OCR output or raw text to one canonical station.

        For an OCRResult the primary ``station_text_raw`` is used, and the
        hint only when the primary text is blank.  Blank input resolves
        to NOT_FOUND with no suggestions.
        """
        text = ocr_or_text.station_text if isinstance(ocr_or_text, OCRResult) else ocr_or_text
        if not text or not text.strip():
            logger.warning("Resolve failed: no station text")
            return CheckInFailure(
                kind=ErrorKind.NOT_FOUND,
                stage=PipelineStage.RESOLVE,
                message="No station name could be read from the photo.",
            )

        outcome = resolve_text(text, self._registry, self._config, device_location)
        if isinstance(outcome, ResolutionError):
            return self._resolution_failure(outcome)
        return outcome

    def resolve_selection(self, station_id: str) -> ResolvedStation | CheckInFailure:
        """Resolve a suggestion the user picked, bypassing OCR."""
        try:
            return select_station(station_id, self._registry)
        except KeyError:
            logger.warning("Selected station %s is not in the registry", station_id)
            return CheckInFailure(
                kind=ErrorKind.NOT_FOUND,
                stage=PipelineStage.RESOLVE,
                message=f"Station {station_id} is not in the registry.",
            )

    def _resolution_failure(self, error: ResolutionError) -> CheckInFailure:
        kind = _RESOLUTION_KINDS[error.reason]
        if kind is ErrorKind.AMBIGUOUS:
            message = f"'{error.raw_text}' matches more than one station."
        else:
            message = f"No station matches '{error.raw_text}'."
        return CheckInFailure(
            kind=kind,
            stage=PipelineStage.RESOLVE,
            message=message,
            suggestions=error.suggestions,
        )

    # ---- GEOFENCE -----------------------------------------------------------

    def check_location(
        self,
        activity_id: str,
        resolved: ResolvedStation,
        device_location: Coordinates | None,
        *,
        ocr_confidence: float | None = None,
        captured_at: datetime | None = None,
    ) -> CheckInResult:
        """Validate the device location and persist a verified record.

        Also the re-entry point for a GPS resubmission after a geofence
        failure.
        """
        outcome = validate_geofence(
            device_location,
            resolved.coordinates,
            self._config.geofence_radius_meters,
            self._config.simulation_mode,
        )

        if not outcome.passed:
            kind = _GEOFENCE_KINDS[outcome.failure or GeofenceFailure.OUT_OF_RANGE]
            if kind is ErrorKind.GPS_UNAVAILABLE:
                message = "Device location is unavailable."
            else:
                message = (
                    f"Device is {outcome.distance_meters:.0f}m from "
                    f"{resolved.display_name} (limit {outcome.radius_meters}m)."
                )
            return CheckInFailure(
                kind=kind,
                stage=PipelineStage.GEOFENCE,
                message=message,
                resolved=resolved,
                geofence=outcome,
                ocr_confidence=ocr_confidence,
                activity_id=activity_id,
                captured_at=captured_at,
            )

        if resolved.matching_rule is MatchingRule.MANUAL:
            method = VerificationMethod.MANUAL
        elif outcome.bypassed:
            method = VerificationMethod.OCR
        else:
            method = VerificationMethod.GPS

        return self._persist(
            activity_id,
            resolved,
            CheckInStatus.VERIFIED,
            method,
            outcome,
            captured_at=captured_at,
            ocr_confidence=ocr_confidence,
        )

    # ---- PERSIST ------------------------------------------------------------

    def save_pending(
        self,
        failure: CheckInFailure,
        *,
        captured_at: datetime | None = None,
    ) -> CheckInResult:
        """Persist a user-acknowledged pending check-in.

        Raises:
            ValueError: If the failure is not a geofence failure that
                retained its resolved station and activity.
        """
        if not failure.can_save_pending:
            msg = f"Cannot save a {failure.kind.value} failure as pending"
            raise ValueError(msg)
        # can_save_pending guarantees both are set
        assert failure.resolved is not None
        assert failure.activity_id is not None

        if failure.resolved.matching_rule is MatchingRule.MANUAL:
            method = VerificationMethod.MANUAL
        else:
            method = VerificationMethod.OCR

        return self._persist(
            failure.activity_id,
            failure.resolved,
            CheckInStatus.PENDING,
            method,
            failure.geofence,
            captured_at=captured_at or failure.captured_at,
            pending_reason=_PENDING_REASONS[failure.kind],
            ocr_confidence=failure.ocr_confidence,
        )

    def _persist(
        self,
        activity_id: str,
        resolved: ResolvedStation,
        status: CheckInStatus,
        method: VerificationMethod,
        geofence: GeofenceOutcome | None,
        *,
        captured_at: datetime | None,
        pending_reason: GeofenceFailure | None = None,
        ocr_confidence: float | None = None,
    ) -> CheckInResult:
        distance = geofence.distance_meters if geofence is not None else None
        try:
            record = self._ledger.append(
                activity_id,
                resolved.station_id,
                status,
                method,
                distance,
                captured_at=captured_at,
                pending_reason=pending_reason,
                ocr_confidence=ocr_confidence,
            )
        except DuplicateVisitError as exc:
            return CheckInFailure(
                kind=ErrorKind.DUPLICATE_VISIT,
                stage=PipelineStage.PERSIST,
                message=f"Already checked in to {resolved.display_name} in this activity.",
                resolved=resolved,
                geofence=geofence,
                activity_id=activity_id,
                captured_at=captured_at,
                existing_record=exc.existing,
            )

        logger.info(
            "Check-in %s: %s #%d (%s)",
            status.value,
            resolved.station_id,
            record.sequence_number,
            method.value,
        )
        return CheckInSuccess(record=record, resolved=resolved, geofence=geofence)
