"""Visit ledger: the persistence boundary for check-in records.

``VisitLedger`` is the protocol the pipeline writes through; production
deployments adapt it to the hosted database.  ``InMemoryVisitLedger`` is
the reference implementation used by the CLI and the test suite.

Sequence numbers are assigned at append time, per activity, as
``max(existing) + 1``.  Appends to the same activity are serialized by a
per-activity lock so concurrent check-ins never share or skip a number;
appends to different activities only contend on the brief lock lookup.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Final, Protocol

from checkin.contracts import (
    CheckInRecord,
    CheckInStatus,
    GeofenceFailure,
    VerificationMethod,
)

logger: Final = logging.getLogger(__name__)


class DuplicateVisitError(Exception):
    """Raised when a station is checked in twice within one activity.

    Attributes:
        existing: The record already stored for the station.
    """

    def __init__(self, existing: CheckInRecord) -> None:
        self.existing: Final[CheckInRecord] = existing
        super().__init__(
            f"Station {existing.station_id} already visited in activity "
            f"{existing.activity_id} (sequence {existing.sequence_number})"
        )


class VisitLedger(Protocol):
    """Append-only store of check-in records."""

    def append(
        self,
        activity_id: str,
        station_id: str,
        status: CheckInStatus,
        verification_method: VerificationMethod,
        distance: float | None,
        *,
        captured_at: datetime | None = None,
        visited_at: datetime | None = None,
        pending_reason: GeofenceFailure | None = None,
        ocr_confidence: float | None = None,
    ) -> CheckInRecord: ...

    def records(self, activity_id: str) -> tuple[CheckInRecord, ...]: ...


@dataclass(slots=True)
class _ActivityLog:
    lock: threading.Lock = field(default_factory=threading.Lock)
    records: list[CheckInRecord] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InMemoryVisitLedger:
    """Thread-safe in-process VisitLedger.

    Args:
        reject_duplicates: Raise DuplicateVisitError when a station is
            appended twice to the same activity.
        clock: Source of ``visited_at`` timestamps; defaults to UTC now.
    """

    def __init__(
        self,
        *,
        reject_duplicates: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._reject_duplicates = reject_duplicates
        self._clock = clock or _utcnow
        self._guard = threading.Lock()
        self._activities: dict[str, _ActivityLog] = {}

    def _log_for(self, activity_id: str) -> _ActivityLog:
        with self._guard:
            log = self._activities.get(activity_id)
            if log is None:
                log = self._activities[activity_id] = _ActivityLog()
            return log

    def append(
        self,
        activity_id: str,
        station_id: str,
        status: CheckInStatus,
        verification_method: VerificationMethod,
        distance: float | None,
        *,
        captured_at: datetime | None = None,
        visited_at: datetime | None = None,
        pending_reason: GeofenceFailure | None = None,
        ocr_confidence: float | None = None,
    ) -> CheckInRecord:
        """Persist a check-in and return it with its sequence number.

        Raises:
            DuplicateVisitError: If duplicates are rejected and the
                station already appears in the activity.
        """
        log = self._log_for(activity_id)
        with log.lock:
            if self._reject_duplicates:
                for existing in log.records:
                    if existing.station_id == station_id:
                        logger.warning(
                            "Duplicate visit to %s in activity %s",
                            station_id,
                            activity_id,
                        )
                        raise DuplicateVisitError(existing)

            sequence = log.records[-1].sequence_number + 1 if log.records else 1
            record = CheckInRecord(
                activity_id=activity_id,
                station_id=station_id,
                sequence_number=sequence,
                status=status,
                verification_method=verification_method,
                geofence_distance_meters=distance,
                captured_at=captured_at,
                visited_at=visited_at or self._clock(),
                pending_reason=pending_reason,
                ocr_confidence=ocr_confidence,
            )
            log.records.append(record)

        logger.info(
            "Recorded %s visit #%d to %s in activity %s",
            status.value,
            sequence,
            station_id,
            activity_id,
        )
        return record

    def records(self, activity_id: str) -> tuple[CheckInRecord, ...]:
        """Snapshot of an activity's records in sequence order."""
        with self._guard:
            log = self._activities.get(activity_id)
        if log is None:
            return ()
        with log.lock:
            return tuple(log.records)
