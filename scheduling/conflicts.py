"""Booking conflict detection for a single doctor's day.

The checker is a pure decision function: it never performs I/O and never
mutates the appointments it is given. Callers fetch the pool of existing
appointments from an appointment store and decide what to do with the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, List, Optional, Tuple

from .models import (
    LEGACY_DEFAULT_DURATION_MINUTES,
    MINUTES_PER_DAY,
    Appointment,
    InvalidAppointmentError,
    Slot,
    format_time,
    parse_date,
    parse_duration,
    parse_status,
    parse_time,
    time_from_minutes,
)

logger = logging.getLogger(__name__)

DEFAULT_SLOT_STEP_MINUTES = 15


@dataclass(frozen=True)
class ConflictResult:
    """Outcome of a conflict check."""

    has_conflict: bool
    conflicting_appointment_id: Optional[str] = None
    conflict_start_time: Optional[time] = None

    @classmethod
    def clear(cls) -> "ConflictResult":
        return cls(has_conflict=False)

    @classmethod
    def against(cls, appointment: Appointment) -> "ConflictResult":
        return cls(
            has_conflict=True,
            conflicting_appointment_id=appointment.id,
            conflict_start_time=appointment.start_time,
        )

    @property
    def conflict_time_label(self) -> Optional[str]:
        if self.conflict_start_time is None:
            return None
        return format_time(self.conflict_start_time)

    @property
    def message(self) -> str:
        if not self.has_conflict:
            return "The selected time is available."
        return (
            f"An appointment is already booked at {self.conflict_time_label}. "
            "Please choose another time."
        )

    def to_dict(self) -> dict:
        return {
            "has_conflict": self.has_conflict,
            "conflicting_appointment_id": self.conflicting_appointment_id,
            "conflict_time": self.conflict_time_label,
            "message": self.message,
        }


def validate_candidate(candidate: Appointment) -> Tuple[Appointment, Slot]:
    """Return the normalized candidate and its slot.

    Raises ``InvalidAppointmentError`` when any of doctor, date, start time or
    duration is missing or malformed, or when the slot would cross midnight.
    """

    if not candidate.doctor_id:
        raise InvalidAppointmentError("Candidate appointment has no doctor")
    if candidate.date is None:
        raise InvalidAppointmentError("Candidate appointment has no date")
    if candidate.start_time is None:
        raise InvalidAppointmentError("Candidate appointment has no start time")
    if candidate.duration_minutes is None:
        raise InvalidAppointmentError("Candidate appointment has no duration")

    candidate = candidate.replace(
        date=parse_date(candidate.date),
        start_time=parse_time(candidate.start_time),
        duration_minutes=parse_duration(candidate.duration_minutes),
    )
    start = candidate.start_minutes
    end = start + candidate.duration_minutes
    if end > MINUTES_PER_DAY:
        raise InvalidAppointmentError(
            f"Appointment starting at {candidate.time_label} for "
            f"{candidate.duration_minutes} minutes would run past midnight"
        )
    return candidate, Slot(start, end)


def normalize_existing(appointment: Appointment) -> Appointment:
    """Coerce a stored appointment's date, time, duration and status to typed values.

    Entries read from loose sources may still carry ``YYYY-MM-DD`` and
    ``HH:MM`` strings. A missing or zero duration becomes the legacy default.
    """

    if appointment.date is None or appointment.start_time is None:
        raise InvalidAppointmentError(
            f"Stored appointment {appointment.id!r} has no date or start time"
        )
    duration = appointment.duration_minutes
    is_number = isinstance(duration, int) and not isinstance(duration, bool)
    if duration is None or (is_number and duration == 0):
        duration = LEGACY_DEFAULT_DURATION_MINUTES
    elif is_number and duration < 0:
        raise InvalidAppointmentError(
            f"Stored appointment {appointment.id!r} has a negative duration ({duration})"
        )
    return appointment.replace(
        date=parse_date(appointment.date),
        start_time=parse_time(appointment.start_time),
        duration_minutes=parse_duration(duration),
        status=parse_status(appointment.status),
    )


def _existing_slot(appointment: Appointment) -> Slot:
    start = appointment.start_minutes
    return Slot(start, start + appointment.duration_minutes)


class ConflictChecker:
    """Decides whether a candidate overlaps an active booking on the same day."""

    def competing(
        self,
        candidate: Appointment,
        existing: Iterable[Appointment],
        exclude_id: Optional[str] = None,
    ) -> List[Appointment]:
        """Return the entries of ``existing`` the candidate must not overlap.

        Entries for the candidate's doctor are normalized first, so a
        malformed stored value raises ``InvalidAppointmentError`` instead of
        being skipped.
        """

        competing: List[Appointment] = []
        for appointment in existing:
            if appointment.doctor_id != candidate.doctor_id:
                continue
            if exclude_id is not None and appointment.id == exclude_id:
                continue
            appointment = normalize_existing(appointment)
            if appointment.date == candidate.date and appointment.is_active:
                competing.append(appointment)
        return competing

    def check(
        self,
        candidate: Appointment,
        existing: Iterable[Appointment],
        exclude_id: Optional[str] = None,
    ) -> ConflictResult:
        """Return the first active appointment the candidate overlaps, if any."""

        candidate, candidate_slot = validate_candidate(candidate)
        for appointment in self.competing(candidate, existing, exclude_id):
            if candidate_slot.overlaps(_existing_slot(appointment)):
                logger.info(
                    "Slot %s for doctor %s on %s conflicts with appointment %s at %s",
                    candidate_slot,
                    candidate.doctor_id,
                    candidate.date.isoformat(),
                    appointment.id,
                    appointment.time_label,
                )
                return ConflictResult.against(appointment)

        logger.debug(
            "Slot %s for doctor %s on %s is clear",
            candidate_slot,
            candidate.doctor_id,
            candidate.date.isoformat(),
        )
        return ConflictResult.clear()

    def find_conflicts(
        self,
        candidate: Appointment,
        existing: Iterable[Appointment],
        exclude_id: Optional[str] = None,
    ) -> List[Appointment]:
        """Return every active appointment the candidate overlaps, in supplied order."""

        candidate, candidate_slot = validate_candidate(candidate)
        return [
            appointment
            for appointment in self.competing(candidate, existing, exclude_id)
            if candidate_slot.overlaps(_existing_slot(appointment))
        ]

    def available_start_times(
        self,
        doctor_id: str,
        day: date,
        duration_minutes: int,
        existing: Iterable[Appointment],
        *,
        step_minutes: int = DEFAULT_SLOT_STEP_MINUTES,
        exclude_id: Optional[str] = None,
    ) -> List[time]:
        """Start times on a ``step_minutes`` grid that are clear for the duration."""

        duration = parse_duration(duration_minutes)
        step = parse_duration(step_minutes)
        day = parse_date(day)
        day_start = Appointment(
            doctor_id=doctor_id,
            date=day,
            start_time=time(0, 0),
            duration_minutes=duration,
        )
        busy = [
            _existing_slot(appointment)
            for appointment in self.competing(day_start, existing, exclude_id)
        ]

        free: List[time] = []
        for start in range(0, MINUTES_PER_DAY - duration + 1, step):
            slot = Slot(start, start + duration)
            if not any(slot.overlaps(other) for other in busy):
                free.append(time_from_minutes(start))
        return free


DEFAULT_CHECKER = ConflictChecker()


def check_conflict(
    candidate: Appointment,
    existing: Iterable[Appointment],
    exclude_id: Optional[str] = None,
) -> ConflictResult:
    """Module-level shortcut for ``ConflictChecker().check``."""

    return DEFAULT_CHECKER.check(candidate, existing, exclude_id)
