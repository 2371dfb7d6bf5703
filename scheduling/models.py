"""Appointment data model and boundary parsing.

Times travel as ``HH:MM`` strings (24-hour, zero padded) and dates as
``YYYY-MM-DD`` strings. Everything inside the scheduling package works on
``datetime.date``/``datetime.time`` values and minutes since midnight.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace as dataclass_replace
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Optional

MINUTES_PER_DAY = 24 * 60
LEGACY_DEFAULT_DURATION_MINUTES = 30

_TIME_PATTERN = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class InvalidAppointmentError(ValueError):
    """Raised when an appointment cannot be checked or stored as given."""


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_active(self) -> bool:
        return self is not AppointmentStatus.CANCELLED


def parse_time(value: Any) -> time:
    """Return a minute-resolution ``time`` from ``HH:MM`` or a ``time`` instance.

    The backing table stores a SQL ``time`` column which is read back as
    ``HH:MM:SS``; that form is accepted when the seconds are zero.
    """

    if isinstance(value, time):
        if value.second or value.microsecond:
            raise InvalidAppointmentError(
                f"Appointment time {value.isoformat()} must be on a whole minute"
            )
        return value.replace(tzinfo=None)
    if not isinstance(value, str):
        raise InvalidAppointmentError(f"Unsupported appointment time value: {value!r}")

    match = _TIME_PATTERN.match(value.strip())
    if not match:
        raise InvalidAppointmentError(f"Appointment time must be HH:MM, got {value!r}")

    hours, minutes, seconds = match.groups()
    if int(hours) > 23 or int(minutes) > 59:
        raise InvalidAppointmentError(
            f"Appointment time {value!r} is outside 00:00-23:59"
        )
    if seconds is not None and int(seconds) != 0:
        raise InvalidAppointmentError(
            f"Appointment time {value!r} must be on a whole minute"
        )
    return time(hour=int(hours), minute=int(minutes))


def format_time(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_date(value: Any) -> date:
    """Return a calendar date from ``YYYY-MM-DD`` or a date/datetime instance."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidAppointmentError(f"Unsupported appointment date value: {value!r}")

    cleaned = value.strip()
    if not _DATE_PATTERN.match(cleaned):
        raise InvalidAppointmentError(f"Appointment date must be YYYY-MM-DD, got {value!r}")
    try:
        return date.fromisoformat(cleaned)
    except ValueError as exc:
        raise InvalidAppointmentError(f"Appointment date {value!r} is not a real date") from exc


def parse_duration(value: Any) -> int:
    """Return a positive whole number of minutes."""

    if isinstance(value, bool):
        raise InvalidAppointmentError("Appointment duration must be a number of minutes")
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError as exc:
            raise InvalidAppointmentError(
                f"Appointment duration must be a whole number of minutes, got {value!r}"
            ) from exc
    if not isinstance(value, int):
        raise InvalidAppointmentError(
            f"Appointment duration must be a whole number of minutes, got {value!r}"
        )
    if value <= 0:
        raise InvalidAppointmentError(
            f"Appointment duration must be positive, got {value}"
        )
    return value


def parse_status(value: Any) -> AppointmentStatus:
    if isinstance(value, AppointmentStatus):
        return value
    try:
        return AppointmentStatus(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidAppointmentError(f"Unknown appointment status: {value!r}") from exc


def minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


def time_from_minutes(total_minutes: int) -> time:
    if not 0 <= total_minutes < MINUTES_PER_DAY:
        raise InvalidAppointmentError(f"{total_minutes} minutes is outside a single day")
    hours, minutes = divmod(total_minutes, 60)
    return time(hour=hours, minute=minutes)


def overlaps(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open interval overlap: ``[start_a, end_a)`` against ``[start_b, end_b)``."""

    return start_a < end_b and start_b < end_a


@dataclass(frozen=True)
class Slot:
    """Minutes-since-midnight interval claimed by one appointment."""

    start: int
    end: int

    def overlaps(self, other: "Slot") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def contains(self, other: "Slot") -> bool:
        return self.start <= other.start and other.end <= self.end

    def __str__(self) -> str:
        end_hours, end_minutes = divmod(self.end, 60)
        return f"{format_time(time_from_minutes(self.start))}-{end_hours:02d}:{end_minutes:02d}"


@dataclass(frozen=True)
class Appointment:
    """A booking for one doctor on one date.

    ``duration_minutes`` may be ``None`` only for rows loaded from legacy data;
    candidates must always carry a positive duration.
    """

    doctor_id: str
    date: date
    start_time: time
    duration_minutes: Optional[int]
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    id: Optional[str] = None
    patient_id: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def create(
        cls,
        doctor_id: str,
        date: Any,
        start_time: Any,
        duration_minutes: Any,
        *,
        status: Any = AppointmentStatus.SCHEDULED,
        id: Optional[str] = None,
        patient_id: Optional[str] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> "Appointment":
        """Build an appointment from boundary values, validating each field."""

        if not isinstance(doctor_id, str) or not doctor_id.strip():
            raise InvalidAppointmentError("doctor_id must be a non-empty string")
        return cls(
            doctor_id=doctor_id.strip(),
            date=parse_date(date),
            start_time=parse_time(start_time),
            duration_minutes=parse_duration(duration_minutes),
            status=parse_status(status),
            id=id,
            patient_id=patient_id,
            reason=reason,
            notes=notes,
        )

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def start_minutes(self) -> int:
        return minutes_since_midnight(self.start_time)

    @property
    def end_minutes(self) -> int:
        duration = self.duration_minutes or LEGACY_DEFAULT_DURATION_MINUTES
        return self.start_minutes + duration

    @property
    def slot(self) -> Slot:
        return Slot(self.start_minutes, self.end_minutes)

    @property
    def time_label(self) -> str:
        return format_time(self.start_time)

    def replace(self, **changes: Any) -> "Appointment":
        return dataclass_replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "doctor_id": self.doctor_id,
            "patient_id": self.patient_id,
            "date": self.date.isoformat(),
            "time": self.time_label,
            "duration_minutes": self.duration_minutes,
            "status": self.status.value,
            "reason": self.reason,
            "notes": self.notes,
        }
