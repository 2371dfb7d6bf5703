"""Appointment store contract and local implementations."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional, Protocol

from scheduling.conflicts import DEFAULT_CHECKER
from scheduling.models import (
    LEGACY_DEFAULT_DURATION_MINUTES,
    Appointment,
    InvalidAppointmentError,
    format_time,
    parse_date,
    parse_duration,
    parse_status,
    parse_time,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "doctor_id",
    "patient_id",
    "date",
    "start_time",
    "duration_minutes",
    "status",
    "reason",
    "notes",
)


class AppointmentStoreError(RuntimeError):
    """Base exception for appointment store failures."""


class StoreUnavailableError(AppointmentStoreError):
    """Raised when the store cannot be reached or read."""


class StoreRejectedError(AppointmentStoreError):
    """Raised when the store refuses a write."""


class StoreConflictError(StoreRejectedError):
    """Raised when the store itself detects an overlapping booking."""


class AppointmentStore(Protocol):
    """Read/write contract the scheduling package relies on."""

    def list_by_doctor_and_date(self, doctor_id: str, day: Any) -> List[Appointment]:
        """Return every appointment, of any status, for the doctor on the date."""

    def list_all(self) -> List[Appointment]:
        """Return every stored appointment."""

    def get(self, appointment_id: str) -> Optional[Appointment]:
        """Return the appointment or ``None`` if it does not exist."""

    def create(self, appointment: Appointment) -> Appointment:
        """Persist a new appointment and return it with its assigned id."""

    def update(self, appointment_id: str, **fields: Any) -> Appointment:
        """Persist changes to an existing appointment and return the result."""

    def delete(self, appointment_id: str) -> None:
        """Remove an appointment permanently."""


def _stored_duration(value: Any) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise InvalidAppointmentError(f"Invalid stored duration: {value!r}")
    if value in (None, "", 0):
        return LEGACY_DEFAULT_DURATION_MINUTES
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidAppointmentError(f"Invalid stored duration: {value!r}") from exc


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def appointment_from_row(row: Mapping[str, Any]) -> Appointment:
    """Build an appointment from a stored row.

    Rows written before durations were recorded carry no ``duration_minutes``;
    they are read back as 30-minute bookings.
    """

    if not isinstance(row, Mapping):
        raise InvalidAppointmentError("Each appointment entry must be a mapping.")

    try:
        doctor_id = str(row["doctor_id"])
        raw_date = row["appointment_date"]
        raw_time = row["appointment_time"]
    except KeyError as exc:
        raise InvalidAppointmentError(f"Missing required appointment field: {exc.args[0]}") from exc

    if row.get("duration_minutes") in (None, "", 0):
        logger.debug("Appointment %s has no duration; assuming legacy default", row.get("id"))

    return Appointment(
        doctor_id=doctor_id,
        date=parse_date(raw_date),
        start_time=parse_time(raw_time),
        duration_minutes=_stored_duration(row.get("duration_minutes")),
        status=parse_status(row.get("status") or "scheduled"),
        id=_optional_text(row.get("id")),
        patient_id=_optional_text(row.get("patient_id")),
        reason=row.get("reason"),
        notes=row.get("notes"),
    )


def appointment_to_row(appointment: Appointment) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "doctor_id": appointment.doctor_id,
        "patient_id": appointment.patient_id,
        "appointment_date": appointment.date.isoformat(),
        "appointment_time": format_time(appointment.start_time),
        "duration_minutes": appointment.duration_minutes,
        "status": appointment.status.value,
        "reason": appointment.reason,
        "notes": appointment.notes,
    }
    if appointment.id is not None:
        row["id"] = appointment.id
    return row


def normalize_changes(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate update fields and convert boundary values to model types."""

    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise InvalidAppointmentError(f"Unknown appointment fields: {', '.join(sorted(unknown))}")

    changes: Dict[str, Any] = dict(fields)
    if "date" in changes:
        changes["date"] = parse_date(changes["date"])
    if "start_time" in changes:
        changes["start_time"] = parse_time(changes["start_time"])
    if "duration_minutes" in changes:
        changes["duration_minutes"] = parse_duration(changes["duration_minutes"])
    if "status" in changes:
        changes["status"] = parse_status(changes["status"])
    if "doctor_id" in changes and not changes["doctor_id"]:
        raise InvalidAppointmentError("doctor_id must be a non-empty string")
    return changes


class InMemoryAppointmentStore:
    """Thread-safe in-process appointment store.

    With ``enforce_no_overlap`` the store applies the overlap rule itself
    under its lock, so two writers cannot both claim the same slot.
    """

    def __init__(self, *, enforce_no_overlap: bool = False) -> None:
        self._appointments: Dict[str, Appointment] = {}
        self._sequence: int = 1
        self._lock = threading.RLock()
        self.enforce_no_overlap = enforce_no_overlap

    def list_by_doctor_and_date(self, doctor_id: str, day: Any) -> List[Appointment]:
        day = parse_date(day)
        with self._lock:
            return [
                appointment
                for appointment in self._appointments.values()
                if appointment.doctor_id == doctor_id and appointment.date == day
            ]

    def list_all(self) -> List[Appointment]:
        with self._lock:
            return list(self._appointments.values())

    def get(self, appointment_id: str) -> Optional[Appointment]:
        with self._lock:
            return self._appointments.get(appointment_id)

    def create(self, appointment: Appointment) -> Appointment:
        with self._lock:
            sequence = self._sequence
            record = appointment.replace(id=self._next_id())
            staged = dict(self._appointments)
            staged[record.id] = record
            try:
                self._guard_overlap(record)
                self._commit(staged)
            except AppointmentStoreError:
                self._sequence = sequence
                raise
            logger.debug("Created appointment %s", record.id)
            return record

    def update(self, appointment_id: str, **fields: Any) -> Appointment:
        changes = normalize_changes(fields)
        with self._lock:
            current = self._appointments.get(appointment_id)
            if current is None:
                raise StoreRejectedError(f"Appointment '{appointment_id}' does not exist")
            record = current.replace(**changes)
            self._guard_overlap(record)
            staged = dict(self._appointments)
            staged[appointment_id] = record
            self._commit(staged)
            return record

    def delete(self, appointment_id: str) -> None:
        with self._lock:
            if appointment_id not in self._appointments:
                raise StoreRejectedError(f"Appointment '{appointment_id}' does not exist")
            staged = dict(self._appointments)
            del staged[appointment_id]
            self._commit(staged)

    def _commit(self, staged: Dict[str, Appointment]) -> None:
        # The visible map only changes once the durable copy is written.
        self._persist(staged)
        self._appointments = staged

    def _next_id(self) -> str:
        while str(self._sequence) in self._appointments:
            self._sequence += 1
        appointment_id = str(self._sequence)
        self._sequence += 1
        return appointment_id

    def _guard_overlap(self, record: Appointment) -> None:
        if not self.enforce_no_overlap or not record.is_active:
            return
        clashes = DEFAULT_CHECKER.find_conflicts(
            record, self._appointments.values(), exclude_id=record.id
        )
        if clashes:
            clash = clashes[0]
            raise StoreConflictError(
                f"Doctor {record.doctor_id} already has appointment {clash.id} "
                f"at {clash.time_label} on {record.date.isoformat()}"
            )

    def _persist(self, appointments: Dict[str, Appointment]) -> None:
        """Hook for subclasses that keep a durable copy of ``appointments``."""
