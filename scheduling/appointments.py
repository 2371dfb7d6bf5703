"""Booking operations that pair the conflict checker with an appointment store."""

from __future__ import annotations

import logging
from datetime import time
from typing import Any, Dict, Iterable, List, Optional

from connector import AppointmentStore, InMemoryAppointmentStore

from .conflicts import DEFAULT_CHECKER, ConflictResult
from .models import (
    Appointment,
    AppointmentStatus,
    InvalidAppointmentError,
    parse_date,
    parse_status,
)

logger = logging.getLogger(__name__)

STORE: AppointmentStore = InMemoryAppointmentStore()

SORT_KEYS = ("date", "time")


class SlotUnavailableError(ValueError):
    """Raised when a booking would overlap an active appointment."""

    def __init__(self, result: ConflictResult) -> None:
        super().__init__(result.message)
        self.result = result


class AppointmentNotFoundError(LookupError):
    """Raised when an appointment id is not known to the store."""


def _validate_identifier(value: str, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidAppointmentError(f"{label} must be a non-empty string")
    return value.strip()


def _require(store: AppointmentStore, appointment_id: str) -> Appointment:
    appointment = store.get(appointment_id)
    if appointment is None:
        raise AppointmentNotFoundError(f"Appointment '{appointment_id}' does not exist")
    return appointment


def _ensure_slot_free(
    store: AppointmentStore, candidate: Appointment, exclude_id: Optional[str] = None
) -> None:
    existing = store.list_by_doctor_and_date(candidate.doctor_id, candidate.date)
    result = DEFAULT_CHECKER.check(candidate, existing, exclude_id=exclude_id)
    if result.has_conflict:
        raise SlotUnavailableError(result)


def book_appointment(
    doctor_id: str,
    date: Any,
    start_time: Any,
    duration_minutes: Any,
    *,
    patient_id: Optional[str] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    store: Optional[AppointmentStore] = None,
) -> Appointment:
    """Book an appointment if the doctor's slot is free."""

    store = store or STORE
    candidate = Appointment.create(
        _validate_identifier(doctor_id, "doctor_id"),
        date,
        start_time,
        duration_minutes,
        patient_id=patient_id,
        reason=reason,
        notes=notes,
    )
    _ensure_slot_free(store, candidate)

    record = store.create(candidate)
    logger.info(
        "Booked appointment %s with doctor %s on %s at %s",
        record.id,
        record.doctor_id,
        record.date.isoformat(),
        record.time_label,
    )
    return record


def reschedule_appointment(
    appointment_id: str,
    *,
    store: Optional[AppointmentStore] = None,
    **changes: Any,
) -> Appointment:
    """Apply form changes to an existing appointment without self-conflicting.

    Accepted changes: ``doctor_id``, ``date``, ``start_time``,
    ``duration_minutes``, ``patient_id``, ``reason`` and ``notes``.
    """

    appointment_id = _validate_identifier(appointment_id, "appointment_id")
    store = store or STORE
    current = _require(store, appointment_id)

    allowed = {"doctor_id", "date", "start_time", "duration_minutes", "patient_id", "reason", "notes"}
    unknown = set(changes) - allowed
    if unknown:
        raise InvalidAppointmentError(f"Cannot change fields: {', '.join(sorted(unknown))}")

    candidate = Appointment.create(
        changes.get("doctor_id", current.doctor_id),
        changes.get("date", current.date),
        changes.get("start_time", current.start_time),
        changes.get("duration_minutes", current.duration_minutes),
        status=current.status,
        id=current.id,
        patient_id=changes.get("patient_id", current.patient_id),
        reason=changes.get("reason", current.reason),
        notes=changes.get("notes", current.notes),
    )
    if candidate.is_active:
        _ensure_slot_free(store, candidate, exclude_id=current.id)

    return store.update(
        appointment_id,
        doctor_id=candidate.doctor_id,
        date=candidate.date,
        start_time=candidate.start_time,
        duration_minutes=candidate.duration_minutes,
        patient_id=candidate.patient_id,
        reason=candidate.reason,
        notes=candidate.notes,
    )


def update_appointment_status(
    appointment_id: str,
    status: Any,
    *,
    store: Optional[AppointmentStore] = None,
) -> Appointment:
    """Move an appointment to a new status.

    Bringing a cancelled appointment back re-checks its slot, since another
    booking may have taken it in the meantime.
    """

    appointment_id = _validate_identifier(appointment_id, "appointment_id")
    new_status = parse_status(status)
    store = store or STORE
    current = _require(store, appointment_id)

    if new_status.is_active and not current.is_active:
        _ensure_slot_free(store, current.replace(status=new_status), exclude_id=current.id)

    record = store.update(appointment_id, status=new_status)
    logger.info("Appointment %s status %s -> %s", appointment_id, current.status.value, new_status.value)
    return record


def cancel_appointment(
    appointment_id: str,
    *,
    store: Optional[AppointmentStore] = None,
) -> Appointment:
    """Cancel an appointment; it is kept but no longer blocks its slot."""

    return update_appointment_status(appointment_id, AppointmentStatus.CANCELLED, store=store)


def delete_appointment(
    appointment_id: str,
    *,
    store: Optional[AppointmentStore] = None,
) -> None:
    appointment_id = _validate_identifier(appointment_id, "appointment_id")
    store = store or STORE
    _require(store, appointment_id)
    store.delete(appointment_id)
    logger.info("Deleted appointment %s", appointment_id)


def check_availability(
    doctor_id: str,
    date: Any,
    start_time: Any,
    duration_minutes: Any,
    *,
    exclude_id: Optional[str] = None,
    store: Optional[AppointmentStore] = None,
) -> ConflictResult:
    """Fetch the doctor's day and run the conflict check for a proposed slot."""

    store = store or STORE
    candidate = Appointment.create(doctor_id, date, start_time, duration_minutes)
    existing = store.list_by_doctor_and_date(candidate.doctor_id, candidate.date)
    return DEFAULT_CHECKER.check(candidate, existing, exclude_id=exclude_id)


def get_doctor_schedule(
    doctor_id: str,
    date: Any,
    *,
    include_cancelled: bool = False,
    store: Optional[AppointmentStore] = None,
) -> List[Appointment]:
    """Return the doctor's appointments for the day ordered by start time."""

    doctor_id = _validate_identifier(doctor_id, "doctor_id")
    store = store or STORE
    records = store.list_by_doctor_and_date(doctor_id, parse_date(date))
    if not include_cancelled:
        records = [record for record in records if record.is_active]
    return sorted(records, key=lambda record: record.start_time)


def find_free_times(
    doctor_id: str,
    date: Any,
    duration_minutes: Any,
    *,
    step_minutes: int = 15,
    exclude_id: Optional[str] = None,
    store: Optional[AppointmentStore] = None,
) -> List[time]:
    doctor_id = _validate_identifier(doctor_id, "doctor_id")
    store = store or STORE
    day = parse_date(date)
    existing = store.list_by_doctor_and_date(doctor_id, day)
    return DEFAULT_CHECKER.available_start_times(
        doctor_id,
        day,
        duration_minutes,
        existing,
        step_minutes=step_minutes,
        exclude_id=exclude_id,
    )


def filter_and_sort_appointments(
    appointments: Iterable[Appointment],
    *,
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    sort_by: str = "date",
) -> List[Appointment]:
    """Filter a listing by doctor and patient, then order it.

    ``sort_by="date"`` orders by date then start time; ``sort_by="time"``
    orders by start time alone across all dates.
    """

    if sort_by not in SORT_KEYS:
        raise ValueError(f"sort_by must be one of {', '.join(SORT_KEYS)}")

    filtered = [
        appointment
        for appointment in appointments
        if (doctor_id is None or appointment.doctor_id == doctor_id)
        and (patient_id is None or appointment.patient_id == patient_id)
    ]
    if sort_by == "date":
        return sorted(filtered, key=lambda record: (record.date, record.start_time))
    return sorted(filtered, key=lambda record: record.start_time)


def schedule_summary(appointments: Iterable[Appointment]) -> List[Dict[str, Any]]:
    return [appointment.to_dict() for appointment in appointments]
