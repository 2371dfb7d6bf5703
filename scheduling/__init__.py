"""Appointment scheduling rules: data model and conflict detection."""

from .conflicts import ConflictChecker, ConflictResult, check_conflict
from .models import (
    Appointment,
    AppointmentStatus,
    InvalidAppointmentError,
    Slot,
    format_time,
    overlaps,
    parse_date,
    parse_time,
)

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "ConflictChecker",
    "ConflictResult",
    "InvalidAppointmentError",
    "Slot",
    "check_conflict",
    "format_time",
    "overlaps",
    "parse_date",
    "parse_time",
]
