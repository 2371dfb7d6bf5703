"""Booking form state machine wrapped around the conflict checker.

A form moves ``EDITING -> CHECKING -> CLEAR | BLOCKED``. Every field change
returns it to ``EDITING`` and, once doctor, date, time and duration are all
filled in, immediately re-runs the check against a freshly fetched pool.
Submission is only permitted from ``CLEAR``.
"""

from __future__ import annotations

import logging
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, Optional

from connector import AppointmentStore, AppointmentStoreError, StoreConflictError

from .conflicts import DEFAULT_CHECKER, ConflictChecker, ConflictResult
from .models import (
    Appointment,
    AppointmentStatus,
    InvalidAppointmentError,
    format_time,
)

logger = logging.getLogger(__name__)

DEFAULT_FORM_DURATION_MINUTES = 30
UNVERIFIED_MESSAGE = "Could not verify availability. Please try again."

FORM_FIELDS = ("patient_id", "doctor_id", "date", "time", "duration_minutes", "reason", "notes")
CHECK_FIELDS = ("doctor_id", "date", "time", "duration_minutes")


class FlowState(str, Enum):
    EDITING = "editing"
    CHECKING = "checking"
    CLEAR = "clear"
    BLOCKED = "blocked"


class BlockReason(str, Enum):
    CONFLICT = "conflict"
    UNVERIFIED = "unverified"
    INVALID = "invalid"


class SubmissionBlockedError(RuntimeError):
    """Raised when ``submit`` is called while the form is not clear."""

    def __init__(self, state: FlowState, message: Optional[str]) -> None:
        super().__init__(message or f"Cannot submit while the booking form is {state.value}")
        self.state = state


class BookingFlow:
    """Drives one booking or edit dialog against an appointment store."""

    def __init__(
        self,
        store: AppointmentStore,
        *,
        editing: Optional[Appointment] = None,
        checker: Optional[ConflictChecker] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self._store = store
        self._checker = checker or DEFAULT_CHECKER
        self._today = today or date.today
        self.state = FlowState.EDITING
        self.block_reason: Optional[BlockReason] = None
        self.message: Optional[str] = None
        self.result: Optional[ConflictResult] = None
        self.editing: Optional[Appointment] = None
        self.fields: Dict[str, Any] = {}
        if editing is not None:
            self.begin_edit(editing)
        else:
            self.reset()

    @property
    def can_submit(self) -> bool:
        return self.state is FlowState.CLEAR

    @property
    def is_complete(self) -> bool:
        return all(self.fields.get(name) not in (None, "") for name in CHECK_FIELDS)

    def reset(self) -> None:
        """Clear the form for a new booking."""

        self.editing = None
        self.fields = {name: None for name in FORM_FIELDS}
        self.fields["date"] = self._today()
        self.fields["duration_minutes"] = DEFAULT_FORM_DURATION_MINUTES
        self._enter_editing()

    def begin_edit(self, appointment: Appointment) -> None:
        """Pre-populate the form from a persisted appointment and check it."""

        if appointment.id is None:
            raise InvalidAppointmentError("Only persisted appointments can be edited")
        self.editing = appointment
        self.fields = {
            "patient_id": appointment.patient_id,
            "doctor_id": appointment.doctor_id,
            "date": appointment.date,
            "time": format_time(appointment.start_time),
            "duration_minutes": appointment.duration_minutes,
            "reason": appointment.reason,
            "notes": appointment.notes,
        }
        self._after_change()

    def set_field(self, name: str, value: Any) -> FlowState:
        if name not in FORM_FIELDS:
            raise KeyError(f"Unknown booking form field: {name}")
        self.fields[name] = value
        return self._after_change()

    def update(self, **fields: Any) -> FlowState:
        for name in fields:
            if name not in FORM_FIELDS:
                raise KeyError(f"Unknown booking form field: {name}")
        self.fields.update(fields)
        return self._after_change()

    def candidate(self) -> Appointment:
        """Build the candidate appointment from the current form values."""

        status = self.editing.status if self.editing else AppointmentStatus.SCHEDULED
        return Appointment.create(
            self.fields["doctor_id"],
            self.fields["date"],
            self.fields["time"],
            self.fields["duration_minutes"],
            status=status,
            id=self.editing.id if self.editing else None,
            patient_id=self.fields.get("patient_id"),
            reason=self.fields.get("reason"),
            notes=self.fields.get("notes"),
        )

    def submit(self) -> Appointment:
        """Persist the candidate through the store and reset the form."""

        if not self.can_submit:
            raise SubmissionBlockedError(self.state, self.message)

        candidate = self.candidate()
        try:
            if self.editing is None:
                saved = self._store.create(candidate)
            else:
                saved = self._store.update(
                    self.editing.id,
                    patient_id=candidate.patient_id,
                    doctor_id=candidate.doctor_id,
                    date=candidate.date,
                    start_time=candidate.start_time,
                    duration_minutes=candidate.duration_minutes,
                    reason=candidate.reason,
                    notes=candidate.notes,
                )
        except StoreConflictError as exc:
            logger.info("Store refused overlapping appointment: %s", exc)
            self._block(BlockReason.CONFLICT, str(exc))
            raise
        except AppointmentStoreError as exc:
            logger.error("Saving appointment failed: %s", exc)
            self._block(BlockReason.UNVERIFIED, UNVERIFIED_MESSAGE)
            raise

        logger.info("Appointment %s saved for doctor %s", saved.id, saved.doctor_id)
        if self.editing is None:
            self.reset()
        else:
            self.begin_edit(saved)
        return saved

    def _after_change(self) -> FlowState:
        self._enter_editing()
        if self.is_complete:
            self._check()
        return self.state

    def _enter_editing(self) -> None:
        self.state = FlowState.EDITING
        self.block_reason = None
        self.message = None
        self.result = None

    def _check(self) -> None:
        self.state = FlowState.CHECKING
        try:
            candidate = self.candidate()
        except InvalidAppointmentError as exc:
            self._block(BlockReason.INVALID, str(exc))
            return

        exclude_id = self.editing.id if self.editing else None
        try:
            existing = self._store.list_by_doctor_and_date(candidate.doctor_id, candidate.date)
            result = self._checker.check(candidate, existing, exclude_id=exclude_id)
        except AppointmentStoreError as exc:
            logger.error(
                "Could not load appointments for doctor %s on %s: %s",
                candidate.doctor_id,
                candidate.date.isoformat(),
                exc,
            )
            self._block(BlockReason.UNVERIFIED, UNVERIFIED_MESSAGE)
            return
        except InvalidAppointmentError as exc:
            self._block(BlockReason.INVALID, str(exc))
            return

        self.result = result
        if result.has_conflict:
            self._block(BlockReason.CONFLICT, result.message)
        else:
            self.state = FlowState.CLEAR

    def _block(self, reason: BlockReason, message: str) -> None:
        self.state = FlowState.BLOCKED
        self.block_reason = reason
        self.message = message
