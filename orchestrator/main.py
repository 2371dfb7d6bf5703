"""Command-line entry point for front-desk booking operations."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

if __package__ is None or __package__ == "":  # pragma: no cover - runtime safety for script execution
    sys.path.append(str(Path(__file__).resolve().parent.parent))

from connector import AppointmentStore, AppointmentStoreError, StoreConflictError, build_store
from scheduling import appointments
from scheduling.appointments import AppointmentNotFoundError, SlotUnavailableError
from scheduling.flow import UNVERIFIED_MESSAGE
from scheduling.models import AppointmentStatus, InvalidAppointmentError, format_time

LOG_PATH = Path(
    os.getenv("BOOKING_AUDIT_LOG", str(Path(__file__).resolve().parent / "booking_audit.json"))
)

EXIT_OK = 0
EXIT_BLOCKED = 1
EXIT_INVALID = 2
EXIT_STORE_FAILURE = 3

LOGGER = logging.getLogger(__name__)


def _utc_stamp() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass
class BookingAuditEntry:
    """One front-desk command and the booking it touched."""

    command: str
    outcome: str
    doctor_id: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    appointment_id: Optional[str] = None
    message: Optional[str] = None
    requested_at: str = field(default_factory=_utc_stamp)
    finished_at: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {key: value for key, value in asdict(self).items() if value is not None}


class BookingAuditLog:
    """Append-only JSON list of booking commands, shared by concurrent callers."""

    def __init__(self, log_path: Path) -> None:
        self._log_path = log_path
        self._lock = threading.Lock()
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, entry: BookingAuditEntry) -> None:
        if entry.finished_at is None:
            entry.finished_at = _utc_stamp()
        with self._lock:
            entries = self.entries()
            entries.append(entry.to_dict())
            self._log_path.write_text(f"{json.dumps(entries, indent=2)}\n", encoding="utf-8")

    def entries(self) -> List[Dict[str, object]]:
        try:
            raw_content = self._log_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        if not raw_content.strip():
            return []
        try:
            data = json.loads(raw_content)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Booking audit log {self._log_path} is not valid JSON: {exc.msg}") from exc
        if not isinstance(data, list):
            raise ValueError(f"Booking audit log {self._log_path} must hold a list of entries.")
        return data


def _audit_entry(args: argparse.Namespace) -> BookingAuditEntry:
    return BookingAuditEntry(
        command=args.command,
        outcome="pending",
        doctor_id=getattr(args, "doctor", None),
        date=getattr(args, "date", None),
        time=getattr(args, "time", None),
        appointment_id=getattr(args, "appointment_id", None),
    )


def run_audited(
    args: argparse.Namespace,
    action: Callable[[], Dict[str, object]],
    audit_log: BookingAuditLog,
) -> Dict[str, object]:
    """Run ``action`` for ``args`` and append the outcome to ``audit_log``.

    Outcomes are ``booked``/``ok`` on success, ``blocked`` when the slot is
    taken and ``failed`` for invalid input or an unreachable store.
    """

    entry = _audit_entry(args)
    try:
        result = action()
    except SlotUnavailableError as exc:
        entry.outcome = "blocked"
        entry.appointment_id = exc.result.conflicting_appointment_id
        entry.message = exc.result.message
        raise
    except StoreConflictError as exc:
        entry.outcome = "blocked"
        entry.message = str(exc)
        raise
    except Exception as exc:
        entry.outcome = "failed"
        entry.message = str(exc)
        raise
    else:
        if result.get("has_conflict"):
            entry.outcome = "blocked"
            entry.appointment_id = result.get("conflicting_appointment_id")
        else:
            entry.outcome = "booked" if args.command == "book" else "ok"
            entry.appointment_id = result.get("id") or entry.appointment_id
        return result
    finally:
        audit_log.append(entry)


def _run_command(args: argparse.Namespace, store: AppointmentStore) -> Dict[str, object]:
    if args.command == "check":
        result = appointments.check_availability(
            args.doctor,
            args.date,
            args.time,
            args.duration,
            exclude_id=args.exclude,
            store=store,
        )
        return result.to_dict()

    if args.command == "book":
        record = appointments.book_appointment(
            args.doctor,
            args.date,
            args.time,
            args.duration,
            patient_id=args.patient,
            reason=args.reason,
            notes=args.notes,
            store=store,
        )
        return record.to_dict()

    if args.command == "reschedule":
        changes: Dict[str, object] = {}
        for option, field in (
            ("doctor", "doctor_id"),
            ("date", "date"),
            ("time", "start_time"),
            ("duration", "duration_minutes"),
        ):
            value = getattr(args, option)
            if value is not None:
                changes[field] = value
        record = appointments.reschedule_appointment(args.appointment_id, store=store, **changes)
        return record.to_dict()

    if args.command == "status":
        record = appointments.update_appointment_status(args.appointment_id, args.status, store=store)
        return record.to_dict()

    if args.command == "cancel":
        record = appointments.cancel_appointment(args.appointment_id, store=store)
        return record.to_dict()

    if args.command == "delete":
        appointments.delete_appointment(args.appointment_id, store=store)
        return {"deleted": args.appointment_id}

    if args.command == "schedule":
        records = appointments.get_doctor_schedule(
            args.doctor, args.date, include_cancelled=args.include_cancelled, store=store
        )
        return {"appointments": appointments.schedule_summary(records)}

    if args.command == "free-slots":
        free = appointments.find_free_times(
            args.doctor, args.date, args.duration, step_minutes=args.step, store=store
        )
        return {"times": [format_time(value) for value in free]}

    raise ValueError(f"Unknown command: {args.command}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Clinic appointment booking controller")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_slot_arguments(command: argparse.ArgumentParser) -> None:
        command.add_argument("--doctor", required=True, help="Doctor identifier")
        command.add_argument("--date", required=True, help="Date as YYYY-MM-DD")
        command.add_argument("--time", required=True, help="Start time as HH:MM")
        command.add_argument("--duration", type=int, default=30, help="Duration in minutes")

    check = subparsers.add_parser("check", help="Check whether a slot is free")
    add_slot_arguments(check)
    check.add_argument("--exclude", help="Appointment id being edited")

    book = subparsers.add_parser("book", help="Book an appointment")
    add_slot_arguments(book)
    book.add_argument("--patient", help="Patient identifier")
    book.add_argument("--reason")
    book.add_argument("--notes")

    reschedule = subparsers.add_parser("reschedule", help="Change an appointment's slot")
    reschedule.add_argument("appointment_id")
    reschedule.add_argument("--doctor")
    reschedule.add_argument("--date")
    reschedule.add_argument("--time")
    reschedule.add_argument("--duration", type=int)

    status = subparsers.add_parser("status", help="Change an appointment's status")
    status.add_argument("appointment_id")
    status.add_argument("status", choices=[value.value for value in AppointmentStatus])

    cancel = subparsers.add_parser("cancel", help="Cancel an appointment")
    cancel.add_argument("appointment_id")

    delete = subparsers.add_parser("delete", help="Delete an appointment")
    delete.add_argument("appointment_id")

    schedule = subparsers.add_parser("schedule", help="List a doctor's appointments for a day")
    schedule.add_argument("--doctor", required=True)
    schedule.add_argument("--date", required=True)
    schedule.add_argument("--include-cancelled", action="store_true")

    free_slots = subparsers.add_parser("free-slots", help="List free start times for a doctor")
    free_slots.add_argument("--doctor", required=True)
    free_slots.add_argument("--date", required=True)
    free_slots.add_argument("--duration", type=int, default=30)
    free_slots.add_argument("--step", type=int, default=15)

    return parser.parse_args(argv)


def main(
    argv: Optional[List[str]] = None,
    *,
    store: Optional[AppointmentStore] = None,
    log_path: Optional[Path] = None,
) -> int:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    args = parse_args(argv)
    audit_log = BookingAuditLog(log_path or LOG_PATH)

    try:
        store = store or build_store()
        result = run_audited(args, lambda: _run_command(args, store), audit_log)
    except SlotUnavailableError as exc:
        print(json.dumps(exc.result.to_dict(), indent=2))
        return EXIT_BLOCKED
    except (InvalidAppointmentError, AppointmentNotFoundError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_INVALID
    except StoreConflictError as exc:
        print(json.dumps({"has_conflict": True, "message": str(exc)}, indent=2))
        return EXIT_BLOCKED
    except AppointmentStoreError as exc:
        LOGGER.error("Store failure during %s: %s", args.command, exc)
        print(UNVERIFIED_MESSAGE, file=sys.stderr)
        return EXIT_STORE_FAILURE

    print(json.dumps(result, indent=2))
    if result.get("has_conflict"):
        return EXIT_BLOCKED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
