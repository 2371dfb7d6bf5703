"""HTTP API for appointment booking.

This module exposes a small Flask application the booking screens call to
check a proposed slot, list a doctor's day and create or change
appointments. A store failure is always reported as "could not verify
availability" and never treated as a free slot.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, MutableMapping, Tuple

from flask import Flask, Response, jsonify, request

from connector import AppointmentStoreError, StoreConflictError, build_store
from scheduling import appointments
from scheduling.appointments import AppointmentNotFoundError, SlotUnavailableError
from scheduling.flow import UNVERIFIED_MESSAGE
from scheduling.models import InvalidAppointmentError, format_time

LOGGER = logging.getLogger(__name__)

app = Flask(__name__)
store = build_store()

_FIELD_ALIASES = {"time": "start_time"}


def _json_body() -> MutableMapping[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, MutableMapping):
        raise InvalidAppointmentError("Request body must be a JSON object")
    return payload


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


@app.errorhandler(InvalidAppointmentError)
def handle_invalid(exc: InvalidAppointmentError) -> Tuple[Response, int]:
    return jsonify({"error": str(exc)}), 400


@app.errorhandler(AppointmentNotFoundError)
def handle_not_found(exc: AppointmentNotFoundError) -> Tuple[Response, int]:
    return jsonify({"error": str(exc.args[0]) if exc.args else "Not found"}), 404


@app.errorhandler(SlotUnavailableError)
def handle_conflict(exc: SlotUnavailableError) -> Tuple[Response, int]:
    return jsonify(exc.result.to_dict()), 409


@app.errorhandler(StoreConflictError)
def handle_store_conflict(exc: StoreConflictError) -> Tuple[Response, int]:
    return jsonify({"has_conflict": True, "message": str(exc)}), 409


@app.errorhandler(AppointmentStoreError)
def handle_store_failure(exc: AppointmentStoreError) -> Tuple[Response, int]:
    LOGGER.error("Appointment store failure: %s", exc)
    return jsonify({"error": UNVERIFIED_MESSAGE}), 503


@app.route("/appointments", methods=["GET"])
def list_appointments() -> Response:
    """Return one doctor's appointments for a date."""
    doctor_id = request.args.get("doctor_id", "")
    day = request.args.get("date", "")
    records = appointments.get_doctor_schedule(
        doctor_id,
        day,
        include_cancelled=_flag(request.args.get("include_cancelled")),
        store=store,
    )
    return jsonify({"appointments": appointments.schedule_summary(records)})


@app.route("/appointments/check", methods=["POST"])
def check_slot() -> Response:
    payload = _json_body()
    result = appointments.check_availability(
        payload.get("doctor_id"),
        payload.get("date"),
        payload.get("time"),
        payload.get("duration_minutes"),
        exclude_id=payload.get("exclude_id"),
        store=store,
    )
    return jsonify(result.to_dict())


@app.route("/appointments/free-slots", methods=["GET"])
def free_slots() -> Response:
    free = appointments.find_free_times(
        request.args.get("doctor_id", ""),
        request.args.get("date", ""),
        request.args.get("duration_minutes", "30"),
        store=store,
    )
    return jsonify({"times": [format_time(value) for value in free]})


@app.route("/appointments", methods=["POST"])
def create_appointment() -> Tuple[Response, int]:
    payload = _json_body()
    record = appointments.book_appointment(
        payload.get("doctor_id"),
        payload.get("date"),
        payload.get("time"),
        payload.get("duration_minutes"),
        patient_id=payload.get("patient_id"),
        reason=payload.get("reason"),
        notes=payload.get("notes"),
        store=store,
    )
    return jsonify(record.to_dict()), 201


@app.route("/appointments/<appointment_id>", methods=["PATCH"])
def update_appointment(appointment_id: str) -> Response:
    payload = _json_body()
    changes: Dict[str, Any] = {
        _FIELD_ALIASES.get(key, key): value for key, value in payload.items()
    }
    record = appointments.reschedule_appointment(appointment_id, store=store, **changes)
    return jsonify(record.to_dict())


@app.route("/appointments/<appointment_id>/status", methods=["POST"])
def change_status(appointment_id: str) -> Response:
    payload = _json_body()
    record = appointments.update_appointment_status(
        appointment_id, payload.get("status"), store=store
    )
    return jsonify(record.to_dict())


@app.route("/appointments/<appointment_id>", methods=["DELETE"])
def remove_appointment(appointment_id: str) -> Tuple[str, int]:
    appointments.delete_appointment(appointment_id, store=store)
    return "", 204


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5000")),
        debug=False,
    )
