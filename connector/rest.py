"""HTTP appointment store for a PostgREST-style table API.

The clinic backend exposes its ``appointments`` table over REST: rows are
filtered with ``column=eq.value`` query parameters, written with ``POST`` and
``PATCH`` and removed with ``DELETE``. This module wraps that API behind the
appointment store contract, with pooled sessions, retries for idempotent
reads and strict timeouts so a slow backend surfaces as
``StoreUnavailableError`` instead of an indefinite wait.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Tuple, Union

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from scheduling.models import Appointment, parse_date

from .store import (
    StoreConflictError,
    StoreRejectedError,
    StoreUnavailableError,
    appointment_from_row,
    appointment_to_row,
    normalize_changes,
)

__all__ = ["RestAppointmentStore"]


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = float(os.getenv("BOOKING_STORE_TIMEOUT", "10"))
DEFAULT_MAX_RETRIES = int(os.getenv("BOOKING_STORE_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_FACTOR = 0.5

DEFAULT_BASE_URL = os.getenv("BOOKING_STORE_URL")
DEFAULT_API_KEY = os.getenv("BOOKING_STORE_API_KEY")
DEFAULT_TABLE = os.getenv("BOOKING_STORE_TABLE", "appointments")

# Postgres SQLSTATE for a violated exclusion constraint.
EXCLUSION_VIOLATION = "23P01"

_COLUMN_NAMES = {
    "date": "appointment_date",
    "start_time": "appointment_time",
}


class RestAppointmentStore:
    """Appointment store talking to a PostgREST table endpoint."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = DEFAULT_BASE_URL,
        api_key: Optional[str] = DEFAULT_API_KEY,
        table: str = DEFAULT_TABLE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be provided")
        if not api_key:
            raise ValueError("api_key must be provided")
        if not table:
            raise ValueError("table must be provided")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.table = table
        self.timeout = timeout
        self._session = session or self._build_session(
            max_retries=max_retries, backoff_factor=backoff_factor
        )

    def _build_session(self, *, max_retries: int, backoff_factor: float) -> requests.Session:
        session = requests.Session()
        # Writes are not retried: a repeated POST could book the slot twice.
        retry_strategy = Retry(
            total=max_retries,
            read=max_retries,
            connect=max_retries,
            status=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=("GET", "DELETE", "HEAD", "OPTIONS"),
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def list_by_doctor_and_date(self, doctor_id: str, day: Any) -> List[Appointment]:
        params = {
            "select": "*",
            "doctor_id": f"eq.{doctor_id}",
            "appointment_date": f"eq.{parse_date(day).isoformat()}",
            "order": "appointment_time.asc",
        }
        return self._rows_to_appointments(self._request("GET", params=params))

    def list_all(self) -> List[Appointment]:
        params = {"select": "*", "order": "appointment_date.asc,appointment_time.asc"}
        return self._rows_to_appointments(self._request("GET", params=params))

    def get(self, appointment_id: str) -> Optional[Appointment]:
        if not appointment_id:
            raise ValueError("appointment_id must be provided")
        rows = self._request("GET", params={"select": "*", "id": f"eq.{appointment_id}"})
        appointments = self._rows_to_appointments(rows)
        return appointments[0] if appointments else None

    def create(self, appointment: Appointment) -> Appointment:
        payload = appointment_to_row(appointment)
        payload.pop("id", None)
        rows = self._request(
            "POST",
            json_payload=payload,
            headers={"Prefer": "return=representation"},
            expected_status=(200, 201),
        )
        created = self._rows_to_appointments(rows)
        if not created:
            raise StoreRejectedError("Appointment store did not return the created row")
        logger.info("Created appointment %s for doctor %s", created[0].id, created[0].doctor_id)
        return created[0]

    def update(self, appointment_id: str, **fields: Any) -> Appointment:
        if not appointment_id:
            raise ValueError("appointment_id must be provided")
        payload = self._changes_to_row(normalize_changes(fields))
        rows = self._request(
            "PATCH",
            params={"id": f"eq.{appointment_id}"},
            json_payload=payload,
            headers={"Prefer": "return=representation"},
        )
        updated = self._rows_to_appointments(rows)
        if not updated:
            raise StoreRejectedError(f"Appointment '{appointment_id}' does not exist")
        return updated[0]

    def delete(self, appointment_id: str) -> None:
        if not appointment_id:
            raise ValueError("appointment_id must be provided")
        rows = self._request(
            "DELETE",
            params={"id": f"eq.{appointment_id}"},
            headers={"Prefer": "return=representation"},
        )
        if isinstance(rows, list) and not rows:
            raise StoreRejectedError(f"Appointment '{appointment_id}' does not exist")

    @staticmethod
    def _changes_to_row(changes: Dict[str, Any]) -> Dict[str, Any]:
        row: Dict[str, Any] = {}
        for name, value in changes.items():
            column = _COLUMN_NAMES.get(name, name)
            if name == "date":
                value = value.isoformat()
            elif name == "start_time":
                value = f"{value.hour:02d}:{value.minute:02d}"
            elif name == "status":
                value = value.value
            row[column] = value
        return row

    @staticmethod
    def _rows_to_appointments(rows: Any) -> List[Appointment]:
        if not isinstance(rows, list):
            raise StoreUnavailableError("Appointment store returned an unexpected payload")
        return [appointment_from_row(row) for row in rows]

    def _request(
        self,
        method: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        expected_status: Union[int, Tuple[int, ...]] = (200,),
    ) -> Any:
        if isinstance(expected_status, int):
            expected_status = (expected_status,)

        url = f"{self.base_url}/{self.table}"
        request_headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }
        if headers:
            request_headers.update(headers)

        try:
            response = self._session.request(
                method=method.upper(),
                url=url,
                params=params,
                json=json_payload,
                headers=request_headers,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            logger.error("Appointment store timed out after %ss: %s", self.timeout, exc)
            raise StoreUnavailableError("Appointment store request timed out") from exc
        except requests.RequestException as exc:
            logger.error("Request to appointment store failed: %s", exc)
            raise StoreUnavailableError("Failed to execute request to appointment store") from exc

        if response.status_code not in expected_status:
            self._log_error_response(response)
            self._raise_for_response(response)

        if not response.content:
            return []
        try:
            return response.json()
        except ValueError as exc:  # response.json() failure
            logger.error("Invalid JSON received from appointment store: %s", exc)
            raise StoreUnavailableError("Appointment store response was not valid JSON") from exc

    @staticmethod
    def _raise_for_response(response: Response) -> None:
        message = (
            f"Appointment store responded with unexpected status {response.status_code}: "
            f"{response.text[:512]}"
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise StoreUnavailableError(message)

        code = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code")
        if code == EXCLUSION_VIOLATION:
            raise StoreConflictError(message)
        raise StoreRejectedError(message)

    @staticmethod
    def _log_error_response(response: Response) -> None:
        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type:
            try:
                parsed = response.json()
                logger.error(
                    "Appointment store error response: status=%s body=%s",
                    response.status_code,
                    parsed,
                )
                return
            except ValueError:
                pass
        logger.error(
            "Appointment store error response: status=%s body=%s",
            response.status_code,
            response.text[:2048],
        )
