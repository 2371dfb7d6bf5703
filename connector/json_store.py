"""Appointment store backed by a JSON file on disk."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Union

from scheduling.models import Appointment, InvalidAppointmentError

from .store import (
    InMemoryAppointmentStore,
    StoreUnavailableError,
    appointment_from_row,
    appointment_to_row,
)

logger = logging.getLogger(__name__)


class JsonFileAppointmentStore(InMemoryAppointmentStore):
    """Keeps appointments in memory and rewrites the JSON file after every write.

    A missing file is treated as an empty store. A file that cannot be parsed
    raises ``StoreUnavailableError`` rather than being silently discarded.
    """

    def __init__(self, source_path: Union[str, Path], *, enforce_no_overlap: bool = False) -> None:
        super().__init__(enforce_no_overlap=enforce_no_overlap)
        self._source_path = Path(source_path)
        for record in self._load():
            if record.id is None:
                record = record.replace(id=self._next_id())
            self._appointments[record.id] = record
        logger.info(
            "Loaded %d appointments from %s", len(self._appointments), self._source_path
        )

    @property
    def source_path(self) -> Path:
        return self._source_path

    def _load(self) -> List[Appointment]:
        if not self._source_path.exists():
            return []

        try:
            raw_content = self._source_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot read {self._source_path}: {exc}") from exc
        if not raw_content:
            return []

        try:
            raw_data = json.loads(raw_content)
        except json.JSONDecodeError as exc:
            raise StoreUnavailableError(
                f"Invalid appointment data in {self._source_path}: {exc.msg}"
            ) from exc
        if not isinstance(raw_data, list):
            raise StoreUnavailableError("Appointment data must be a list of records.")

        try:
            return [appointment_from_row(entry) for entry in raw_data]
        except InvalidAppointmentError as exc:
            raise StoreUnavailableError(
                f"Invalid appointment record in {self._source_path}: {exc}"
            ) from exc

    def _persist(self, appointments: Dict[str, Appointment]) -> None:
        rows = [appointment_to_row(record) for record in appointments.values()]
        serialized = json.dumps(rows, indent=2)
        try:
            self._source_path.parent.mkdir(parents=True, exist_ok=True)
            self._source_path.write_text(f"{serialized}\n", encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to write %s: %s", self._source_path, exc)
            raise StoreUnavailableError(f"Cannot write {self._source_path}: {exc}") from exc
