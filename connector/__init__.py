"""Appointment store connectors for the clinic booking engine."""

from __future__ import annotations

import logging
import os

from .json_store import JsonFileAppointmentStore
from .store import (
    AppointmentStore,
    AppointmentStoreError,
    InMemoryAppointmentStore,
    StoreConflictError,
    StoreRejectedError,
    StoreUnavailableError,
    appointment_from_row,
    appointment_to_row,
)

__all__ = [
    "AppointmentStore",
    "AppointmentStoreError",
    "InMemoryAppointmentStore",
    "JsonFileAppointmentStore",
    "StoreConflictError",
    "StoreRejectedError",
    "StoreUnavailableError",
    "appointment_from_row",
    "appointment_to_row",
    "build_store",
]

logger = logging.getLogger(__name__)


def build_store() -> AppointmentStore:
    """Select a store from the environment.

    ``BOOKING_STORE_URL`` selects the REST table API, ``BOOKING_DATA_PATH`` a
    JSON file; otherwise an in-memory store is used.
    """

    if os.getenv("BOOKING_STORE_URL"):
        from .rest import RestAppointmentStore

        logger.info("Using REST appointment store at %s", os.environ["BOOKING_STORE_URL"])
        return RestAppointmentStore(
            base_url=os.environ["BOOKING_STORE_URL"],
            api_key=os.getenv("BOOKING_STORE_API_KEY"),
        )

    data_path = os.getenv("BOOKING_DATA_PATH")
    if data_path:
        logger.info("Using JSON appointment store at %s", data_path)
        return JsonFileAppointmentStore(data_path)

    logger.info("Using in-memory appointment store")
    return InMemoryAppointmentStore()
