import unittest
from unittest.mock import MagicMock, patch

from api.app import app
from connector import InMemoryAppointmentStore, StoreConflictError, StoreUnavailableError
from scheduling.flow import UNVERIFIED_MESSAGE


class BookingApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryAppointmentStore()
        self.store_patcher = patch("api.app.store", self.store)
        self.store_patcher.start()
        self.client = app.test_client()

    def tearDown(self) -> None:
        self.store_patcher.stop()

    def _book(self, time: str, duration: int = 30, doctor: str = "D1") -> dict:
        response = self.client.post(
            "/appointments",
            json={
                "doctor_id": doctor,
                "date": "2025-03-10",
                "time": time,
                "duration_minutes": duration,
                "patient_id": "P1",
            },
        )
        self.assertEqual(response.status_code, 201, response.get_json())
        return response.get_json()

    def test_create_appointment(self) -> None:
        body = self._book("09:00")

        self.assertEqual(body["time"], "09:00")
        self.assertEqual(body["status"], "scheduled")
        self.assertIsNotNone(body["id"])

    def test_overlapping_create_returns_conflict_time(self) -> None:
        self._book("09:00")

        response = self.client.post(
            "/appointments",
            json={"doctor_id": "D1", "date": "2025-03-10", "time": "09:20", "duration_minutes": 15},
        )

        self.assertEqual(response.status_code, 409)
        body = response.get_json()
        self.assertTrue(body["has_conflict"])
        self.assertEqual(body["conflict_time"], "09:00")
        self.assertIn("09:00", body["message"])

    def test_check_endpoint(self) -> None:
        booked = self._book("09:00")

        conflict = self.client.post(
            "/appointments/check",
            json={"doctor_id": "D1", "date": "2025-03-10", "time": "09:15", "duration_minutes": 30},
        ).get_json()
        own_slot = self.client.post(
            "/appointments/check",
            json={
                "doctor_id": "D1",
                "date": "2025-03-10",
                "time": "09:00",
                "duration_minutes": 30,
                "exclude_id": booked["id"],
            },
        ).get_json()

        self.assertTrue(conflict["has_conflict"])
        self.assertEqual(conflict["conflicting_appointment_id"], booked["id"])
        self.assertFalse(own_slot["has_conflict"])

    def test_invalid_input_returns_bad_request(self) -> None:
        for payload in (
            {"doctor_id": "D1", "date": "2025-03-10", "time": "09:00", "duration_minutes": 0},
            {"doctor_id": "D1", "date": "2025-03-10", "time": "9am", "duration_minutes": 30},
            {"doctor_id": "D1", "date": "10/03/2025", "time": "09:00", "duration_minutes": 30},
        ):
            with self.subTest(payload=payload):
                response = self.client.post("/appointments/check", json=payload)
                self.assertEqual(response.status_code, 400)
                self.assertIn("error", response.get_json())

    def test_non_object_body_returns_bad_request(self) -> None:
        response = self.client.post("/appointments", json=["not", "an", "object"])

        self.assertEqual(response.status_code, 400)

    def test_store_failure_never_reports_clear(self) -> None:
        failing = MagicMock()
        failing.list_by_doctor_and_date.side_effect = StoreUnavailableError("timeout")

        with patch("api.app.store", failing):
            response = self.client.post(
                "/appointments/check",
                json={"doctor_id": "D1", "date": "2025-03-10", "time": "09:00", "duration_minutes": 30},
            )

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.get_json()["error"], UNVERIFIED_MESSAGE)

    def test_store_side_conflict_returns_conflict(self) -> None:
        guarded = MagicMock()
        guarded.list_by_doctor_and_date.return_value = []
        guarded.create.side_effect = StoreConflictError("exclusion constraint")

        with patch("api.app.store", guarded):
            response = self.client.post(
                "/appointments",
                json={"doctor_id": "D1", "date": "2025-03-10", "time": "09:00", "duration_minutes": 30},
            )

        self.assertEqual(response.status_code, 409)
        self.assertTrue(response.get_json()["has_conflict"])

    def test_list_day_schedule(self) -> None:
        self._book("11:00")
        self._book("09:00")
        self._book("09:00", doctor="D2")

        response = self.client.get("/appointments?doctor_id=D1&date=2025-03-10")

        self.assertEqual(response.status_code, 200)
        times = [item["time"] for item in response.get_json()["appointments"]]
        self.assertEqual(times, ["09:00", "11:00"])

    def test_free_slots(self) -> None:
        self._book("09:00", duration=60)

        response = self.client.get(
            "/appointments/free-slots?doctor_id=D1&date=2025-03-10&duration_minutes=30"
        )

        times = response.get_json()["times"]
        self.assertIn("08:30", times)
        self.assertNotIn("09:30", times)
        self.assertIn("10:00", times)

    def test_patch_reschedules_without_self_conflict(self) -> None:
        booked = self._book("09:00")

        response = self.client.patch(
            f"/appointments/{booked['id']}", json={"time": "09:15", "duration_minutes": 45}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["time"], "09:15")

    def test_patch_unknown_appointment_returns_not_found(self) -> None:
        response = self.client.patch("/appointments/404", json={"time": "09:15"})

        self.assertEqual(response.status_code, 404)

    def test_status_change_and_delete(self) -> None:
        booked = self._book("09:00")

        cancelled = self.client.post(
            f"/appointments/{booked['id']}/status", json={"status": "cancelled"}
        )
        rebooked = self.client.post(
            "/appointments",
            json={"doctor_id": "D1", "date": "2025-03-10", "time": "09:00", "duration_minutes": 30},
        )
        deleted = self.client.delete(f"/appointments/{booked['id']}")

        self.assertEqual(cancelled.get_json()["status"], "cancelled")
        self.assertEqual(rebooked.status_code, 201)
        self.assertEqual(deleted.status_code, 204)
        self.assertIsNone(self.store.get(booked["id"]))

    def test_unknown_status_returns_bad_request(self) -> None:
        booked = self._book("09:00")

        response = self.client.post(f"/appointments/{booked['id']}/status", json={"status": "later"})

        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":
    unittest.main()
