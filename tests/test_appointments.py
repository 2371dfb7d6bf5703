import unittest
from datetime import date, time
from unittest.mock import patch

from connector import InMemoryAppointmentStore
from scheduling import appointments
from scheduling.appointments import AppointmentNotFoundError, SlotUnavailableError
from scheduling.models import AppointmentStatus, InvalidAppointmentError

DAY = date(2025, 3, 10)


class AppointmentServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryAppointmentStore()
        self.store_patcher = patch("scheduling.appointments.STORE", self.store)
        self.store_patcher.start()

    def tearDown(self) -> None:
        self.store_patcher.stop()

    def test_book_appointment_success(self) -> None:
        appointment = appointments.book_appointment(
            "D1", "2025-03-10", "09:00", 30, patient_id="P1", reason="Checkup"
        )

        self.assertIsNotNone(appointment.id)
        self.assertEqual(appointment.doctor_id, "D1")
        self.assertEqual(appointment.date, DAY)
        self.assertEqual(appointment.start_time, time(9, 0))
        self.assertIs(appointment.status, AppointmentStatus.SCHEDULED)
        self.assertEqual(self.store.get(appointment.id), appointment)

    def test_book_appointment_rejects_overlapping_slot(self) -> None:
        first = appointments.book_appointment("D1", DAY, "09:00", 30)

        with self.assertRaises(SlotUnavailableError) as context:
            appointments.book_appointment("D1", DAY, "09:20", 15)

        self.assertEqual(context.exception.result.conflicting_appointment_id, first.id)
        self.assertEqual(len(self.store.list_all()), 1)

    def test_book_appointment_allows_adjacent_slot(self) -> None:
        appointments.book_appointment("D1", DAY, "09:00", 30)

        appointments.book_appointment("D1", DAY, "09:30", 30)

        self.assertEqual(len(self.store.list_all()), 2)

    def test_book_appointment_rejects_invalid_duration(self) -> None:
        with self.assertRaises(InvalidAppointmentError):
            appointments.book_appointment("D1", DAY, "09:00", 0)

    def test_book_appointment_requires_doctor(self) -> None:
        with self.assertRaises(InvalidAppointmentError):
            appointments.book_appointment("  ", DAY, "09:00", 30)

    def test_cancelled_slot_can_be_rebooked(self) -> None:
        first = appointments.book_appointment("D1", DAY, "09:00", 30)
        cancelled = appointments.cancel_appointment(first.id)

        second = appointments.book_appointment("D1", DAY, "09:00", 30)

        self.assertIs(cancelled.status, AppointmentStatus.CANCELLED)
        self.assertIsNotNone(self.store.get(first.id))
        self.assertNotEqual(second.id, first.id)

    def test_reactivating_cancelled_appointment_rechecks_slot(self) -> None:
        first = appointments.book_appointment("D1", DAY, "09:00", 30)
        appointments.cancel_appointment(first.id)
        appointments.book_appointment("D1", DAY, "09:15", 30)

        with self.assertRaises(SlotUnavailableError):
            appointments.update_appointment_status(first.id, "confirmed")

        self.assertIs(self.store.get(first.id).status, AppointmentStatus.CANCELLED)

    def test_status_change_between_active_states(self) -> None:
        first = appointments.book_appointment("D1", DAY, "09:00", 30)

        updated = appointments.update_appointment_status(first.id, "in_progress")

        self.assertIs(updated.status, AppointmentStatus.IN_PROGRESS)

    def test_reschedule_does_not_conflict_with_itself(self) -> None:
        first = appointments.book_appointment("D1", DAY, "09:00", 30)

        moved = appointments.reschedule_appointment(first.id, duration_minutes=45)

        self.assertEqual(moved.id, first.id)
        self.assertEqual(moved.duration_minutes, 45)

    def test_reschedule_rejects_overlap_with_other_booking(self) -> None:
        first = appointments.book_appointment("D1", DAY, "09:00", 30)
        appointments.book_appointment("D1", DAY, "10:00", 30)

        with self.assertRaises(SlotUnavailableError):
            appointments.reschedule_appointment(first.id, start_time="09:45")

        self.assertEqual(self.store.get(first.id).start_time, time(9, 0))

    def test_reschedule_rejects_unknown_fields(self) -> None:
        first = appointments.book_appointment("D1", DAY, "09:00", 30)

        with self.assertRaises(InvalidAppointmentError):
            appointments.reschedule_appointment(first.id, status="cancelled")

    def test_unknown_appointment_raises_not_found(self) -> None:
        with self.assertRaises(AppointmentNotFoundError):
            appointments.cancel_appointment("999")
        with self.assertRaises(AppointmentNotFoundError):
            appointments.reschedule_appointment("999", start_time="10:00")
        with self.assertRaises(AppointmentNotFoundError):
            appointments.delete_appointment("999")

    def test_delete_appointment_removes_it(self) -> None:
        first = appointments.book_appointment("D1", DAY, "09:00", 30)

        appointments.delete_appointment(first.id)

        self.assertIsNone(self.store.get(first.id))

    def test_get_doctor_schedule_sorted_and_active_only(self) -> None:
        late = appointments.book_appointment("D1", DAY, "14:00", 30)
        early = appointments.book_appointment("D1", DAY, "08:00", 30)
        cancelled = appointments.book_appointment("D1", DAY, "11:00", 30)
        appointments.cancel_appointment(cancelled.id)
        appointments.book_appointment("D2", DAY, "09:00", 30)

        schedule = appointments.get_doctor_schedule("D1", "2025-03-10")
        everything = appointments.get_doctor_schedule("D1", DAY, include_cancelled=True)

        self.assertEqual([record.id for record in schedule], [early.id, late.id])
        self.assertEqual(len(everything), 3)

    def test_check_availability_excludes_edited_appointment(self) -> None:
        first = appointments.book_appointment("D1", DAY, "09:00", 30)

        blocked = appointments.check_availability("D1", DAY, "09:00", 30)
        clear = appointments.check_availability("D1", DAY, "09:00", 30, exclude_id=first.id)

        self.assertTrue(blocked.has_conflict)
        self.assertFalse(clear.has_conflict)

    def test_find_free_times(self) -> None:
        appointments.book_appointment("D1", DAY, "09:00", 60)

        free = appointments.find_free_times("D1", DAY, 30, step_minutes=30)

        self.assertIn(time(8, 30), free)
        self.assertNotIn(time(9, 0), free)
        self.assertNotIn(time(9, 30), free)
        self.assertIn(time(10, 0), free)

    def test_explicit_store_overrides_default(self) -> None:
        other = InMemoryAppointmentStore()

        appointments.book_appointment("D1", DAY, "09:00", 30, store=other)

        self.assertEqual(len(other.list_all()), 1)
        self.assertEqual(self.store.list_all(), [])


class FilterAndSortTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryAppointmentStore()
        create = appointments.book_appointment
        self.a = create("D1", "2025-03-11", "08:00", 30, patient_id="P1", store=self.store)
        self.b = create("D1", "2025-03-10", "10:00", 30, patient_id="P2", store=self.store)
        self.c = create("D2", "2025-03-10", "09:00", 30, patient_id="P1", store=self.store)

    def test_sort_by_date_then_time(self) -> None:
        ordered = appointments.filter_and_sort_appointments(self.store.list_all())

        self.assertEqual([record.id for record in ordered], [self.c.id, self.b.id, self.a.id])

    def test_sort_by_time_only(self) -> None:
        ordered = appointments.filter_and_sort_appointments(self.store.list_all(), sort_by="time")

        self.assertEqual([record.id for record in ordered], [self.a.id, self.c.id, self.b.id])

    def test_filters_by_doctor_and_patient(self) -> None:
        by_doctor = appointments.filter_and_sort_appointments(self.store.list_all(), doctor_id="D1")
        by_patient = appointments.filter_and_sort_appointments(self.store.list_all(), patient_id="P1")

        self.assertEqual({record.id for record in by_doctor}, {self.a.id, self.b.id})
        self.assertEqual({record.id for record in by_patient}, {self.a.id, self.c.id})

    def test_unknown_sort_key_raises(self) -> None:
        with self.assertRaises(ValueError):
            appointments.filter_and_sort_appointments([], sort_by="doctor")


if __name__ == "__main__":
    unittest.main()
