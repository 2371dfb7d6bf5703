import unittest
from datetime import date, datetime, time

from scheduling.models import (
    Appointment,
    AppointmentStatus,
    InvalidAppointmentError,
    format_time,
    parse_date,
    parse_duration,
    parse_status,
    parse_time,
    time_from_minutes,
)


class ParsingTests(unittest.TestCase):
    def test_parse_time_accepts_zero_padded_hours_and_minutes(self) -> None:
        self.assertEqual(parse_time("09:05"), time(9, 5))
        self.assertEqual(parse_time("00:00"), time(0, 0))
        self.assertEqual(parse_time("23:59"), time(23, 59))

    def test_parse_time_accepts_stored_seconds_when_zero(self) -> None:
        self.assertEqual(parse_time("14:30:00"), time(14, 30))

    def test_parse_time_rejects_malformed_values(self) -> None:
        for value in ("9:00", "24:00", "12:60", "noon", "", "12:30:15", "12-30", None, 930):
            with self.subTest(value=value):
                with self.assertRaises(InvalidAppointmentError):
                    parse_time(value)

    def test_parse_time_accepts_time_instances(self) -> None:
        self.assertEqual(parse_time(time(7, 45)), time(7, 45))
        with self.assertRaises(InvalidAppointmentError):
            parse_time(time(7, 45, 30))

    def test_format_time_is_zero_padded(self) -> None:
        self.assertEqual(format_time(time(7, 5)), "07:05")

    def test_parse_date(self) -> None:
        self.assertEqual(parse_date("2025-03-10"), date(2025, 3, 10))
        self.assertEqual(parse_date(date(2025, 3, 10)), date(2025, 3, 10))
        self.assertEqual(parse_date(datetime(2025, 3, 10, 8, 0)), date(2025, 3, 10))

    def test_parse_date_rejects_malformed_values(self) -> None:
        for value in ("2025-3-10", "2025-02-30", "10/03/2025", "", None):
            with self.subTest(value=value):
                with self.assertRaises(InvalidAppointmentError):
                    parse_date(value)

    def test_parse_duration(self) -> None:
        self.assertEqual(parse_duration(45), 45)
        self.assertEqual(parse_duration("20"), 20)
        for value in (0, -5, "0", "abc", 12.5, True, None):
            with self.subTest(value=value):
                with self.assertRaises(InvalidAppointmentError):
                    parse_duration(value)

    def test_parse_status(self) -> None:
        self.assertIs(parse_status("Cancelled"), AppointmentStatus.CANCELLED)
        self.assertIs(parse_status(AppointmentStatus.NO_SHOW), AppointmentStatus.NO_SHOW)
        with self.assertRaises(InvalidAppointmentError):
            parse_status("postponed")

    def test_time_from_minutes(self) -> None:
        self.assertEqual(time_from_minutes(570), time(9, 30))
        with self.assertRaises(InvalidAppointmentError):
            time_from_minutes(1440)


class AppointmentTests(unittest.TestCase):
    def test_create_validates_and_normalizes(self) -> None:
        appointment = Appointment.create(" D1 ", "2025-03-10", "09:00", "30", status="confirmed")

        self.assertEqual(appointment.doctor_id, "D1")
        self.assertEqual(appointment.date, date(2025, 3, 10))
        self.assertEqual(appointment.start_time, time(9, 0))
        self.assertEqual(appointment.duration_minutes, 30)
        self.assertIs(appointment.status, AppointmentStatus.CONFIRMED)
        self.assertIsNone(appointment.id)

    def test_create_rejects_missing_doctor(self) -> None:
        with self.assertRaises(InvalidAppointmentError):
            Appointment.create("", "2025-03-10", "09:00", 30)

    def test_slot_arithmetic(self) -> None:
        appointment = Appointment.create("D1", "2025-03-10", "09:15", 45)

        self.assertEqual(appointment.start_minutes, 555)
        self.assertEqual(appointment.end_minutes, 600)
        self.assertEqual(appointment.time_label, "09:15")

    def test_only_cancelled_is_inactive(self) -> None:
        for status in AppointmentStatus:
            with self.subTest(status=status):
                self.assertEqual(status.is_active, status is not AppointmentStatus.CANCELLED)

    def test_to_dict_uses_boundary_formats(self) -> None:
        appointment = Appointment.create("D1", "2025-03-10", "09:00", 30, id="7", patient_id="P1")

        self.assertEqual(
            appointment.to_dict(),
            {
                "id": "7",
                "doctor_id": "D1",
                "patient_id": "P1",
                "date": "2025-03-10",
                "time": "09:00",
                "duration_minutes": 30,
                "status": "scheduled",
                "reason": None,
                "notes": None,
            },
        )


if __name__ == "__main__":
    unittest.main()
