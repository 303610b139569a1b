import unittest
from datetime import date, datetime, time

from sqlalchemy import select

from karaoke_venue.clock import FixedClock
from karaoke_venue.models import BookingReminder
from karaoke_venue.reminders import DeliveryFailed, ReminderFetchFailed, send_booking_reminders
from support import DatabaseTestCase

DAY = date(2024, 1, 10)


class FakeMailer:
    def __init__(self, error: str | None = None):
        self.error = error
        self.sent = []

    def send(self, to: str, subject: str, body: str) -> None:
        if self.error:
            raise DeliveryFailed(self.error)
        self.sent.append((to, subject, body))


class SendBookingRemindersTestCase(DatabaseTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.clock = FixedClock(datetime(2024, 1, 10, 18, 50, 30))
        self.room = await self.add_room(number="102")
        self.mailer = FakeMailer()

    async def add_emailed_booking(self, start_time: time, end_time: time, email: str | None = "dewi@example.com",
                                  **fields):
        booking = await self.add_booking(self.room, fields.pop("booking_date", DAY), start_time, end_time, **fields)
        booking.customer_email = email
        await self.session.commit()
        return booking

    async def ledger(self, booking_id: str):
        return await self.session.scalar(select(BookingReminder).where(BookingReminder.booking_id == booking_id))

    async def test_sends_reminder_once(self) -> None:
        booking = await self.add_emailed_booking(time(19), time(21))

        report = await send_booking_reminders(self.session, self.clock, self.mailer, 15)

        self.assertEqual((report.sent, report.skipped, report.errors, report.total), (1, 0, 0, 1))
        [(to, subject, body)] = self.mailer.sent
        self.assertEqual(to, "dewi@example.com")
        self.assertEqual(subject, "Booking Reminder - Room 102 in 15 minutes")
        self.assertIn("Dewi Lestari", body)
        self.assertIn("19:00 - 21:00", body)
        self.assertTrue((await self.ledger(booking.id)).email_sent)

        report = await send_booking_reminders(self.session, self.clock, self.mailer, 15)

        self.assertEqual((report.sent, report.skipped), (0, 1))
        self.assertEqual(len(self.mailer.sent), 1)

    async def test_booking_without_email_is_skipped(self) -> None:
        booking = await self.add_emailed_booking(time(19), time(21), email=None)

        report = await send_booking_reminders(self.session, self.clock, self.mailer, 15)

        self.assertEqual((report.sent, report.skipped, report.total), (0, 1, 1))
        self.assertIsNone(await self.ledger(booking.id))

    async def test_delivery_failure_is_recorded(self) -> None:
        booking = await self.add_emailed_booking(time(19), time(21))

        report = await send_booking_reminders(self.session, self.clock, FakeMailer(error="quota exceeded"), 15)

        self.assertEqual((report.sent, report.errors), (0, 1))
        entry = await self.ledger(booking.id)
        self.assertFalse(entry.email_sent)
        self.assertEqual(entry.email_error, "quota exceeded")

    async def test_only_active_bookings_in_window(self) -> None:
        await self.add_emailed_booking(time(18, 45), time(19, 45))
        await self.add_emailed_booking(time(19, 10), time(20))
        await self.add_emailed_booking(time(19), time(21), booking_date=date(2024, 1, 11))
        await self.add_emailed_booking(time(19, 5), time(19, 30), status="cancelled")
        await self.add_emailed_booking(time(18, 50), time(19), status="pending")

        report = await send_booking_reminders(self.session, self.clock, self.mailer, 15)

        self.assertEqual((report.sent, report.total), (1, 1))

    async def test_fetch_failure(self) -> None:
        self.session.fail_when = lambda statement: True

        with self.assertRaises(ReminderFetchFailed):
            await send_booking_reminders(self.session, self.clock, self.mailer, 15)


if __name__ == "__main__":
    unittest.main()
