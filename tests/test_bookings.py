import unittest
from datetime import date, datetime, time

from pydantic import ValidationError

from karaoke_venue import bookings
from karaoke_venue.clock import FixedClock
from karaoke_venue.models import BookingCommand, RecurringBookingCommand, Room, RoomCommand
from support import DatabaseTestCase

DAY = date(2024, 1, 10)


class BookingCommandTestCase(unittest.TestCase):
    def test_end_time_must_follow_start_time(self) -> None:
        with self.assertRaises(ValidationError):
            BookingCommand(
                room_id="r1",
                customer_name="Budi",
                customer_phone="0812",
                booking_date=DAY,
                start_time=time(22, 0),
                end_time=time(1, 0),
            )

    def test_booking_hours(self) -> None:
        self.assertEqual(bookings.booking_hours(DAY, time(19, 0), time(21, 30)), 2.5)

    def test_recurring_rule_needs_its_day(self) -> None:
        fields = dict(room_id="r1", customer_name="Budi", customer_phone="0812", start_date=DAY,
                      start_time=time(19), end_time=time(21))

        with self.assertRaises(ValidationError):
            RecurringBookingCommand(frequency="weekly", **fields)
        with self.assertRaises(ValidationError):
            RecurringBookingCommand(frequency="monthly", day_of_week=2, **fields)
        with self.assertRaises(ValidationError):
            RecurringBookingCommand(frequency="weekly", day_of_week=2, end_date=date(2024, 1, 1), **fields)


class BookingOperationsTestCase(DatabaseTestCase):
    def command(self, room: Room, start: time, end: time, **fields) -> BookingCommand:
        return BookingCommand(
            room_id=room.id,
            customer_name="Budi Santoso",
            customer_phone="0812345678",
            booking_date=fields.pop("booking_date", DAY),
            start_time=start,
            end_time=end,
            **fields,
        )

    async def test_create_booking_prices_from_room_rate(self) -> None:
        room = await self.add_room(hourly_rate=150000.0)

        booking = await bookings.create_booking(self.session, self.command(room, time(19), time(21)))

        self.assertEqual(booking.status, "pending")
        self.assertEqual(booking.duration_hours, 2.0)
        self.assertEqual(booking.total_amount, 300000.0)

    async def test_overlapping_booking_is_rejected(self) -> None:
        room = await self.add_room()
        await self.add_booking(room, DAY, time(19), time(21))

        with self.assertRaises(bookings.RoomUnavailable):
            await bookings.create_booking(self.session, self.command(room, time(20), time(22)))

    async def test_back_to_back_and_cancelled_slots_are_free(self) -> None:
        room = await self.add_room()
        await self.add_booking(room, DAY, time(19), time(21))
        await self.add_booking(room, DAY, time(21), time(23), status="cancelled")

        self.assertTrue(await bookings.check_room_availability(self.session, room.id, DAY, time(21), time(23)))
        self.assertTrue(await bookings.check_room_availability(self.session, room.id, DAY, time(17), time(19)))
        self.assertFalse(await bookings.check_room_availability(self.session, room.id, DAY, time(18), time(20)))

    async def test_availability_ignores_excluded_booking(self) -> None:
        room = await self.add_room()
        existing = await self.add_booking(room, DAY, time(19), time(21))

        free = await bookings.check_room_availability(
            self.session, room.id, DAY, time(19), time(22), exclude_booking_id=existing.id
        )

        self.assertTrue(free)

    async def test_unknown_room(self) -> None:
        command = BookingCommand(room_id="missing", customer_name="Budi", customer_phone="0812",
                                 booking_date=DAY, start_time=time(19), end_time=time(20))

        with self.assertRaises(bookings.RoomNotFound):
            await bookings.create_booking(self.session, command)

    async def test_status_transitions(self) -> None:
        room = await self.add_room()
        booking = await self.add_booking(room, DAY, time(19), time(21), status="pending")

        confirmed = await bookings.change_booking_status(self.session, booking.id, "confirmed")
        self.assertEqual(confirmed.status, "confirmed")

        cancelled = await bookings.change_booking_status(self.session, booking.id, "cancelled")
        self.assertEqual(cancelled.status, "cancelled")

        with self.assertRaises(bookings.InvalidTransition):
            await bookings.change_booking_status(self.session, booking.id, "confirmed")

    async def test_staff_cannot_complete_booking(self) -> None:
        room = await self.add_room(status="occupied")
        pending = await self.add_booking(room, DAY, time(19), time(21), status="pending")
        confirmed = await self.add_booking(room, DAY, time(21), time(23))

        for booking in (pending, confirmed):
            with self.assertRaises(bookings.InvalidTransition):
                await bookings.change_booking_status(self.session, booking.id, "completed")

        self.assertEqual((await self.fetch(Room, room.id)).status, "occupied")

    async def test_create_recurring_booking_fixes_rate_and_duration(self) -> None:
        room = await self.add_room(hourly_rate=150000.0)
        command = RecurringBookingCommand(room_id=room.id, frequency="weekly", day_of_week=3,
                                          start_date=DAY, start_time=time(19), end_time=time(21, 30),
                                          customer_name="Budi Santoso", customer_phone="0814000000")

        rule = await bookings.create_recurring_booking(self.session, command)

        self.assertEqual(rule.duration_hours, 2.5)
        self.assertEqual(rule.hourly_rate, 150000.0)
        self.assertTrue(rule.is_active)
        self.assertEqual([r.id for r in await bookings.list_recurring_bookings(self.session)], [rule.id])

    async def test_recurring_booking_for_unknown_room(self) -> None:
        command = RecurringBookingCommand(room_id="missing", frequency="monthly", day_of_month=5,
                                          start_date=DAY, start_time=time(19), end_time=time(21),
                                          customer_name="Budi Santoso", customer_phone="0814000000")

        with self.assertRaises(bookings.RoomNotFound):
            await bookings.create_recurring_booking(self.session, command)

    async def test_missing_booking(self) -> None:
        with self.assertRaises(bookings.BookingNotFound):
            await bookings.change_booking_status(self.session, "missing", "confirmed")

    async def test_start_room_session(self) -> None:
        room = await bookings.create_room(self.session, RoomCommand(room_number="201", room_name="VIP 1",
                                                                     room_type="vip", capacity=10,
                                                                     hourly_rate=250000.0))
        started = await bookings.start_room_session(self.session, room.id,
                                                    FixedClock(datetime(2024, 1, 10, 19, 5)))

        self.assertEqual(started.status, "occupied")
        self.assertEqual(started.current_session_start, datetime(2024, 1, 10, 19, 5))

    async def test_list_bookings_by_date(self) -> None:
        room = await self.add_room()
        await self.add_booking(room, DAY, time(21), time(22))
        await self.add_booking(room, DAY, time(19), time(20))
        await self.add_booking(room, date(2024, 1, 11), time(19), time(20))

        listed = await bookings.list_bookings(self.session, DAY)

        self.assertEqual([b.start_time for b in listed], [time(19), time(21)])


if __name__ == "__main__":
    unittest.main()
