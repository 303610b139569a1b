import tempfile
import unittest
from datetime import date, time
from pathlib import Path

from alchemical.aio import Alchemical
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from karaoke_venue.models import Booking, Room


class FlakySession(AsyncSession):
    """Session that raises OperationalError for statements matched by `fail_when`."""

    fail_when = None

    async def execute(self, statement, *args, **kwargs):
        if self.fail_when is not None and self.fail_when(statement):
            raise OperationalError(str(statement), {}, Exception("injected failure"))
        return await super().execute(statement, *args, **kwargs)


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Gives every test a fresh SQLite database file."""

    async def asyncSetUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory(ignore_cleanup_errors=True)
        self.database = Alchemical(f"sqlite+aiosqlite:///{Path(self.tmpdir.name) / 'test.db'}")
        await self.database.create_all()
        self.session = FlakySession(bind=self.database.get_engine(), expire_on_commit=False)

    async def asyncTearDown(self) -> None:
        await self.session.close()
        await self.database.get_engine().dispose()
        self.tmpdir.cleanup()

    async def add_room(self, number: str = "101", status: str = "available", **fields) -> Room:
        room = Room(room_number=number, room_name=f"Room {number}", status=status,
                    hourly_rate=fields.pop("hourly_rate", 100000.0), **fields)
        self.session.add(room)
        await self.session.commit()
        return room

    async def add_booking(self, room: Room, booking_date: date, start_time: time, end_time: time,
                          status: str = "confirmed") -> Booking:
        booking = Booking(
            room_id=room.id,
            booking_date=booking_date,
            start_time=start_time,
            end_time=end_time,
            status=status,
            customer_name="Dewi Lestari",
            customer_phone="0812000000",
        )
        self.session.add(booking)
        await self.session.commit()
        return booking

    async def fetch(self, model, id_):
        async with self.database.Session() as fresh:
            return await fresh.get(model, id_)
