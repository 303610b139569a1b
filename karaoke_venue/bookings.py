"""
This module contains the booking and room operations used by staff at the venue.
"""
import logging
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import Clock
from .models import (
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingCommand,
    RecurringBooking,
    RecurringBookingCommand,
    Room,
    RoomCommand,
)

logger = logging.getLogger(__name__)

# Staff may move a booking along these edges. Completion is left to the expiry job,
# which also frees the room; cancelled and completed are final.
ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"cancelled"},
}


class RoomNotFound(Exception):
    """Raised when a room id does not exist."""
    pass


class BookingNotFound(Exception):
    """Raised when a booking id does not exist."""
    pass


class RoomUnavailable(Exception):
    """Raised when a booking would overlap another booking of the same room."""
    pass


class InvalidTransition(Exception):
    """Raised when a booking status change is not allowed."""
    pass


async def list_rooms(session: AsyncSession) -> list[Room]:
    result = await session.execute(select(Room).order_by(Room.room_number))
    return list(result.scalars().all())


async def create_room(session: AsyncSession, command: RoomCommand) -> Room:
    room = Room(**command.model_dump(), status="available")
    session.add(room)
    await session.commit()
    await session.refresh(room)
    logger.info(f"Room {room.room_number} created with id {room.id}")
    return room


async def start_room_session(session: AsyncSession, room_id: str, clock: Clock) -> Room:
    """
    Marks a room occupied and stamps the session start with the venue time.

    Args:
        session (AsyncSession): The database session.
        room_id (str): The room the customers walked into.
        clock (Clock): Source of the session start time.
    """
    room = await session.get(Room, room_id)
    if not room:
        raise RoomNotFound(f"Room {room_id} not found")
    room.status = "occupied"
    room.current_session_start = clock.now()
    await session.commit()
    await session.refresh(room)
    logger.info(f"Session started in room {room_id} at {room.current_session_start}")
    return room


async def check_room_availability(session: AsyncSession, room_id: str, booking_date: date,
                                  start_time: time, end_time: time,
                                  exclude_booking_id: Optional[str] = None) -> bool:
    """
    Checks that no live booking of the room overlaps the given slot.

    Two slots on the same date overlap when each starts before the other ends, so
    back-to-back bookings are allowed. Cancelled and completed bookings are ignored.

    Returns:
        bool: True if the slot is free.
    """
    stmt = select(Booking.id).where(
        Booking.room_id == room_id,
        Booking.booking_date == booking_date,
        Booking.status.not_in(TERMINAL_BOOKING_STATUSES),
        Booking.start_time < end_time,
        Booking.end_time > start_time,
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    clash = await session.scalar(stmt.limit(1))
    return clash is None


def booking_hours(booking_date: date, start_time: time, end_time: time) -> float:
    delta = datetime.combine(booking_date, end_time) - datetime.combine(booking_date, start_time)
    return delta.total_seconds() / 3600


async def create_booking(session: AsyncSession, command: BookingCommand) -> Booking:
    """
    Creates a booking after checking the room is free for the requested slot.

    Args:
        session (AsyncSession): The database session.
        command (BookingCommand): The booking details.

    Returns:
        Booking: The stored booking, with duration and total priced from the room's hourly rate.
    """
    room = await session.get(Room, command.room_id)
    if not room:
        raise RoomNotFound(f"Room {command.room_id} not found")

    available = await check_room_availability(
        session, command.room_id, command.booking_date, command.start_time, command.end_time
    )
    if not available:
        logger.warning(f"Room {room.room_number} is already booked on {command.booking_date} "
                       f"between {command.start_time} and {command.end_time}")
        raise RoomUnavailable(f"Room {room.room_number} is not available for the selected time")

    hours = booking_hours(command.booking_date, command.start_time, command.end_time)
    booking = Booking(
        **command.model_dump(),
        duration_hours=hours,
        total_amount=hours * room.hourly_rate,
    )
    session.add(booking)
    await session.commit()
    await session.refresh(booking)
    logger.info(f"Booking {booking.id} created for room {room.room_number}")
    return booking


async def get_booking(session: AsyncSession, booking_id: str) -> Booking:
    booking = await session.get(Booking, booking_id)
    if not booking:
        raise BookingNotFound(f"Booking {booking_id} not found")
    return booking


async def list_bookings(session: AsyncSession, booking_date: Optional[date] = None) -> list[Booking]:
    stmt = select(Booking).order_by(Booking.booking_date, Booking.start_time)
    if booking_date is not None:
        stmt = stmt.where(Booking.booking_date == booking_date)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def change_booking_status(session: AsyncSession, booking_id: str, status: str) -> Booking:
    """
    Moves a booking to a new status on behalf of staff.

    Raises:
        BookingNotFound: If the booking does not exist.
        InvalidTransition: If the booking is in a final state or the move is not allowed.
    """
    booking = await get_booking(session, booking_id)
    if booking.status == status:
        return booking
    if status not in ALLOWED_TRANSITIONS.get(booking.status, set()):
        raise InvalidTransition(f"Cannot change booking {booking_id} from {booking.status} to {status}")
    previous = booking.status
    booking.status = status
    await session.commit()
    await session.refresh(booking)
    logger.info(f"Booking {booking_id} moved from {previous} to {status}")
    return booking


async def create_recurring_booking(session: AsyncSession, command: RecurringBookingCommand) -> RecurringBooking:
    """
    Stores a recurring booking rule, fixing its duration and hourly rate from the room.
    """
    room = await session.get(Room, command.room_id)
    if not room:
        raise RoomNotFound(f"Room {command.room_id} not found")

    rule = RecurringBooking(
        **command.model_dump(),
        duration_hours=booking_hours(command.start_date, command.start_time, command.end_time),
        hourly_rate=room.hourly_rate,
        is_active=True,
    )
    session.add(rule)
    await session.commit()
    await session.refresh(rule)
    logger.info(f"Recurring {rule.frequency} booking {rule.id} created for room {room.room_number}")
    return rule


async def list_recurring_bookings(session: AsyncSession) -> list[RecurringBooking]:
    result = await session.execute(select(RecurringBooking).order_by(RecurringBooking.start_date))
    return list(result.scalars().all())
