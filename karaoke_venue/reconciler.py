"""
This module contains the booking expiry job.

The job marks bookings whose end instant has passed as completed and then frees
the rooms they held, unless another active booking still claims the room.

Room release is a check-then-act sequence: a booking created between the
"is the room still booked" query and the room update is not seen. The update is
conditioned on the room still being occupied, so the worst case is a missed or
lost release, never a release of a room that somebody already moved elsewhere.
No lock is taken across runs; overlapping runs converge because both writes are
conditional on current state.
"""
import logging
from datetime import date, datetime
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import Clock
from .models import ACTIVE_BOOKING_STATUSES, Booking, ReconciliationReport, Room, RoomReleaseResult

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Base exception for failures that abort an expiry run."""
    pass


class ScanFailed(ReconciliationError):
    """Raised when the candidate bookings cannot be read."""
    pass


class TransitionFailed(ReconciliationError):
    """Raised when expired bookings cannot be marked completed."""
    pass


async def scan_candidates(session: AsyncSession, today: date) -> list[Booking]:
    """
    Fetches active bookings dated today or earlier.

    The date-only filter over-selects: same-day bookings that have not ended yet
    are returned too and must be dropped by `classify_expired`.

    Args:
        session (AsyncSession): The database session.
        today (date): The current venue date.

    Returns:
        list[Booking]: The candidate bookings.
    """
    stmt = select(Booking).where(
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        Booking.booking_date <= today,
    )
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as exc:
        logger.error(f"Failed to fetch candidate bookings: {exc}")
        raise ScanFailed(f"Failed to fetch bookings: {exc}") from exc
    return list(result.scalars().all())


def booking_end(booking: Booking) -> datetime:
    """Venue wall-clock instant at which the booking ends."""
    return datetime.combine(booking.booking_date, booking.end_time)


def is_expired(booking: Booking, now: datetime) -> bool:
    return now > booking_end(booking)


def classify_expired(bookings: Iterable[Booking], now: datetime) -> tuple[list[str], list[str]]:
    """
    Splits out the bookings whose end instant is strictly before `now`.

    Returns:
        tuple[list[str], list[str]]: The expired booking ids and the room ids they
        reference. The room ids may repeat.
    """
    booking_ids, room_ids = [], []
    for booking in bookings:
        if is_expired(booking, now):
            booking_ids.append(booking.id)
            room_ids.append(booking.room_id)
    return booking_ids, room_ids


async def mark_completed(session: AsyncSession, booking_ids: list[str]) -> int:
    """
    Moves the given bookings to completed in one statement.

    Only rows that are still pending or confirmed are touched, so a booking that
    was cancelled in the meantime keeps its status.

    Returns:
        int: The number of bookings updated.
    """
    stmt = (
        update(Booking)
        .where(Booking.id.in_(booking_ids), Booking.status.in_(ACTIVE_BOOKING_STATUSES))
        .values(status="completed")
    )
    try:
        result = await session.execute(stmt)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(f"Failed to mark {len(booking_ids)} bookings completed: {exc}")
        raise TransitionFailed(f"Failed to update bookings: {exc}") from exc
    logger.info(f"Marked {result.rowcount} bookings completed")
    return result.rowcount


async def release_room(session: AsyncSession, room_id: str, today: date,
                       exclude_booking_ids: list[str]) -> RoomReleaseResult:
    """
    Frees a room unless another active booking from today onwards still claims it.

    The room update is a compare-and-set on status "occupied". A room in any other
    state is left alone and reported as "not_occupied". Storage errors are logged
    and reported as "failed" so the caller can carry on with the next room.

    Args:
        session (AsyncSession): The database session.
        room_id (str): The room to release.
        today (date): The current venue date.
        exclude_booking_ids (list[str]): The bookings that just expired.
    """
    still_booked_stmt = (
        select(Booking.id)
        .where(
            Booking.room_id == room_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.booking_date >= today,
            Booking.id.not_in(exclude_booking_ids),
        )
        .limit(1)
    )
    release_stmt = (
        update(Room)
        .where(Room.id == room_id, Room.status == "occupied")
        .values(status="available", current_session_start=None)
    )
    try:
        other_booking = await session.scalar(still_booked_stmt)
        if other_booking is not None:
            logger.info(f"Room {room_id} still has active booking {other_booking}, keeping it")
            return RoomReleaseResult(room_id=room_id, outcome="still_booked")
        result = await session.execute(release_stmt)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(f"Failed to release room {room_id}: {exc}")
        return RoomReleaseResult(room_id=room_id, outcome="failed", error=str(exc))

    if result.rowcount == 0:
        logger.info(f"Room {room_id} is no longer occupied, nothing to release")
        return RoomReleaseResult(room_id=room_id, outcome="not_occupied")
    logger.info(f"Room {room_id} released")
    return RoomReleaseResult(room_id=room_id, outcome="released")


async def expire_bookings(session: AsyncSession, clock: Clock) -> ReconciliationReport:
    """
    Runs one pass of the booking expiry job.

    Raises:
        ScanFailed: If the candidate bookings cannot be read. Nothing was written.
        TransitionFailed: If the bookings cannot be marked completed. Rooms are not
            touched; the next run picks the same bookings up again.
    """
    now = clock.now()
    today = now.date()

    candidates = await scan_candidates(session, today)
    report = ReconciliationReport(checked=len(candidates))

    booking_ids, room_ids = classify_expired(candidates, now)
    if not booking_ids:
        logger.info(f"No expired bookings among {len(candidates)} candidates")
        return report

    logger.info(f"Found {len(booking_ids)} expired bookings: {booking_ids}")
    report.expired_booking_ids = booking_ids
    report.bookings_updated = await mark_completed(session, booking_ids)

    for room_id in dict.fromkeys(room_ids):
        report.room_results.append(await release_room(session, room_id, today, booking_ids))

    if report.failed_rooms:
        logger.warning(f"Could not release rooms: {report.failed_rooms}")
    return report
