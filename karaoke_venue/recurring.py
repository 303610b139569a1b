"""
This module contains the job that turns recurring bookings into real bookings.

Each run looks a fixed number of days ahead, starting today, and creates a
confirmed booking for every date a rule matches. A date is skipped when a booking
for the same room, date and start time already exists (in any status, so a
cancelled occurrence is not recreated) or when the slot overlaps another booking.
"""
import logging
from datetime import date, timedelta

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .bookings import check_room_availability
from .clock import Clock
from .models import Booking, RecurringBooking, RecurringReport

logger = logging.getLogger(__name__)

AUTO_GENERATED_NOTE = "(Auto-generated from recurring booking)"


class RecurringFetchFailed(Exception):
    """Raised when the recurring booking rules cannot be read."""
    pass


def sunday_based_weekday(day: date) -> int:
    """Weekday number with Sunday = 0, the convention `day_of_week` is stored in."""
    return (day.weekday() + 1) % 7


def occurrence_dates(rule: RecurringBooking, today: date, days_ahead: int) -> list[date]:
    """
    Lists the dates in [today, today + days_ahead) on which the rule produces a booking.
    """
    dates = []
    for offset in range(days_ahead):
        day = today + timedelta(days=offset)
        if day < rule.start_date:
            continue
        if rule.end_date is not None and day > rule.end_date:
            continue
        if rule.frequency == "weekly" and sunday_based_weekday(day) == rule.day_of_week:
            dates.append(day)
        elif rule.frequency == "monthly" and day.day == rule.day_of_month:
            dates.append(day)
    return dates


async def _create_occurrence(session: AsyncSession, rule: RecurringBooking, booking_date: date) -> str:
    """
    Creates the booking for one date of a rule.

    Returns:
        str: "created", "skipped" or "error".
    """
    existing = await session.scalar(
        select(Booking.id).where(
            Booking.room_id == rule.room_id,
            Booking.booking_date == booking_date,
            Booking.start_time == rule.start_time,
        ).limit(1)
    )
    if existing is not None:
        logger.info(f"Booking already exists for {booking_date} at {rule.start_time}")
        return "skipped"

    available = await check_room_availability(session, rule.room_id, booking_date,
                                              rule.start_time, rule.end_time)
    if not available:
        logger.info(f"Room not available for {booking_date} at {rule.start_time}")
        return "skipped"

    booking = Booking(
        room_id=rule.room_id,
        booking_date=booking_date,
        start_time=rule.start_time,
        end_time=rule.end_time,
        status="confirmed",
        customer_name=rule.customer_name,
        customer_phone=rule.customer_phone,
        customer_email=rule.customer_email,
        duration_hours=rule.duration_hours,
        total_amount=rule.duration_hours * rule.hourly_rate,
        deposit_amount=rule.deposit_amount,
        notes=" ".join(filter(None, [rule.notes, AUTO_GENERATED_NOTE])),
    )
    try:
        session.add(booking)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(f"Error creating booking for {booking_date}: {exc}")
        return "error"
    logger.info(f"Created booking for {booking_date}")
    return "created"


async def generate_recurring_bookings(session: AsyncSession, clock: Clock, days_ahead: int = 7) -> RecurringReport:
    """
    Creates the bookings that active recurring rules call for over the next days.

    A failure while handling one rule is logged and counted; the other rules are
    still processed.

    Args:
        session (AsyncSession): The database session.
        clock (Clock): The venue clock.
        days_ahead (int): How many days, starting today, to generate.

    Raises:
        RecurringFetchFailed: If the rules cannot be read.
    """
    today = clock.now().date()
    horizon = today + timedelta(days=days_ahead)
    logger.info(f"Generating bookings from {today} to {horizon}")

    stmt = select(RecurringBooking).where(
        RecurringBooking.is_active.is_(True),
        RecurringBooking.start_date <= horizon,
        or_(RecurringBooking.end_date.is_(None), RecurringBooking.end_date >= today),
    )
    try:
        rules = list((await session.execute(stmt)).scalars().all())
    except SQLAlchemyError as exc:
        logger.error(f"Error fetching recurring bookings: {exc}")
        raise RecurringFetchFailed(f"Failed to fetch recurring bookings: {exc}") from exc
    # Detached rules keep their loaded values across the rollbacks below.
    for rule in rules:
        session.expunge(rule)
    logger.info(f"Found {len(rules)} active recurring bookings")

    report = RecurringReport()
    for rule in rules:
        try:
            for booking_date in occurrence_dates(rule, today, days_ahead):
                outcome = await _create_occurrence(session, rule, booking_date)
                if outcome == "created":
                    report.created += 1
                elif outcome == "skipped":
                    report.skipped += 1
                else:
                    report.errors += 1
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error(f"Error processing recurring booking {rule.id}: {exc}")
            report.errors += 1

    logger.info(f"Created {report.created} bookings, skipped {report.skipped}, errors {report.errors}")
    return report
