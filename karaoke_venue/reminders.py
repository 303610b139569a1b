"""
This module contains the job that emails customers shortly before their booking starts.

Every booking handled gets a row in the `booking_reminders` ledger, whether the
email went out or not, so a booking is reminded at most once. Bookings without
an email address are skipped and not recorded. The window is compared on the
same venue date only, so a window that crosses midnight finds nothing past it.
"""
import html
import logging
from datetime import timedelta
from typing import Protocol

import resend
from anyio import to_thread
from resend.exceptions import ResendError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import Clock
from .models import ACTIVE_BOOKING_STATUSES, Booking, BookingReminder, ReminderReport, Room

logger = logging.getLogger(__name__)


class DeliveryFailed(Exception):
    """Raised when a reminder email could not be handed to the mail provider."""
    pass


class ReminderFetchFailed(Exception):
    """Raised when the upcoming bookings cannot be read."""
    pass


class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str) -> None:
        ...


class ResendMailer:
    """
    Sends email through the Resend API.

    Args:
        api_key (str): The Resend API key.
        sender (str): The From address.
    """

    def __init__(self, api_key: str, sender: str):
        resend.api_key = api_key
        self.sender = sender

    def send(self, to: str, subject: str, body: str) -> None:
        try:
            resend.Emails.send({"from": self.sender, "to": [to], "subject": subject, "html": body})
        except ResendError as exc:
            raise DeliveryFailed(str(exc)) from exc


def render_reminder(row, lead_minutes: int) -> tuple[str, str]:
    """Builds the subject and HTML body of a reminder email."""
    room_name = row.room_name or "Room"
    subject = f"Booking Reminder - {room_name} in {lead_minutes} minutes"
    body = (
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
        "<h1>Booking Reminder</h1>"
        f"<p>Hi {html.escape(row.customer_name)},</p>"
        "<p>This is a friendly reminder that your booking is starting soon!</p>"
        f"<p><strong>Room:</strong> {html.escape(room_name)} ({html.escape(row.room_number or 'N/A')})</p>"
        f"<p><strong>Date:</strong> {row.booking_date:%d %B %Y}</p>"
        f"<p><strong>Time:</strong> {row.start_time:%H:%M} - {row.end_time:%H:%M}</p>"
        "<p>Please arrive on time to enjoy your full booking duration.</p>"
        "</div>"
    )
    return subject, body


async def _record(session: AsyncSession, booking_id: str, email_sent: bool, email_error: str | None = None):
    try:
        session.add(BookingReminder(booking_id=booking_id, email_sent=email_sent, email_error=email_error))
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(f"Failed to record reminder for booking {booking_id}: {exc}")


async def send_booking_reminders(session: AsyncSession, clock: Clock, mailer: Mailer,
                                 lead_minutes: int = 15) -> ReminderReport:
    """
    Emails customers whose active booking starts within the next `lead_minutes`.

    Args:
        session (AsyncSession): The database session.
        clock (Clock): The venue clock.
        mailer (Mailer): Delivers the emails; called in a worker thread.
        lead_minutes (int): Size of the reminder window.

    Raises:
        ReminderFetchFailed: If the upcoming bookings cannot be read.
    """
    now = clock.now().replace(second=0, microsecond=0)
    until = now + timedelta(minutes=lead_minutes)
    logger.info(f"Checking bookings between {now:%H:%M} and {until:%H:%M} on {now.date()}")

    stmt = (
        select(
            Booking.id, Booking.booking_date, Booking.start_time, Booking.end_time,
            Booking.customer_name, Booking.customer_email, Room.room_name, Room.room_number,
        )
        .join(Room, Room.id == Booking.room_id)
        .where(
            Booking.booking_date == now.date(),
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.start_time >= now.time(),
            Booking.start_time <= until.time(),
        )
    )
    try:
        upcoming = (await session.execute(stmt)).all()
    except SQLAlchemyError as exc:
        logger.error(f"Error fetching bookings: {exc}")
        raise ReminderFetchFailed(f"Failed to fetch bookings: {exc}") from exc
    logger.info(f"Found {len(upcoming)} upcoming bookings")

    report = ReminderReport(total=len(upcoming))
    for row in upcoming:
        reminded = await session.scalar(select(BookingReminder.id).where(BookingReminder.booking_id == row.id))
        if reminded is not None:
            logger.info(f"Reminder already sent for booking {row.id}")
            report.skipped += 1
            continue
        if not row.customer_email:
            logger.info(f"No email for booking {row.id}")
            report.skipped += 1
            continue

        subject, body = render_reminder(row, lead_minutes)
        try:
            await to_thread.run_sync(mailer.send, row.customer_email, subject, body)
        except DeliveryFailed as exc:
            logger.error(f"Error sending email for booking {row.id}: {exc}")
            report.errors += 1
            await _record(session, row.id, False, str(exc) or "Unknown error")
        else:
            logger.info(f"Reminder sent for booking {row.id}")
            report.sent += 1
            await _record(session, row.id, True)

    logger.info(f"Reminders: {report.sent} sent, {report.skipped} skipped, {report.errors} errors")
    return report
