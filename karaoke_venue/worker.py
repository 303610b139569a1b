"""
This module contains the Celery worker and the periodic tasks of the venue booking service.

Run the worker and the scheduler with:

    celery -A karaoke_venue.worker worker --beat
"""
import anyio
import logging
from celery import Celery

from .clock import VenueClock
from .config import configure_logging, settings
from .db import db
from .models import ReminderReport
from .reconciler import expire_bookings
from .recurring import generate_recurring_bookings
from .reminders import ResendMailer, send_booking_reminders

# Configure logging
configure_logging()
logger = logging.getLogger(__name__)

app = Celery('karaoke_venue',
             broker=settings.celery_broker_url,
             backend=settings.celery_result_backend,
             include=["karaoke_venue.worker"])

# Keep the LOG_LEVEL configuration instead of Celery's own root logger setup.
app.conf.worker_hijack_root_logger = False

app.conf.beat_schedule = {
    "expire-stale-bookings": {
        "task": "karaoke_venue.worker.expire_stale_bookings",
        "schedule": settings.expiry_interval_seconds,
    },
    "generate-recurring-bookings": {
        "task": "karaoke_venue.worker.generate_recurring",
        "schedule": settings.recurring_interval_seconds,
    },
    "send-booking-reminders": {
        "task": "karaoke_venue.worker.send_reminders",
        "schedule": settings.reminder_interval_seconds,
    },
}


async def _run_with_session(job, *args):
    """
    Helper function that runs one job against the configured database.

    Args:
        job: An async function taking the session as its first argument.
    """
    try:
        async with db.Session() as session:
            return await job(session, *args)
    finally:
        # Pooled connections belong to this event loop; the next run gets a new one.
        await db.get_engine().dispose()


async def _expire_stale_bookings():
    return await _run_with_session(expire_bookings, VenueClock(settings.venue_utc_offset_minutes))


@app.task(name="karaoke_venue.worker.expire_stale_bookings")
def expire_stale_bookings():
    """
    Celery task that completes expired bookings and frees their rooms.

    The task is not retried. A failed run is picked up again by the next beat tick.
    """
    logger.info("Checking for expired bookings.")
    report = anyio.run(_expire_stale_bookings)
    logger.info(f"Expiry run checked {report.checked} bookings, completed {report.bookings_updated}, "
                f"released {report.rooms_updated} rooms")
    return {
        **report.model_dump(),
        "rooms_updated": report.rooms_updated,
        "failed_rooms": report.failed_rooms,
    }


async def _generate_recurring():
    return await _run_with_session(generate_recurring_bookings,
                                   VenueClock(settings.venue_utc_offset_minutes),
                                   settings.recurring_days_ahead)


@app.task(name="karaoke_venue.worker.generate_recurring")
def generate_recurring():
    """
    Celery task that creates the bookings recurring rules call for in the coming days.
    """
    logger.info("Generating recurring bookings.")
    report = anyio.run(_generate_recurring)
    return report.model_dump()


async def _send_reminders():
    mailer = ResendMailer(settings.resend_api_key, settings.reminder_sender)
    return await _run_with_session(send_booking_reminders,
                                   VenueClock(settings.venue_utc_offset_minutes),
                                   mailer,
                                   settings.reminder_lead_minutes)


@app.task(name="karaoke_venue.worker.send_reminders")
def send_reminders():
    """
    Celery task that emails customers whose booking starts soon.
    """
    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY is not set, skipping booking reminders.")
        return ReminderReport().model_dump()
    report = anyio.run(_send_reminders)
    return report.model_dump()
