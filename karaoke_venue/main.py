"""
This module contains the main FastAPI application for the venue booking service.
"""
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from . import bookings
from .clock import Clock, VenueClock
from .config import configure_logging, settings
from .db import create_db_and_tables, get_db_session
from .models import (
    BookingCommand,
    BookingRead,
    BookingStatusCommand,
    RecurringBookingCommand,
    RecurringBookingRead,
    RoomCommand,
    RoomRead,
)
from .reconciler import ReconciliationError, expire_bookings
from .recurring import RecurringFetchFailed, generate_recurring_bookings
from .reminders import Mailer, ReminderFetchFailed, ResendMailer, send_booking_reminders
from .worker import expire_stale_bookings

# Configure logging
configure_logging()
logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


@asynccontextmanager
async def lifespan(api_app: FastAPI):
    """
    Creates any missing venue tables before the API starts serving requests.
    """
    await create_db_and_tables()
    yield

app = FastAPI(title="Karaoke Venue Bookings", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


def get_clock() -> Clock:
    """
    Dependency that provides the venue clock.
    """
    return VenueClock(settings.venue_utc_offset_minutes)


@app.options("/expire-bookings")
async def expire_bookings_preflight():
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@app.post("/expire-bookings")
async def run_expire_bookings(db: AsyncSession = Depends(get_db_session), clock: Clock = Depends(get_clock)):
    """
    Completes bookings whose end time has passed and frees the rooms they held.

    Args:
        db (AsyncSession): The database session.
        clock (Clock): The venue clock.

    Returns:
        dict: Either the number of bookings checked when none had expired, or the
        number of bookings and rooms updated. Failures return HTTP 500 with an error message.
    """
    try:
        report = await expire_bookings(db, clock)
    except ReconciliationError as exc:
        logger.error(f"Booking expiry run failed: {exc}")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})
    except Exception as exc:
        logger.exception("Unexpected error during booking expiry run")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})

    if not report.expired_booking_ids:
        return {"message": "No expired bookings found", "checked": report.checked}
    return {
        "success": True,
        "message": f"Updated {report.bookings_updated} expired bookings and {report.rooms_updated} rooms",
        "updated_bookings": report.bookings_updated,
        "updated_rooms": report.rooms_updated,
        "failed_rooms": report.failed_rooms,
    }


@app.post("/expire-bookings/schedule", status_code=status.HTTP_202_ACCEPTED)
async def schedule_expire_bookings():
    """
    Queues a run of the booking expiry job on the Celery worker.

    Returns:
        dict: A message and the id of the queued task.
    """
    task = expire_stale_bookings.delay()
    return {"message": "Booking expiry queued", "task_id": task.id}


def get_mailer() -> Mailer:
    """
    Dependency that provides the reminder mailer.

    Raises:
        HTTPException: 500 when no Resend API key is configured.
    """
    if not settings.resend_api_key:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="RESEND_API_KEY is not configured")
    return ResendMailer(settings.resend_api_key, settings.reminder_sender)


@app.options("/generate-recurring-bookings")
async def generate_recurring_bookings_preflight():
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@app.post("/generate-recurring-bookings")
async def run_generate_recurring_bookings(db: AsyncSession = Depends(get_db_session),
                                          clock: Clock = Depends(get_clock)):
    """
    Creates the bookings that active recurring rules call for over the coming days.
    """
    try:
        report = await generate_recurring_bookings(db, clock, settings.recurring_days_ahead)
    except RecurringFetchFailed as exc:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})
    return {"success": True, **report.model_dump()}


@app.options("/send-booking-reminders")
async def send_booking_reminders_preflight():
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@app.post("/send-booking-reminders")
async def run_send_booking_reminders(db: AsyncSession = Depends(get_db_session),
                                     clock: Clock = Depends(get_clock),
                                     mailer: Mailer = Depends(get_mailer)):
    """
    Emails customers whose booking starts within the reminder window.

    Returns:
        dict: Counts of reminders sent, skipped and failed, and the bookings considered.
    """
    try:
        report = await send_booking_reminders(db, clock, mailer, settings.reminder_lead_minutes)
    except ReminderFetchFailed as exc:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})
    return {"success": True, **report.model_dump()}


@app.post("/recurring-bookings", response_model=RecurringBookingRead, status_code=status.HTTP_201_CREATED)
async def create_recurring_booking(rule_cmd: RecurringBookingCommand, db: AsyncSession = Depends(get_db_session)):
    try:
        return await bookings.create_recurring_booking(db, rule_cmd)
    except bookings.RoomNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@app.get("/recurring-bookings", response_model=list[RecurringBookingRead])
async def get_recurring_bookings(db: AsyncSession = Depends(get_db_session)):
    return await bookings.list_recurring_bookings(db)


@app.get("/rooms", response_model=list[RoomRead])
async def get_rooms(db: AsyncSession = Depends(get_db_session)):
    return await bookings.list_rooms(db)


@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
async def create_room(room_cmd: RoomCommand, db: AsyncSession = Depends(get_db_session)):
    return await bookings.create_room(db, room_cmd)


@app.post("/rooms/{room_id}/session", response_model=RoomRead)
async def start_room_session(room_id: str, db: AsyncSession = Depends(get_db_session),
                             clock: Clock = Depends(get_clock)):
    """
    Starts a session in a room: the room becomes occupied from now.
    """
    try:
        return await bookings.start_room_session(db, room_id, clock)
    except bookings.RoomNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(booking_cmd: BookingCommand, db: AsyncSession = Depends(get_db_session)):
    """
    Creates a new booking if the room is free for the requested slot.

    Args:
        booking_cmd (BookingCommand): The booking command with the booking details.
        db (AsyncSession): The database session.

    Returns:
        BookingRead: The created booking.
    """
    try:
        return await bookings.create_booking(db, booking_cmd)
    except bookings.RoomNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except bookings.RoomUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@app.get("/bookings", response_model=list[BookingRead])
async def get_bookings(booking_date: Optional[date] = None, db: AsyncSession = Depends(get_db_session)):
    return await bookings.list_bookings(db, booking_date)


@app.get("/bookings/{booking_id}", response_model=BookingRead)
async def get_booking(booking_id: str, db: AsyncSession = Depends(get_db_session)):
    """
    Retrieves a booking by its ID.
    """
    try:
        return await bookings.get_booking(db, booking_id)
    except bookings.BookingNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@app.patch("/bookings/{booking_id}/status", response_model=BookingRead)
async def change_booking_status(booking_id: str, status_cmd: BookingStatusCommand,
                                db: AsyncSession = Depends(get_db_session)):
    """
    Confirms or cancels a booking on behalf of staff. Completion is left to the expiry job.
    """
    try:
        return await bookings.change_booking_status(db, booking_id, status_cmd.status)
    except bookings.BookingNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except bookings.InvalidTransition as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
