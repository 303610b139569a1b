"""
This module contains the data models for the venue booking service.
"""
import uuid
from datetime import date, datetime, time
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from alchemical import Model
from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, Time, func

BookingStatus = Literal["pending", "confirmed", "cancelled", "completed"]
RoomStatus = Literal["available", "occupied", "maintenance", "reserved", "cleaning"]

ACTIVE_BOOKING_STATUSES = ("pending", "confirmed")
TERMINAL_BOOKING_STATUSES = ("cancelled", "completed")


def _new_id() -> str:
    return str(uuid.uuid4())


class Room(Model):
    """
    Represents a bookable room in the database.

    Attributes:
        id (str): The primary key of the room.
        room_number (str): The number shown on the door and on receipts.
        room_name (str): The display name of the room.
        status (RoomStatus): The availability status of the room.
        current_session_start (datetime): When the running session started, if any.
        assigned_staff_id (str): The waiter assigned to the room, if any.
    """
    __tablename__ = "rooms"

    id = Column(String(36), primary_key=True, default=_new_id)
    room_number = Column(String, unique=True, nullable=False)
    room_name = Column(String, nullable=False)
    room_type = Column(String, nullable=False, default="regular")
    capacity = Column(Integer, nullable=False, default=1)
    hourly_rate = Column(Float, nullable=False, default=0.0)
    status = Column(String, nullable=False, default="available")
    current_session_start = Column(DateTime, nullable=True)
    assigned_staff_id = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Booking(Model):
    """
    Represents a booking in the database.

    Times are venue wall-clock values; no timezone is stored.

    Attributes:
        id (str): The primary key of the booking.
        room_id (str): The booked room.
        booking_date (date): The calendar date of the booking.
        start_time (time): When the booking starts.
        end_time (time): When the booking ends, later than start_time on the same date.
        status (BookingStatus): The status of the booking.
    """
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_new_id)
    room_id = Column(String(36), ForeignKey("rooms.id"), nullable=False, index=True)
    booking_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    duration_hours = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)
    deposit_amount = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class RecurringBooking(Model):
    """
    Represents a standing booking that is turned into real bookings a week ahead.

    Attributes:
        frequency (RecurringFrequency): weekly or monthly.
        day_of_week (int): For weekly rules, 0 = Sunday through 6 = Saturday.
        day_of_month (int): For monthly rules, 1 through 31.
        start_date (date): First date the rule applies to.
        end_date (date): Last date the rule applies to, or None for open-ended rules.
        is_active (bool): Inactive rules are ignored by the generator.
    """
    __tablename__ = "recurring_bookings"

    id = Column(String(36), primary_key=True, default=_new_id)
    room_id = Column(String(36), ForeignKey("rooms.id"), nullable=False, index=True)
    frequency = Column(String, nullable=False, default="weekly")
    day_of_week = Column(Integer, nullable=True)
    day_of_month = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_hours = Column(Float, nullable=False)
    hourly_rate = Column(Float, nullable=False)
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    deposit_amount = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())


class BookingReminder(Model):
    """
    Ledger of reminder emails, one row per booking whether or not the send worked.
    """
    __tablename__ = "booking_reminders"

    id = Column(String(36), primary_key=True, default=_new_id)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, unique=True)
    email_sent = Column(Boolean, nullable=False, default=False)
    email_error = Column(Text, nullable=True)
    sent_at = Column(DateTime, server_default=func.now())


class RoomCommand(BaseModel):
    """
    Represents the command for creating a room.
    """
    room_number: str = Field(..., min_length=1, description="Number shown on the door")
    room_name: str = Field(..., min_length=1, description="Display name of the room")
    room_type: str = Field(default="regular", description="Room category, e.g. regular or vip")
    capacity: int = Field(default=1, ge=1)
    hourly_rate: float = Field(default=0.0, ge=0)


class RoomRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    room_number: str
    room_name: str
    room_type: str
    capacity: int
    hourly_rate: float
    status: RoomStatus
    current_session_start: Optional[datetime] = None
    assigned_staff_id: Optional[str] = None


class BookingCommand(BaseModel):
    """
    Represents the command for creating a booking.

    Attributes:
        room_id (str): The room to book.
        customer_name (str): The name of the customer.
        customer_phone (str): The phone number of the customer.
        customer_email (str): The email address of the customer, optional.
        booking_date (date): The date of the booking.
        start_time (time): Venue wall-clock start time.
        end_time (time): Venue wall-clock end time, on the same date.
        status (str): Initial status, pending unless staff confirm it straight away.
    """
    room_id: str
    customer_name: str = Field(..., min_length=2, description="Name of the customer")
    customer_phone: str = Field(..., min_length=1, description="Phone number of the customer")
    customer_email: Optional[str] = Field(default=None, pattern=r"^[\w\.-]+@[\w\.-]+\.\w+$",
                                          description="Email address of the customer")
    booking_date: date
    start_time: time
    end_time: time
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    status: Literal["pending", "confirmed"] = "pending"
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_times(self):
        # Overnight bookings are not modelled.
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be later than start_time on the same date")
        return self


class BookingStatusCommand(BaseModel):
    status: BookingStatus


class BookingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    room_id: str
    booking_date: date
    start_time: time
    end_time: time
    status: BookingStatus
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    duration_hours: float
    total_amount: float
    deposit_amount: Optional[float] = None
    notes: Optional[str] = None


RoomReleaseOutcome = Literal["released", "still_booked", "not_occupied", "failed"]


class RoomReleaseResult(BaseModel):
    """
    The outcome of trying to release one room after its bookings expired.
    """
    room_id: str
    outcome: RoomReleaseOutcome
    error: Optional[str] = None


class ReconciliationReport(BaseModel):
    """
    Summary of one run of the booking expiry job.

    Attributes:
        checked (int): Candidate bookings returned by the date-only scan.
        expired_booking_ids (list[str]): Bookings whose end instant had passed.
        bookings_updated (int): Bookings moved to completed by this run.
        room_results (list[RoomReleaseResult]): One entry per distinct affected room.
    """
    checked: int = 0
    expired_booking_ids: list[str] = Field(default_factory=list)
    bookings_updated: int = 0
    room_results: list[RoomReleaseResult] = Field(default_factory=list)

    @property
    def rooms_updated(self) -> int:
        return sum(1 for r in self.room_results if r.outcome == "released")

    @property
    def failed_rooms(self) -> list[str]:
        return [r.room_id for r in self.room_results if r.outcome == "failed"]


RecurringFrequency = Literal["weekly", "monthly"]


class RecurringBookingCommand(BaseModel):
    """
    Represents the command for creating a recurring booking.

    Weekly rules need `day_of_week` (0 = Sunday); monthly rules need `day_of_month`.
    Duration and hourly rate are fixed from the room when the rule is created.
    """
    room_id: str
    frequency: RecurringFrequency = "weekly"
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: date
    end_date: Optional[date] = None
    start_time: time
    end_time: time
    customer_name: str = Field(..., min_length=2)
    customer_phone: str = Field(..., min_length=1)
    customer_email: Optional[str] = Field(default=None, pattern=r"^[\w\.-]+@[\w\.-]+\.\w+$")
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_rule(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be later than start_time on the same date")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.frequency == "weekly" and self.day_of_week is None:
            raise ValueError("weekly recurring bookings need day_of_week")
        if self.frequency == "monthly" and self.day_of_month is None:
            raise ValueError("monthly recurring bookings need day_of_month")
        return self


class RecurringBookingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    room_id: str
    frequency: RecurringFrequency
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    start_time: time
    end_time: time
    duration_hours: float
    hourly_rate: float
    customer_name: str
    is_active: bool


class RecurringReport(BaseModel):
    """Counts from one run of the recurring booking generator."""
    created: int = 0
    skipped: int = 0
    errors: int = 0


class ReminderReport(BaseModel):
    """Counts from one run of the booking reminder job."""
    sent: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0
