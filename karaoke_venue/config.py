"""
This module contains the runtime configuration for the venue booking service.
"""
import logging
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """
    Configuration values loaded from environment variables.

    Bookings store their times as venue wall-clock values without a timezone,
    so the venue clock is defined as UTC plus a fixed offset. No daylight
    saving adjustment is applied.
    """
    model_config = SettingsConfigDict(extra="ignore")

    database_url: str = Field(default="sqlite+aiosqlite:///karaoke-venue.db", alias="DATABASE_URL")
    celery_broker_url: str = Field(default="redis://localhost:6379/0", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(default="db+sqlite:///karaoke-venue-results.db",
                                       alias="CELERY_RESULT_BACKEND")

    venue_utc_offset_minutes: int = Field(
        default=420,
        alias="VENUE_UTC_OFFSET_MINUTES",
        description="Fixed offset of the venue wall clock from UTC, in minutes (420 = UTC+07:00).",
    )
    expiry_interval_seconds: float = Field(
        default=300,
        alias="EXPIRY_INTERVAL_SECONDS",
        description="How often the beat scheduler triggers the booking expiry job.",
    )
    recurring_interval_seconds: float = Field(default=86400, alias="RECURRING_INTERVAL_SECONDS")
    recurring_days_ahead: int = Field(
        default=7,
        alias="RECURRING_DAYS_AHEAD",
        description="Number of days, starting today, for which recurring bookings are generated.",
    )
    reminder_interval_seconds: float = Field(default=300, alias="REMINDER_INTERVAL_SECONDS")
    reminder_lead_minutes: int = Field(
        default=15,
        alias="REMINDER_LEAD_MINUTES",
        description="Bookings starting within this many minutes get a reminder email.",
    )

    resend_api_key: Optional[str] = Field(default=None, alias="RESEND_API_KEY")
    reminder_sender: str = Field(default="KTV Booking <onboarding@resend.dev>", alias="REMINDER_SENDER")

    cors_allow_origins: list[str] = Field(default=["*"], alias="CORS_ALLOW_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


settings = Settings()


def configure_logging():
    """
    Applies LOG_LEVEL to the root logger for the API process and the Celery worker.
    """
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
