"""
This module contains the clocks used to decide what "now" means at the venue.
"""
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current venue wall-clock time as a naive datetime."""
        ...


class VenueClock:
    """
    Venue wall clock derived from UTC with a fixed offset.

    Args:
        offset_minutes (int): Offset of the venue from UTC. No DST adjustment is applied.
    """

    def __init__(self, offset_minutes: int):
        self.tz = timezone(timedelta(minutes=offset_minutes))

    def now(self) -> datetime:
        return datetime.now(timezone.utc).astimezone(self.tz).replace(tzinfo=None)


class FixedClock:
    """A clock frozen at one instant."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant
