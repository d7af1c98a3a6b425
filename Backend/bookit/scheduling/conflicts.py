"""
Conflict Checker

Decides whether a candidate booking collides with existing appointments.
Every window carries its own buffers: a candidate's padding must not hit an
existing appointment's body, and an existing appointment's padding must not
hit the candidate's body. Intervals are half-open, so touching is allowed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from .errors import InvalidInput


def overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


@dataclass(frozen=True)
class BookingWindow:
    start: datetime
    end: datetime
    buffer_before: timedelta = timedelta(0)
    buffer_after: timedelta = timedelta(0)

    def __post_init__(self):
        if self.end <= self.start:
            raise InvalidInput("Booking must end after it starts")
        if self.buffer_before < timedelta(0) or self.buffer_after < timedelta(0):
            raise InvalidInput("Buffers cannot be negative")

    @classmethod
    def for_slot(
        cls,
        start: datetime,
        duration_minutes: int,
        buffer_before_minutes: int = 0,
        buffer_after_minutes: int = 0,
    ) -> "BookingWindow":
        if duration_minutes <= 0:
            raise InvalidInput("Service duration must be positive", {"duration_minutes": duration_minutes})
        return cls(
            start=start,
            end=start + timedelta(minutes=duration_minutes),
            buffer_before=timedelta(minutes=buffer_before_minutes),
            buffer_after=timedelta(minutes=buffer_after_minutes),
        )

    @property
    def padded_start(self) -> datetime:
        return self.start - self.buffer_before

    @property
    def padded_end(self) -> datetime:
        return self.end + self.buffer_after


def windows_conflict(a: BookingWindow, b: BookingWindow) -> bool:
    """Symmetric: windows_conflict(a, b) == windows_conflict(b, a)."""
    return overlap(a.padded_start, a.padded_end, b.start, b.end) or overlap(
        a.start, a.end, b.padded_start, b.padded_end
    )


def count_conflicts(candidate: BookingWindow, busy: Iterable[BookingWindow]) -> int:
    return sum(1 for existing in busy if windows_conflict(candidate, existing))


def is_slot_free(candidate: BookingWindow, busy: Iterable[BookingWindow], capacity: int = 1) -> bool:
    """
    True when fewer than ``capacity`` existing windows collide with the candidate.

    With the default capacity of 1 any single collision makes the slot unavailable.
    """
    if capacity < 1:
        raise InvalidInput("Capacity must be at least 1", {"capacity": capacity})
    return count_conflicts(candidate, busy) < capacity
