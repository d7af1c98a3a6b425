"""
Rule Resolver

Determines the open local intervals of a single calendar date by combining:
- weekly recurring availability rules (business-wide or per staff member)
- date-specific exceptions (closures or replacement hours)

Precedence:
    1. An exception for the date fully decides the day; rules are ignored.
       A staff member's own exception wins over a business-wide one.
    2. Otherwise the weekday's rules apply. A staff member's own rules for
       that weekday replace the business-wide rules (no blending).
"""

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, List, Optional, Sequence

from .errors import InvalidInput


logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


def minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute


def sunday_weekday(value: date) -> int:
    """Weekday index with 0=Sunday .. 6=Saturday."""
    return (value.weekday() + 1) % 7


@dataclass(frozen=True)
class LocalInterval:
    """
    Half-open wall-clock range [start, end) within one local date.

    An ``end`` of 00:00 means midnight at the end of the day.
    """

    start: time
    end: time

    def __post_init__(self):
        if self.end_minutes <= self.start_minutes:
            raise InvalidInput(
                "Interval end must be after its start",
                {"start": self.start.strftime("%H:%M"), "end": self.end.strftime("%H:%M")},
            )

    @property
    def start_minutes(self) -> int:
        return minutes_of(self.start)

    @property
    def end_minutes(self) -> int:
        minutes = minutes_of(self.end)
        return minutes or MINUTES_PER_DAY


@dataclass(frozen=True)
class WeeklyRule:
    weekday: int
    start_time: time
    end_time: time
    staff_id: Optional[int] = None
    is_active: bool = True

    def __post_init__(self):
        if not 0 <= self.weekday <= 6:
            raise InvalidInput("weekday must be between 0 (Sunday) and 6 (Saturday)", {"weekday": self.weekday})


@dataclass(frozen=True)
class DateException:
    date: date
    is_closed: bool = False
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    staff_id: Optional[int] = None

    @property
    def interval(self) -> Optional[LocalInterval]:
        if self.is_closed or self.start_time is None or self.end_time is None:
            return None
        return LocalInterval(self.start_time, self.end_time)


def merge_intervals(intervals: Iterable[LocalInterval]) -> List[LocalInterval]:
    """Sort intervals and join the ones that overlap or touch."""
    ordered = sorted(intervals, key=lambda i: (i.start_minutes, i.end_minutes))
    if not ordered:
        return []

    merged = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.start_minutes <= last.end_minutes:
            if current.end_minutes > last.end_minutes:
                merged[-1] = LocalInterval(last.start, current.end)
        else:
            merged.append(current)
    return merged


def _scoped(items: Sequence, staff_id: Optional[int]) -> list:
    """Own rows for the staff member if any, else the business-wide rows."""
    if staff_id is not None:
        own = [item for item in items if item.staff_id == staff_id]
        if own:
            return own
    return [item for item in items if item.staff_id is None]


def resolve_open_intervals(
    target_date: date,
    rules: Sequence[WeeklyRule],
    exceptions: Sequence[DateException],
    staff_id: Optional[int] = None,
) -> List[LocalInterval]:
    """
    Return the ordered, disjoint open intervals of ``target_date``.

    An empty list means the date is fully closed.
    """
    day_exceptions = _scoped([e for e in exceptions if e.date == target_date], staff_id)
    if day_exceptions:
        if any(e.is_closed for e in day_exceptions):
            logger.debug("Date %s closed by exception (staff=%s)", target_date, staff_id)
            return []
        replacement = [e.interval for e in day_exceptions if e.interval is not None]
        if replacement:
            return merge_intervals(replacement)
        logger.warning("Ignoring exceptions without hours on %s (staff=%s)", target_date, staff_id)

    weekday = sunday_weekday(target_date)
    day_rules = _scoped([r for r in rules if r.is_active and r.weekday == weekday], staff_id)
    return merge_intervals(LocalInterval(r.start_time, r.end_time) for r in day_rules)
