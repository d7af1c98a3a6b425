"""
Slot Generation

Enumerates candidate local start times inside open intervals.
"""

from datetime import time
from typing import Iterable, Iterator, Tuple

from .errors import InvalidInput
from .rules import LocalInterval


DEFAULT_GRANULARITY_MINUTES = 15


class SlotSequence:
    """
    Finite, restartable sequence of slot start times.

    Every iteration walks each interval independently from its start in
    ``granularity`` steps and yields starts whose full ``duration`` ends at
    or before the interval's end. A slot never straddles two intervals.
    """

    def __init__(
        self,
        intervals: Iterable[LocalInterval],
        duration_minutes: int,
        granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
    ):
        if duration_minutes <= 0:
            raise InvalidInput("Service duration must be positive", {"duration_minutes": duration_minutes})
        if granularity_minutes <= 0:
            raise InvalidInput("Slot granularity must be positive", {"granularity_minutes": granularity_minutes})
        self.intervals: Tuple[LocalInterval, ...] = tuple(intervals)
        self.duration_minutes = duration_minutes
        self.granularity_minutes = granularity_minutes

    def __iter__(self) -> Iterator[time]:
        for interval in self.intervals:
            minute = interval.start_minutes
            while minute + self.duration_minutes <= interval.end_minutes:
                yield time(minute // 60, minute % 60)
                minute += self.granularity_minutes

    def __contains__(self, value: time) -> bool:
        return any(value == slot for slot in self)


def generate_slots(
    intervals: Iterable[LocalInterval],
    duration_minutes: int,
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
) -> SlotSequence:
    return SlotSequence(intervals, duration_minutes, granularity_minutes)
