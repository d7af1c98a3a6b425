"""
Scheduling package for BookIt.

Availability computation for the public booking page and the owner calendar.

Modules:
    timezones: local wall clock <-> UTC instant conversion (DST aware)
    rules: weekly rules + date exceptions -> open intervals for one date
    slots: candidate start times inside open intervals
    conflicts: buffer-aware overlap checks against existing appointments
    engine: AvailabilityEngine orchestrating the above over a date range
    repository: SQLAlchemy-backed store feeding the engine
"""

from .conflicts import BookingWindow, count_conflicts, is_slot_free, overlap, windows_conflict
from .engine import (
    AvailabilityEngine,
    AvailabilityStore,
    BusinessInfo,
    ServiceInfo,
    StaffInfo,
)
from .errors import (
    InvalidInput,
    InvalidStatusTransition,
    InvalidTimezone,
    NonexistentLocalTime,
    NotFound,
    SchedulingError,
    StorageConflict,
    StorageError,
    StorageUnavailable,
)
from .repository import (
    SqlAvailabilityStore,
    build_engine,
    commit_or_raise,
    flush_or_raise,
    translate_storage_error,
)
from .rules import (
    DateException,
    LocalInterval,
    WeeklyRule,
    merge_intervals,
    resolve_open_intervals,
    sunday_weekday,
)
from .slots import DEFAULT_GRANULARITY_MINUTES, SlotSequence, generate_slots
from .timezones import (
    closing_instant,
    local_day_bounds,
    normalize_start,
    parse_local_date,
    parse_local_datetime,
    parse_local_time,
    resolve_zone,
    to_instant,
    to_local,
)

__all__ = [
    # Conflicts
    "BookingWindow",
    "count_conflicts",
    "is_slot_free",
    "overlap",
    "windows_conflict",
    # Engine
    "AvailabilityEngine",
    "AvailabilityStore",
    "BusinessInfo",
    "ServiceInfo",
    "StaffInfo",
    # Errors
    "InvalidInput",
    "InvalidStatusTransition",
    "InvalidTimezone",
    "NonexistentLocalTime",
    "NotFound",
    "SchedulingError",
    "StorageConflict",
    "StorageError",
    "StorageUnavailable",
    # Storage
    "SqlAvailabilityStore",
    "build_engine",
    "commit_or_raise",
    "flush_or_raise",
    "translate_storage_error",
    # Rules
    "DateException",
    "LocalInterval",
    "WeeklyRule",
    "merge_intervals",
    "resolve_open_intervals",
    "sunday_weekday",
    # Slots
    "DEFAULT_GRANULARITY_MINUTES",
    "SlotSequence",
    "generate_slots",
    # Timezones
    "closing_instant",
    "local_day_bounds",
    "normalize_start",
    "parse_local_date",
    "parse_local_datetime",
    "parse_local_time",
    "resolve_zone",
    "to_instant",
    "to_local",
]
