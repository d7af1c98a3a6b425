"""
Error kinds raised by the availability engine and the booking flow.

All of them are recoverable at the request boundary; ``bookit.main``
translates each kind into an HTTP status and the standard error envelope.
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for every scheduling failure."""

    code = "SCHEDULING_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFound(SchedulingError):
    """Unknown business, service, staff member or appointment."""

    code = "NOT_FOUND"


class InvalidTimezone(SchedulingError):
    """Business timezone is not a recognised IANA identifier."""

    code = "INVALID_TIMEZONE"


class InvalidInput(SchedulingError):
    """Malformed dates/times or non-positive durations and buffers."""

    code = "INVALID_INPUT"


class NonexistentLocalTime(InvalidInput):
    """A local wall-clock time that is skipped by a DST transition."""

    code = "NONEXISTENT_LOCAL_TIME"


class InvalidStatusTransition(InvalidInput):
    """Appointment lifecycle move that is not allowed."""

    code = "STATE_CONFLICT"


class StorageError(SchedulingError):
    """Failure reported by the relational store."""

    code = "STORAGE_ERROR"
    transient = False


class StorageConflict(StorageError):
    """Constraint violation or lost booking race; retrying will not help."""

    code = "CONFLICT"
    transient = False


class StorageUnavailable(StorageError):
    """Connectivity failure; callers may retry with backoff."""

    code = "STORAGE_UNAVAILABLE"
    transient = True
