"""
Conversion between a business's local wall clock and UTC instants.

Rules are authored in local time while appointments are stored as UTC
instants. DST policy:

- ambiguous local times (fall back) resolve to the later instant
- nonexistent local times (spring forward) raise ``NonexistentLocalTime``
"""

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidInput, InvalidTimezone, NonexistentLocalTime


@lru_cache(maxsize=256)
def resolve_zone(tz_name: str) -> ZoneInfo:
    """Return the ZoneInfo for an IANA name or raise InvalidTimezone."""
    if not tz_name or not isinstance(tz_name, str):
        raise InvalidTimezone("Timezone is required", {"timezone": tz_name})
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise InvalidTimezone(f"Unknown timezone: {tz_name}", {"timezone": tz_name}) from exc


def _as_zone(tz: str | ZoneInfo) -> ZoneInfo:
    return tz if isinstance(tz, ZoneInfo) else resolve_zone(tz)


def to_instant(local_date: date, local_time: time, tz: str | ZoneInfo) -> datetime:
    """
    Convert a local date and wall-clock time into a UTC instant.

    Raises:
        InvalidTimezone: unknown zone name
        NonexistentLocalTime: the wall-clock time falls into a DST gap
    """
    zone = _as_zone(tz)
    naive = datetime.combine(local_date, local_time.replace(tzinfo=None))

    earlier = naive.replace(tzinfo=zone, fold=0)
    later = naive.replace(tzinfo=zone, fold=1)

    # fold=1 picks the second occurrence of a repeated wall time
    instant = later.astimezone(timezone.utc)

    if earlier.utcoffset() == later.utcoffset():
        # Unambiguous, but may still be inside a gap: round-trip must match
        round_trip = instant.astimezone(zone).replace(tzinfo=None)
        if round_trip != naive:
            raise NonexistentLocalTime(
                f"{naive.isoformat()} does not exist in {zone.key}",
                {"local": naive.isoformat(), "timezone": zone.key},
            )
    elif earlier.utcoffset() < later.utcoffset():
        # Offsets grow across a gap (spring forward); a real overlap shrinks them
        raise NonexistentLocalTime(
            f"{naive.isoformat()} does not exist in {zone.key}",
            {"local": naive.isoformat(), "timezone": zone.key},
        )
    return instant


def closing_instant(local_date: date, local_time: time, tz: str | ZoneInfo) -> datetime:
    """
    UTC instant at which an interval ending at ``local_time`` closes.

    00:00 means midnight at the end of ``local_date``. A closing time inside
    a DST gap resolves to the earlier of its two readings.
    """
    zone = _as_zone(tz)
    if local_time.hour == 0 and local_time.minute == 0:
        return local_day_bounds(local_date, zone)[1]
    try:
        return to_instant(local_date, local_time, zone)
    except NonexistentLocalTime:
        naive = datetime.combine(local_date, local_time.replace(tzinfo=None))
        return min(naive.replace(tzinfo=zone, fold=fold).astimezone(timezone.utc) for fold in (0, 1))


def normalize_start(value: datetime, tz: str | ZoneInfo) -> tuple[date, time, datetime]:
    """
    Split a requested start into its local (date, time) and UTC instant.

    A naive value is a business wall-clock reading and goes through
    ``to_instant``. An aware value already names one instant and keeps it,
    so the earlier reading of a repeated fall-back time stays the earlier one.
    """
    zone = _as_zone(tz)
    if value.tzinfo is not None:
        instant = value.astimezone(timezone.utc)
        local_date, local_time = to_local(instant, zone)
        return local_date, local_time, instant
    local_date, local_time = value.date(), value.time().replace(second=0, microsecond=0)
    return local_date, local_time, to_instant(local_date, local_time, zone)


def to_local(instant: datetime, tz: str | ZoneInfo) -> tuple[date, time]:
    """Convert a UTC instant into the (date, time) seen on the local wall clock."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    local = instant.astimezone(_as_zone(tz))
    return local.date(), local.time().replace(tzinfo=None, fold=0)


def local_day_bounds(local_date: date, tz: str | ZoneInfo) -> tuple[datetime, datetime]:
    """UTC instants for the start of ``local_date`` and the start of the next day."""
    zone = _as_zone(tz)
    start = datetime.combine(local_date, time(0, 0), tzinfo=zone)
    end = datetime.combine(local_date + timedelta(days=1), time(0, 0), tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


# ────────────────────────────────────────────────────────────────
# Parsing of local date/time strings from requests
# ────────────────────────────────────────────────────────────────

def parse_local_date(value: str) -> date:
    """Parse ``YYYY-MM-DD``."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise InvalidInput("Invalid date format, expected YYYY-MM-DD", {"value": value}) from exc


def parse_local_time(value: str) -> time:
    """Parse ``HH:MM`` (seconds are accepted and dropped)."""
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(value, fmt).time().replace(second=0)
        except (TypeError, ValueError):
            continue
    raise InvalidInput("Invalid time format, expected HH:MM", {"value": value})


def parse_local_datetime(value: str) -> datetime:
    """Parse a naive local ``YYYY-MM-DDTHH:MM`` (a space separator is accepted)."""
    if not isinstance(value, str) or len(value) < 16:
        raise InvalidInput("Invalid datetime format, expected YYYY-MM-DDTHH:MM", {"value": value})
    separator = value[10]
    if separator not in ("T", " "):
        raise InvalidInput("Invalid datetime format, expected YYYY-MM-DDTHH:MM", {"value": value})
    local_date = parse_local_date(value[:10])
    local_time = parse_local_time(value[11:])
    return datetime.combine(local_date, local_time)
