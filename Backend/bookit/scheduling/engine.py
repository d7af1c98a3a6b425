"""
Availability Engine

Composes the time-zone normalizer, rule resolver, slot generator and
conflict checker into the two operations booking handlers call:

    get_available_slots(business_id, service_id, staff_id, start_date, end_date)
        -> {date: [local start time, ...]}
    is_slot_available(business_id, service_id, staff_id, local_start) -> bool

Without a staff id a slot is offered when at least one qualified staff
member is free. A business with no active staff books against the
business-level resource (``staff_id = None``). Appointments already held by
that resource keep blocking every staff member added later.

The engine keeps no state between calls; all data comes from the store.
Its answer is a pre-flight check only, the booking flow re-validates under
a row lock before writing.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple
from zoneinfo import ZoneInfo

from .conflicts import BookingWindow, is_slot_free
from .errors import InvalidInput, NonexistentLocalTime, NotFound
from .rules import DateException, LocalInterval, WeeklyRule, resolve_open_intervals
from .slots import DEFAULT_GRANULARITY_MINUTES, generate_slots
from .timezones import closing_instant, local_day_bounds, normalize_start, resolve_zone, to_instant


logger = logging.getLogger(__name__)

ResourceId = Optional[int]


@dataclass(frozen=True)
class BusinessInfo:
    id: int
    timezone: str
    slug: Optional[str] = None


@dataclass(frozen=True)
class ServiceInfo:
    id: int
    business_id: int
    duration_min: int
    buffer_before_min: int = 0
    buffer_after_min: int = 0
    max_per_slot: int = 1


@dataclass(frozen=True)
class StaffInfo:
    id: int
    business_id: int
    active: bool = True


class AvailabilityStore(Protocol):
    """Data the engine reads; every method is scoped to one business."""

    async def get_business(self, business_id: int) -> Optional[BusinessInfo]: ...

    async def get_service(self, business_id: int, service_id: int) -> Optional[ServiceInfo]: ...

    async def get_staff(self, business_id: int, staff_id: int) -> Optional[StaffInfo]: ...

    async def has_active_staff(self, business_id: int) -> bool: ...

    async def list_qualified_staff(self, business_id: int, service_id: int) -> List[int]: ...

    async def list_rules(self, business_id: int) -> List[WeeklyRule]: ...

    async def list_exceptions(
        self, business_id: int, start_date: date, end_date: date
    ) -> List[DateException]: ...

    async def list_busy_windows(
        self,
        business_id: int,
        resources: Sequence[ResourceId],
        window_start: datetime,
        window_end: datetime,
    ) -> Dict[ResourceId, List[BookingWindow]]: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _Request:
    business: BusinessInfo
    zone: ZoneInfo
    service: ServiceInfo
    resources: List[ResourceId]


class AvailabilityEngine:
    def __init__(
        self,
        store: AvailabilityStore,
        granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
        min_notice_minutes: int = 0,
        max_range_days: int = 62,
        clock: Callable[[], datetime] = utc_now,
    ):
        if granularity_minutes <= 0:
            raise InvalidInput("Slot granularity must be positive", {"granularity_minutes": granularity_minutes})
        if min_notice_minutes < 0:
            raise InvalidInput("Minimum notice cannot be negative", {"min_notice_minutes": min_notice_minutes})
        self.store = store
        self.granularity_minutes = granularity_minutes
        self.min_notice = timedelta(minutes=min_notice_minutes)
        self.max_range_days = max_range_days
        self.clock = clock

    # ────────────────────────────────────────────────────────────────
    # Public operations
    # ────────────────────────────────────────────────────────────────

    async def get_available_slots(
        self,
        business_id: int,
        service_id: int,
        staff_id: Optional[int],
        start_date: date,
        end_date: Optional[date] = None,
    ) -> Dict[date, List[time]]:
        """
        Bookable local start times for every date in [start_date, end_date].

        Dates without availability map to an empty list; that is a valid
        answer, not an error.
        """
        end_date = end_date or start_date
        if end_date < start_date:
            raise InvalidInput(
                "end_date must not be before start_date",
                {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        span_days = (end_date - start_date).days + 1
        if span_days > self.max_range_days:
            raise InvalidInput(
                f"Date range cannot exceed {self.max_range_days} days",
                {"days": span_days},
            )

        req = await self._load_request(business_id, service_id, staff_id)
        rules = await self.store.list_rules(business_id)
        exceptions = await self.store.list_exceptions(business_id, start_date, end_date)
        busy = await self._load_busy(req, start_date, end_date)
        earliest = self.clock() + self.min_notice

        result: Dict[date, List[time]] = {}
        current = start_date
        while current <= end_date:
            free: set[time] = set()
            for resource in req.resources:
                intervals = resolve_open_intervals(current, rules, exceptions, resource)
                for interval, slot in self._candidates(intervals, req):
                    if slot in free:
                        continue
                    try:
                        start = to_instant(current, slot, req.zone)
                    except NonexistentLocalTime:
                        continue
                    close = closing_instant(current, interval.end, req.zone)
                    if self._is_free(req, start, close, busy.get(resource, []), earliest):
                        free.add(slot)
            result[current] = sorted(free)
            current += timedelta(days=1)

        logger.debug(
            "Availability business=%s service=%s staff=%s %s..%s: %d slots",
            business_id,
            service_id,
            staff_id,
            start_date,
            end_date,
            sum(len(slots) for slots in result.values()),
        )
        return result

    async def is_slot_available(
        self,
        business_id: int,
        service_id: int,
        staff_id: Optional[int],
        local_start: datetime,
    ) -> bool:
        return bool(await self.free_resources(business_id, service_id, staff_id, local_start))

    async def free_resources(
        self,
        business_id: int,
        service_id: int,
        staff_id: Optional[int],
        local_start: datetime,
    ) -> List[ResourceId]:
        """
        Candidate resources free to take a booking at ``local_start``.

        ``local_start`` is a naive wall-clock datetime in the business timezone,
        or an aware datetime naming the exact instant. Its local time must be
        one of the generated slots for the date.
        """
        req = await self._load_request(business_id, service_id, staff_id)
        try:
            target_date, target_time, start = normalize_start(local_start, req.zone)
        except NonexistentLocalTime:
            return []

        rules = await self.store.list_rules(business_id)
        exceptions = await self.store.list_exceptions(business_id, target_date, target_date)
        busy = await self._load_busy(req, target_date, target_date)
        earliest = self.clock() + self.min_notice

        free: List[ResourceId] = []
        for resource in req.resources:
            intervals = resolve_open_intervals(target_date, rules, exceptions, resource)
            owning = next(
                (interval for interval, slot in self._candidates(intervals, req) if slot == target_time),
                None,
            )
            if owning is None:
                continue
            close = closing_instant(target_date, owning.end, req.zone)
            if self._is_free(req, start, close, busy.get(resource, []), earliest):
                free.append(resource)
        return free

    # ────────────────────────────────────────────────────────────────
    # Internals
    # ────────────────────────────────────────────────────────────────

    async def _load_request(
        self, business_id: int, service_id: int, staff_id: Optional[int]
    ) -> _Request:
        business = await self.store.get_business(business_id)
        if business is None:
            raise NotFound("Business not found", {"business_id": business_id})
        zone = resolve_zone(business.timezone)

        service = await self.store.get_service(business_id, service_id)
        if service is None:
            raise NotFound("Service not found", {"service_id": service_id})
        if service.duration_min <= 0:
            raise InvalidInput("Service duration must be positive", {"service_id": service_id})
        if service.buffer_before_min < 0 or service.buffer_after_min < 0:
            raise InvalidInput("Service buffers cannot be negative", {"service_id": service_id})

        if staff_id is not None:
            staff = await self.store.get_staff(business_id, staff_id)
            if staff is None or not staff.active:
                raise NotFound("Staff member not found", {"staff_id": staff_id})
            qualified = await self.store.list_qualified_staff(business_id, service_id)
            if staff_id not in qualified:
                raise InvalidInput(
                    "Staff member does not perform this service",
                    {"staff_id": staff_id, "service_id": service_id},
                )
            resources: List[ResourceId] = [staff_id]
        elif await self.store.has_active_staff(business_id):
            resources = list(await self.store.list_qualified_staff(business_id, service_id))
        else:
            resources = [None]

        return _Request(business=business, zone=zone, service=service, resources=resources)

    def _candidates(self, intervals: List[LocalInterval], req: _Request) -> Iterator[Tuple[LocalInterval, time]]:
        """Generated slots paired with the interval that owns them."""
        for interval in intervals:
            for slot in generate_slots([interval], req.service.duration_min, self.granularity_minutes):
                yield interval, slot

    async def _load_busy(
        self, req: _Request, start_date: date, end_date: date
    ) -> Dict[ResourceId, List[BookingWindow]]:
        if not req.resources:
            return {}
        window_start, _ = local_day_bounds(start_date, req.zone)
        _, window_end = local_day_bounds(end_date, req.zone)
        # Neighbouring days can reach in through buffers
        margin = timedelta(days=1)
        lookup = list(req.resources)
        if None not in lookup:
            lookup.append(None)
        busy = await self.store.list_busy_windows(
            req.business.id, lookup, window_start - margin, window_end + margin
        )

        # Business-level appointments (booked while there was no staff) hold every resource
        shared = busy.get(None, [])
        merged: Dict[ResourceId, List[BookingWindow]] = {}
        for resource in req.resources:
            windows = busy.get(resource, [])
            merged[resource] = windows if resource is None else windows + shared
        return merged

    def _is_free(
        self,
        req: _Request,
        start: datetime,
        close: datetime,
        busy: List[BookingWindow],
        earliest: datetime,
    ) -> bool:
        if start <= earliest:
            return False
        candidate = BookingWindow.for_slot(
            start,
            req.service.duration_min,
            req.service.buffer_before_min,
            req.service.buffer_after_min,
        )
        # Wall-clock fit is not enough across a DST shift
        if candidate.end > close:
            return False
        return is_slot_free(candidate, busy, capacity=max(req.service.max_per_slot, 1))
