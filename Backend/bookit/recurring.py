"""
Recurring appointments.

A series stores a customer's standing booking (service, optional staff
member, local time of day and a weekly, bi-weekly or monthly cadence).
Occurrences are written as ordinary appointments through the booking flow,
so each one passes the availability engine; dates whose slot is taken or
closed are reported back as skipped instead of failing the whole series.

Generation is idempotent: a date that already has an occurrence (in any
status, so owner cancellations stick) is never booked twice.

Pattern: /businesses/{business_id}/recurring-appointments
"""

import calendar
import logging
import datetime as dt
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .booking import DEFAULT_CUSTOMER_LOCALE, create_appointment
from .core.config import get_settings
from .core.db import get_session
from .models import (
    Appointment,
    AppointmentStatus,
    RecurrenceFrequency,
    RecurringAppointment,
    Service,
    Staff,
)
from .public_booking import AppointmentResponse
from .scheduling.engine import AvailabilityEngine
from .scheduling.errors import InvalidInput, NotFound, StorageConflict
from .scheduling.repository import SqlAvailabilityStore, build_engine, commit_or_raise
from .scheduling.timezones import parse_local_date, resolve_zone, to_local
from .tenancy import BusinessContext, get_business_context_from_id, require_owned, scoped_select

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/businesses/{business_id}/recurring-appointments", tags=["recurring"])

STEP_DAYS = {
    RecurrenceFrequency.WEEKLY: 7,
    RecurrenceFrequency.BIWEEKLY: 14,
}
SERIES_CANCELED_NOTE = "(Recurring series canceled)"


# ────────────────────────────────────────────────────────────────
# Occurrence dates
# ────────────────────────────────────────────────────────────────

def add_months(value: date, months: int) -> date:
    """Same day of month ``months`` later, clamped to the month's last day."""
    index = value.month - 1 + months
    year, month = value.year + index // 12, index % 12 + 1
    return date(year, month, min(value.day, calendar.monthrange(year, month)[1]))


def occurrence_dates(
    series_start: date,
    frequency: RecurrenceFrequency,
    first: date,
    last: date,
) -> Iterator[date]:
    """
    Dates of the series inside [first, last].

    Every occurrence is computed from ``series_start`` rather than from the
    previous one, so a monthly series started on the 31st returns to the
    31st after a short month.
    """
    if last < first:
        return
    if frequency == RecurrenceFrequency.MONTHLY:
        n = max(0, (first.year - series_start.year) * 12 + first.month - series_start.month - 1)
        while True:
            day = add_months(series_start, n)
            if day > last:
                return
            if day >= first:
                yield day
            n += 1
    else:
        step = STEP_DAYS[frequency]
        n = max(0, (first - series_start).days // step)
        while True:
            day = series_start + timedelta(days=n * step)
            if day > last:
                return
            if day >= first:
                yield day
            n += 1


# ────────────────────────────────────────────────────────────────
# Series operations
# ────────────────────────────────────────────────────────────────

@dataclass
class GenerationResult:
    series: RecurringAppointment
    created: List[Appointment] = field(default_factory=list)
    skipped: List[date] = field(default_factory=list)


async def _require_series(
    session: AsyncSession, business_id: int, recurring_id: int
) -> RecurringAppointment:
    series = await require_owned(session, RecurringAppointment, recurring_id, business_id)
    if not series:
        raise NotFound("Recurring appointment not found", {"recurring_id": recurring_id})
    return series


async def _existing_dates(
    session: AsyncSession, business_id: int, recurring_id: int, tz_name: str
) -> set[date]:
    result = await session.execute(
        scoped_select(Appointment, business_id).where(Appointment.recurring_id == recurring_id)
    )
    zone = resolve_zone(tz_name)
    return {to_local(appt.starts_at, zone)[0] for appt in result.scalars().all()}


async def generate_occurrences(
    session: AsyncSession,
    business_id: int,
    recurring_id: int,
    tz_name: str,
    through: Optional[date] = None,
    engine: Optional[AvailabilityEngine] = None,
) -> GenerationResult:
    """
    Book the series' missing occurrences from today through ``through``.

    ``through`` defaults to the configured horizon (30 days ahead) and may
    not reach further than the engine's maximum query range.

    Raises:
        NotFound: unknown series
        InvalidInput: the series is inactive, or ``through`` is too far out
    """
    settings = get_settings()
    engine = engine or build_engine(session)
    series = await _require_series(session, business_id, recurring_id)
    if not series.is_active:
        raise InvalidInput("Recurring appointment is inactive", {"recurring_id": recurring_id})

    today = to_local(engine.clock(), resolve_zone(tz_name))[0]
    through = through or today + timedelta(days=settings.recurring_horizon_days)
    if (through - today).days > engine.max_range_days:
        raise InvalidInput(
            f"Cannot generate more than {engine.max_range_days} days ahead",
            {"through": through.isoformat()},
        )

    # Plain values: a failed commit below expires ORM state
    series_id = series.id
    service_id, staff_id = series.service_id, series.staff_id
    time_of_day, frequency = series.time_of_day, series.frequency
    customer = (series.customer_name, series.customer_phone, series.customer_locale)
    notes = series.notes
    last = min(through, series.end_date) if series.end_date else through
    first = max(today, series.start_date)

    existing = await _existing_dates(session, business_id, series_id, tz_name)
    result = GenerationResult(series=series)
    for day in occurrence_dates(series.start_date, frequency, first, last):
        if day in existing:
            continue
        try:
            appointment = await create_appointment(
                session,
                business_id=business_id,
                service_id=service_id,
                staff_id=staff_id,
                local_start=datetime.combine(day, time_of_day),
                customer_name=customer[0],
                customer_phone=customer[1],
                customer_locale=customer[2],
                notes=notes,
                source="recurring",
                engine=engine,
                recurring_id=series_id,
            )
        except StorageConflict:
            logger.info("Recurring %s: %s is not available, skipped", series_id, day)
            result.skipped.append(day)
            continue
        result.created.append(appointment)

    # A rollback inside the loop expires rows committed earlier in it
    for appointment in result.created:
        await session.refresh(appointment)
    result.series = await _require_series(session, business_id, series_id)
    logger.info(
        "Recurring %s generated through %s: %d created, %d skipped",
        series_id,
        last,
        len(result.created),
        len(result.skipped),
    )
    return result


async def create_series(
    session: AsyncSession,
    business_id: int,
    tz_name: str,
    service_id: int,
    frequency: RecurrenceFrequency,
    start_date: date,
    time_of_day: dt.time,
    customer_name: str,
    customer_phone: str,
    staff_id: Optional[int] = None,
    end_date: Optional[date] = None,
    customer_locale: str = DEFAULT_CUSTOMER_LOCALE,
    notes: Optional[str] = None,
    engine: Optional[AvailabilityEngine] = None,
) -> GenerationResult:
    """Store a series and book its occurrences inside the horizon."""
    if end_date is not None and end_date < start_date:
        raise InvalidInput(
            "end_date must not be before start_date",
            {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
    service = await require_owned(session, Service, service_id, business_id)
    if not service or not service.active:
        raise NotFound("Service not found", {"service_id": service_id})
    if staff_id is not None:
        staff = await require_owned(session, Staff, staff_id, business_id)
        if not staff or not staff.active:
            raise NotFound("Staff member not found", {"staff_id": staff_id})
        qualified = await SqlAvailabilityStore(session).list_qualified_staff(business_id, service_id)
        if staff_id not in qualified:
            raise InvalidInput(
                "Staff member does not perform this service",
                {"staff_id": staff_id, "service_id": service_id},
            )

    series = RecurringAppointment(
        business_id=business_id,
        service_id=service_id,
        staff_id=staff_id,
        customer_name=customer_name,
        customer_phone=customer_phone,
        customer_locale=customer_locale or DEFAULT_CUSTOMER_LOCALE,
        frequency=frequency,
        start_date=start_date,
        end_date=end_date,
        time_of_day=time_of_day.replace(second=0, microsecond=0, tzinfo=None),
        notes=notes,
    )
    session.add(series)
    await commit_or_raise(session)
    logger.info("Recurring %s created for business %s (%s)", series.id, business_id, frequency.value)

    return await generate_occurrences(session, business_id, series.id, tz_name, engine=engine)


async def deactivate_series(
    session: AsyncSession,
    business_id: int,
    recurring_id: int,
    cancel_future: bool = True,
    now: Optional[datetime] = None,
) -> RecurringAppointment:
    """
    Stop a series. With ``cancel_future`` its pending and confirmed
    occurrences that have not started yet are canceled too.
    """
    series = await _require_series(session, business_id, recurring_id)
    series.is_active = False

    canceled = 0
    if cancel_future:
        now = now or datetime.now(timezone.utc)
        result = await session.execute(
            update(Appointment)
            .where(
                Appointment.business_id == business_id,
                Appointment.recurring_id == recurring_id,
                Appointment.starts_at > now,
                Appointment.status.in_([AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED]),
            )
            .values(
                status=AppointmentStatus.CANCELED,
                notes=func.trim(func.coalesce(Appointment.notes, "") + " " + SERIES_CANCELED_NOTE),
            )
            .execution_options(synchronize_session="fetch")
        )
        canceled = result.rowcount

    await commit_or_raise(session)
    await session.refresh(series)
    logger.info("Recurring %s deactivated, %d future occurrences canceled", recurring_id, canceled)
    return series


async def list_series(
    session: AsyncSession, business_id: int, active: Optional[bool] = None
) -> List[tuple[RecurringAppointment, int]]:
    """Series of the business with their occurrence counts, newest first."""
    counts = (
        select(Appointment.recurring_id, func.count(Appointment.id).label("total"))
        .where(Appointment.business_id == business_id, Appointment.recurring_id.is_not(None))
        .group_by(Appointment.recurring_id)
        .subquery()
    )
    stmt = (
        scoped_select(RecurringAppointment, business_id)
        .add_columns(func.coalesce(counts.c.total, 0))
        .outerjoin(counts, counts.c.recurring_id == RecurringAppointment.id)
        .order_by(RecurringAppointment.id.desc())
    )
    if active is not None:
        stmt = stmt.where(RecurringAppointment.is_active.is_(active))
    result = await session.execute(stmt)
    return [(series, total) for series, total in result.all()]


# ────────────────────────────────────────────────────────────────
# Request/Response Models
# ────────────────────────────────────────────────────────────────

class RecurringCreate(BaseModel):
    service_id: int
    staff_id: Optional[int] = None
    frequency: RecurrenceFrequency
    start_date: dt.date
    end_date: Optional[dt.date] = None
    time_of_day: dt.time = Field(..., description="Business wall clock, HH:MM")
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_phone: str = Field(..., min_length=3, max_length=32)
    customer_locale: str = Field(DEFAULT_CUSTOMER_LOCALE, max_length=16)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("customer_name", "customer_phone")
    @classmethod
    def strip_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Field cannot be empty or whitespace")
        return v.strip()


class RecurringResponse(BaseModel):
    id: int
    service_id: int
    staff_id: Optional[int]
    frequency: RecurrenceFrequency
    start_date: dt.date
    end_date: Optional[dt.date]
    time_of_day: str
    customer_name: str
    customer_phone: str
    customer_locale: str
    notes: Optional[str]
    is_active: bool
    occurrence_count: Optional[int] = None

    @classmethod
    def from_series(cls, series: RecurringAppointment, occurrence_count: Optional[int] = None):
        return cls(
            id=series.id,
            service_id=series.service_id,
            staff_id=series.staff_id,
            frequency=series.frequency,
            start_date=series.start_date,
            end_date=series.end_date,
            time_of_day=series.time_of_day.strftime("%H:%M"),
            customer_name=series.customer_name,
            customer_phone=series.customer_phone,
            customer_locale=series.customer_locale,
            notes=series.notes,
            is_active=series.is_active,
            occurrence_count=occurrence_count,
        )


class GenerationResponse(BaseModel):
    recurring: RecurringResponse
    created: List[AppointmentResponse]
    skipped_dates: List[str]


def _generation_response(result: GenerationResult, tz_name: str) -> GenerationResponse:
    return GenerationResponse(
        recurring=RecurringResponse.from_series(result.series),
        created=[AppointmentResponse.from_appointment(a, tz_name) for a in result.created],
        skipped_dates=[day.isoformat() for day in result.skipped],
    )


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@router.get("", response_model=List[RecurringResponse])
async def owner_list_recurring(
    active: Optional[bool] = None,
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    rows = await list_series(session, ctx.business_id, active=active)
    return [RecurringResponse.from_series(series, total) for series, total in rows]


@router.post("", response_model=GenerationResponse, status_code=201)
async def owner_create_recurring(
    payload: RecurringCreate,
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    """
    Create a series and book its occurrences for the coming horizon.

    Error Codes:
    - 404: Service or staff member not in this business
    - 422: end_date before start_date, staff not qualified for the service
    """
    result = await create_series(
        session,
        ctx.business_id,
        ctx.timezone,
        service_id=payload.service_id,
        staff_id=payload.staff_id,
        frequency=payload.frequency,
        start_date=payload.start_date,
        end_date=payload.end_date,
        time_of_day=payload.time_of_day,
        customer_name=payload.customer_name,
        customer_phone=payload.customer_phone,
        customer_locale=payload.customer_locale,
        notes=payload.notes,
    )
    return _generation_response(result, ctx.timezone)


@router.post("/{recurring_id}/generate", response_model=GenerationResponse)
async def owner_generate_recurring(
    recurring_id: int,
    through: Optional[str] = Query(None, description="Last local date to fill, YYYY-MM-DD"),
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    """Top up a series with the occurrences missing up to ``through``."""
    last = parse_local_date(through) if through else None
    result = await generate_occurrences(session, ctx.business_id, recurring_id, ctx.timezone, through=last)
    return _generation_response(result, ctx.timezone)


@router.delete("/{recurring_id}", response_model=RecurringResponse)
async def owner_deactivate_recurring(
    recurring_id: int,
    cancel_future: bool = Query(True, description="Also cancel upcoming occurrences"),
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    """
    Stop a series. The series row and its past occurrences are kept for
    the calendar history; appointments are never deleted.
    """
    series = await deactivate_series(session, ctx.business_id, recurring_id, cancel_future=cancel_future)
    return RecurringResponse.from_series(series)
