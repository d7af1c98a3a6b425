"""
Owner management API.

Endpoints the business owner dashboard uses to manage services, staff,
weekly availability, date exceptions and appointments. Every route is
scoped to the business in the URL path.

Pattern: /businesses/{business_id}/endpoint
"""

import logging
import uuid
import datetime as dt
from datetime import time
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .booking import transition_status
from .core.db import get_session
from .models import (
    AppointmentStatus,
    AvailabilityException,
    AvailabilityRule,
    Service,
    ServiceStaff,
    Staff,
    StaffRole,
)
from .public_booking import AppointmentResponse
from .scheduling.errors import InvalidInput, NotFound
from .scheduling.repository import commit_or_raise, flush_or_raise
from .scheduling.rules import DateException, LocalInterval, WeeklyRule
from .scheduling.timezones import local_day_bounds, parse_local_date, resolve_zone
from .seed import setup_default_schedule
from .tenancy import (
    BusinessContext,
    get_business_context_from_id,
    get_staff_by_ids,
    list_appointments_in_range,
    list_availability_exceptions,
    list_availability_rules,
    list_services,
    list_staff,
    require_owned,
    scoped_update,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/businesses/{business_id}", tags=["owner"])

SERVICE_UPDATABLE_FIELDS = (
    "name",
    "description",
    "duration_min",
    "price_cents",
    "deposit_cents",
    "buffer_before_min",
    "buffer_after_min",
    "max_per_slot",
    "active",
)
SERVICE_NULLABLE_FIELDS = ("description",)


# ────────────────────────────────────────────────────────────────
# Request/Response Models
# ────────────────────────────────────────────────────────────────

class BusinessDetailResponse(BaseModel):
    id: int
    name: Optional[str]
    slug: Optional[str]
    timezone: str
    location: Optional[str] = None


class ServiceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    duration_min: int = Field(..., gt=0, le=24 * 60)
    price_cents: int = Field(0, ge=0)
    deposit_cents: int = Field(0, ge=0)
    buffer_before_min: int = Field(0, ge=0)
    buffer_after_min: int = Field(0, ge=0)
    max_per_slot: int = Field(1, ge=1)
    active: bool = True
    staff_ids: list[int] = Field(default_factory=list, description="Staff qualified to perform it")


class ServiceUpdate(BaseModel):
    """Partial update; only fields present in the body are written."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    duration_min: Optional[int] = Field(None, gt=0, le=24 * 60)
    price_cents: Optional[int] = Field(None, ge=0)
    deposit_cents: Optional[int] = Field(None, ge=0)
    buffer_before_min: Optional[int] = Field(None, ge=0)
    buffer_after_min: Optional[int] = Field(None, ge=0)
    max_per_slot: Optional[int] = Field(None, ge=1)
    active: Optional[bool] = None


class ServiceDetailResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    duration_min: int
    price_cents: int
    deposit_cents: int
    buffer_before_min: int
    buffer_after_min: int
    max_per_slot: int
    active: bool
    staff_ids: list[int] = []

    model_config = {"from_attributes": True}


class StaffCreate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=32)
    role: StaffRole = StaffRole.MEMBER
    active: bool = True


class StaffDetailResponse(BaseModel):
    id: int
    display_name: str
    phone: Optional[str]
    role: StaffRole
    active: bool

    model_config = {"from_attributes": True}


class AvailabilityCreate(BaseModel):
    """Either a weekly rule or a single-date exception."""
    type: Literal["rule", "exception"]
    staff_id: Optional[int] = None
    # rule
    weekday: Optional[int] = Field(None, ge=0, le=6, description="0=Sunday")
    # exception
    date: Optional[dt.date] = None
    is_closed: bool = False
    reason: Optional[str] = Field(None, max_length=255)
    # both
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class RuleResponse(BaseModel):
    id: int
    staff_id: Optional[int]
    weekday: int
    start_time: str
    end_time: str
    is_active: bool


class ExceptionResponse(BaseModel):
    id: int
    staff_id: Optional[int]
    date: str
    is_closed: bool
    start_time: Optional[str]
    end_time: Optional[str]
    reason: Optional[str]


class AvailabilityResponse(BaseModel):
    rules: list[RuleResponse]
    exceptions: list[ExceptionResponse]


class StatusChangeRequest(BaseModel):
    status: AppointmentStatus


class DefaultScheduleResponse(BaseModel):
    created: bool


# ────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────

def _hhmm(value: Optional[time]) -> Optional[str]:
    return value.strftime("%H:%M") if value is not None else None


def rule_to_response(rule: AvailabilityRule) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        staff_id=rule.staff_id,
        weekday=rule.weekday,
        start_time=_hhmm(rule.start_time),
        end_time=_hhmm(rule.end_time),
        is_active=rule.is_active,
    )


def exception_to_response(exc: AvailabilityException) -> ExceptionResponse:
    return ExceptionResponse(
        id=exc.id,
        staff_id=exc.staff_id,
        date=exc.date.isoformat(),
        is_closed=exc.is_closed,
        start_time=_hhmm(exc.start_time),
        end_time=_hhmm(exc.end_time),
        reason=exc.reason,
    )


async def _service_staff_ids(session: AsyncSession, service_id: int) -> list[int]:
    result = await session.execute(
        select(ServiceStaff.staff_id).where(ServiceStaff.service_id == service_id).order_by(ServiceStaff.staff_id)
    )
    return list(result.scalars().all())


async def _service_response(session: AsyncSession, service: Service) -> ServiceDetailResponse:
    response = ServiceDetailResponse.model_validate(service)
    response.staff_ids = await _service_staff_ids(session, service.id)
    return response


async def _require_staff(session: AsyncSession, business_id: int, staff_id: Optional[int]) -> None:
    if staff_id is None:
        return
    if not await require_owned(session, Staff, staff_id, business_id):
        raise NotFound("Staff member not found", {"staff_id": staff_id})


# ────────────────────────────────────────────────────────────────
# Business
# ────────────────────────────────────────────────────────────────

@router.get("", response_model=BusinessDetailResponse)
async def get_business(ctx: BusinessContext = Depends(get_business_context_from_id)):
    return BusinessDetailResponse(
        id=ctx.business_id,
        name=ctx.name,
        slug=ctx.slug,
        timezone=ctx.timezone,
        location=ctx.location,
    )


# ────────────────────────────────────────────────────────────────
# Services
# ────────────────────────────────────────────────────────────────

@router.get("/services", response_model=list[ServiceDetailResponse])
async def owner_list_services(
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    services = await list_services(session, ctx.business_id)
    return [await _service_response(session, svc) for svc in services]


@router.post("/services", response_model=ServiceDetailResponse, status_code=201)
async def owner_create_service(
    payload: ServiceCreate,
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    """
    Create a service. ``staff_ids`` restricts who performs it; leave it
    empty to let every active staff member take the booking.

    Error Codes:
    - 404: A staff id does not belong to this business
    - 409: A service with this name already exists
    """
    staff_ids = sorted(set(payload.staff_ids))
    owned = await get_staff_by_ids(session, ctx.business_id, staff_ids)
    if len(owned) != len(staff_ids):
        missing = sorted(set(staff_ids) - {s.id for s in owned})
        raise NotFound("Staff member not found", {"staff_ids": missing})

    service = Service(
        business_id=ctx.business_id,
        **payload.model_dump(exclude={"staff_ids"}),
    )
    session.add(service)
    await flush_or_raise(session)
    session.add_all([ServiceStaff(service_id=service.id, staff_id=sid) for sid in staff_ids])
    await commit_or_raise(session)
    await session.refresh(service)

    logger.info("Service %s created for business %s", service.id, ctx.business_id)
    return await _service_response(session, service)


@router.patch("/services/{service_id}", response_model=ServiceDetailResponse)
async def owner_update_service(
    service_id: int,
    payload: ServiceUpdate,
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    """Update only the fields present in the request body."""
    service = await require_owned(session, Service, service_id, ctx.business_id)
    if not service:
        raise NotFound("Service not found", {"service_id": service_id})

    values = payload.model_dump(exclude_unset=True)
    null_fields = sorted(
        field for field, value in values.items()
        if value is None and field not in SERVICE_NULLABLE_FIELDS
    )
    if null_fields:
        raise InvalidInput("Fields cannot be null", {"fields": null_fields})

    await scoped_update(session, Service, service_id, ctx.business_id, values, SERVICE_UPDATABLE_FIELDS)
    await commit_or_raise(session)
    await session.refresh(service)
    return await _service_response(session, service)


# ────────────────────────────────────────────────────────────────
# Staff
# ────────────────────────────────────────────────────────────────

@router.get("/staff", response_model=list[StaffDetailResponse])
async def owner_list_staff(
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    staff = await list_staff(session, ctx.business_id)
    return [StaffDetailResponse.model_validate(s) for s in staff]


@router.post("/staff", response_model=StaffDetailResponse, status_code=201)
async def owner_create_staff(
    payload: StaffCreate,
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    member = Staff(business_id=ctx.business_id, **payload.model_dump())
    session.add(member)
    await commit_or_raise(session)
    await session.refresh(member)
    return StaffDetailResponse.model_validate(member)


# ────────────────────────────────────────────────────────────────
# Availability
# ────────────────────────────────────────────────────────────────

@router.get("/availability", response_model=AvailabilityResponse)
async def owner_get_availability(
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    rules = await list_availability_rules(session, ctx.business_id)
    exceptions = await list_availability_exceptions(session, ctx.business_id)
    return AvailabilityResponse(
        rules=[rule_to_response(r) for r in rules],
        exceptions=[exception_to_response(e) for e in exceptions],
    )


@router.post("/availability", status_code=201)
async def owner_add_availability(
    payload: AvailabilityCreate,
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    """
    Add a weekly rule (``type=rule``) or a date exception (``type=exception``).

    Error Codes:
    - 404: staff_id does not belong to this business
    - 422: Missing weekday/date, end not after start, or an open exception
      without hours
    """
    await _require_staff(session, ctx.business_id, payload.staff_id)

    if payload.type == "rule":
        if payload.weekday is None or payload.start_time is None or payload.end_time is None:
            raise InvalidInput("Rules need weekday, start_time and end_time")
        WeeklyRule(payload.weekday, payload.start_time, payload.end_time, payload.staff_id)
        LocalInterval(payload.start_time, payload.end_time)
        rule = AvailabilityRule(
            business_id=ctx.business_id,
            staff_id=payload.staff_id,
            weekday=payload.weekday,
            start_time=payload.start_time,
            end_time=payload.end_time,
            is_active=True,
        )
        session.add(rule)
        await commit_or_raise(session)
        await session.refresh(rule)
        return rule_to_response(rule)

    if payload.date is None:
        raise InvalidInput("Exceptions need a date")
    candidate = DateException(
        payload.date,
        payload.is_closed,
        payload.start_time,
        payload.end_time,
        payload.staff_id,
    )
    if not candidate.is_closed and candidate.interval is None:
        raise InvalidInput("Open exceptions need start_time and end_time")

    exc = AvailabilityException(
        business_id=ctx.business_id,
        staff_id=payload.staff_id,
        date=payload.date,
        is_closed=payload.is_closed,
        start_time=None if payload.is_closed else payload.start_time,
        end_time=None if payload.is_closed else payload.end_time,
        reason=payload.reason,
    )
    session.add(exc)
    await commit_or_raise(session)
    await session.refresh(exc)
    return exception_to_response(exc)


@router.delete("/availability/rules/{rule_id}", status_code=204)
async def owner_delete_rule(
    rule_id: int,
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    result = await session.execute(
        delete(AvailabilityRule).where(
            AvailabilityRule.id == rule_id,
            AvailabilityRule.business_id == ctx.business_id,
        )
    )
    if result.rowcount == 0:
        raise NotFound("Availability rule not found", {"rule_id": rule_id})
    await commit_or_raise(session)
    return Response(status_code=204)


@router.delete("/availability/exceptions/{exception_id}", status_code=204)
async def owner_delete_exception(
    exception_id: int,
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    result = await session.execute(
        delete(AvailabilityException).where(
            AvailabilityException.id == exception_id,
            AvailabilityException.business_id == ctx.business_id,
        )
    )
    if result.rowcount == 0:
        raise NotFound("Availability exception not found", {"exception_id": exception_id})
    await commit_or_raise(session)
    return Response(status_code=204)


@router.post("/setup-default-schedule", response_model=DefaultScheduleResponse)
async def owner_setup_default_schedule(
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    """Mon-Fri 09:00-17:00 and Sat 10:00-15:00; does nothing if rules exist."""
    created = await setup_default_schedule(session, ctx.business_id)
    return DefaultScheduleResponse(created=created)


# ────────────────────────────────────────────────────────────────
# Appointments
# ────────────────────────────────────────────────────────────────

@router.get("/appointments", response_model=list[AppointmentResponse])
async def owner_list_appointments(
    start: str = Query(..., description="First local date, YYYY-MM-DD"),
    end: Optional[str] = Query(None, description="Last local date (inclusive), YYYY-MM-DD"),
    staff_id: Optional[int] = None,
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    """Calendar view: appointments of every status overlapping the local dates."""
    first = parse_local_date(start)
    last = parse_local_date(end) if end else first
    if last < first:
        raise InvalidInput("end must not be before start", {"start": start, "end": end})

    zone = resolve_zone(ctx.timezone)
    range_start, _ = local_day_bounds(first, zone)
    _, range_end = local_day_bounds(last, zone)
    appointments = await list_appointments_in_range(
        session, ctx.business_id, range_start, range_end, staff_id=staff_id
    )
    return [AppointmentResponse.from_appointment(a, ctx.timezone) for a in appointments]


@router.post("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
async def owner_change_status(
    appointment_id: uuid.UUID,
    payload: StatusChangeRequest,
    ctx: BusinessContext = Depends(get_business_context_from_id),
    session: AsyncSession = Depends(get_session),
):
    """
    Move an appointment through its lifecycle.

    Error Codes:
    - 404: Appointment not found for this business
    - 409: Transition not allowed from the current status
    """
    appointment = await transition_status(session, ctx.business_id, appointment_id, payload.status)
    return AppointmentResponse.from_appointment(appointment, ctx.timezone)
