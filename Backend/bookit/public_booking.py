"""
Public Booking API.

Customer-facing endpoints behind the shareable booking page link
``/book/{slug}``. No authentication; the business is resolved strictly from
the URL slug and every query is scoped to it.

    GET  /book/{slug}/business                 -> Business info + weekly hours
    GET  /book/{slug}/services                 -> Active services
    GET  /book/{slug}/staff                    -> Active staff
    GET  /book/{slug}/slots                    -> Bookable start times per date
    GET  /book/{slug}/slots/check              -> Is one start time bookable
    POST /book/{slug}/appointments             -> Book a slot
    POST /book/{slug}/appointments/{id}/cancel -> Customer cancellation
    GET  /book/{slug}/appointments/{id}.ics    -> Calendar invite

Times on the wire are local to the business: dates as YYYY-MM-DD, start
times as HH:MM, combined starts as YYYY-MM-DDTHH:MM.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from .booking import DEFAULT_CUSTOMER_LOCALE, appointment_ics, cancel_appointment, create_appointment
from .core.db import get_session
from .models import Appointment, AppointmentStatus
from .scheduling.repository import build_engine
from .scheduling.timezones import parse_local_date, parse_local_datetime, resolve_zone, to_local
from .tenancy import (
    BusinessContext,
    get_business_context_from_slug,
    list_availability_rules,
    list_services,
    list_staff,
)

router = APIRouter(prefix="/book/{slug}", tags=["public-booking"])

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


# ────────────────────────────────────────────────────────────────
# Pydantic Models for Public API
# ────────────────────────────────────────────────────────────────

class OpeningHours(BaseModel):
    weekday: int  # 0=Sunday
    day_name: str
    start_time: str  # "09:00"
    end_time: str  # "17:00"


class BusinessInfoResponse(BaseModel):
    """Business information for the booking page header."""
    id: int
    name: str
    slug: str
    timezone: str
    location: Optional[str] = None
    hours: list[OpeningHours]


class ServiceResponse(BaseModel):
    """Service information."""
    id: int
    name: str
    description: Optional[str] = None
    duration_min: int
    price_cents: int
    deposit_cents: int
    price_display: str  # "$35.00"


class StaffResponse(BaseModel):
    id: int
    display_name: str


class SlotsResponse(BaseModel):
    """Bookable local start times keyed by local date."""
    timezone: str
    slots: dict[str, list[str]]  # {"2030-01-07": ["09:00", "09:15"]}


class SlotCheckResponse(BaseModel):
    start: str
    available: bool


class CreateAppointmentRequest(BaseModel):
    """Public booking form submission."""
    service_id: int
    staff_id: Optional[int] = Field(None, description="Optional: specific staff member")
    start: str = Field(..., description="Local start in YYYY-MM-DDTHH:MM format")
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


class AppointmentResponse(BaseModel):
    """Appointment as shown to the customer and the owner calendar."""
    id: uuid.UUID
    service_id: int
    staff_id: Optional[int]
    starts_at: datetime  # UTC
    ends_at: datetime  # UTC
    local_date: str
    local_start: str
    local_end: str
    status: AppointmentStatus
    customer_name: str
    customer_phone: str
    customer_locale: str
    source: str
    notes: Optional[str] = None
    recurring_id: Optional[int] = None

    @classmethod
    def from_appointment(cls, appointment: Appointment, tz_name: str) -> "AppointmentResponse":
        zone = resolve_zone(tz_name)
        start_date, start_time = to_local(appointment.starts_at, zone)
        _, end_time = to_local(appointment.ends_at, zone)
        return cls(
            id=appointment.id,
            service_id=appointment.service_id,
            staff_id=appointment.staff_id,
            starts_at=appointment.starts_at,
            ends_at=appointment.ends_at,
            local_date=start_date.isoformat(),
            local_start=start_time.strftime("%H:%M"),
            local_end=end_time.strftime("%H:%M"),
            status=appointment.status,
            customer_name=appointment.customer_name,
            customer_phone=appointment.customer_phone,
            customer_locale=appointment.customer_locale,
            source=appointment.source,
            notes=appointment.notes,
            recurring_id=appointment.recurring_id,
        )


# ────────────────────────────────────────────────────────────────
# Helper Functions
# ────────────────────────────────────────────────────────────────

def format_price(cents: int) -> str:
    """Format price in cents to display string."""
    return f"${cents / 100:.2f}"


def format_slots(slots: dict[date, list]) -> dict[str, list[str]]:
    return {
        day.isoformat(): [slot.strftime("%H:%M") for slot in times]
        for day, times in sorted(slots.items())
    }


# ────────────────────────────────────────────────────────────────
# Public API Endpoints
# ────────────────────────────────────────────────────────────────

@router.get("/business", response_model=BusinessInfoResponse)
async def get_business_info(
    ctx: BusinessContext = Depends(get_business_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    """Business name, timezone and business-wide weekly hours."""
    rules = await list_availability_rules(session, ctx.business_id)
    hours = [
        OpeningHours(
            weekday=rule.weekday,
            day_name=DAY_NAMES[rule.weekday],
            start_time=rule.start_time.strftime("%H:%M"),
            end_time=rule.end_time.strftime("%H:%M"),
        )
        for rule in rules
        if rule.staff_id is None
    ]
    return BusinessInfoResponse(
        id=ctx.business_id,
        name=ctx.name or "",
        slug=ctx.slug or "",
        timezone=ctx.timezone,
        location=ctx.location,
        hours=hours,
    )


@router.get("/services", response_model=list[ServiceResponse])
async def list_public_services(
    ctx: BusinessContext = Depends(get_business_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    """List the services customers can book."""
    services = await list_services(session, ctx.business_id, active_only=True)
    return [
        ServiceResponse(
            id=svc.id,
            name=svc.name,
            description=svc.description,
            duration_min=svc.duration_min,
            price_cents=svc.price_cents,
            deposit_cents=svc.deposit_cents,
            price_display=format_price(svc.price_cents),
        )
        for svc in services
    ]


@router.get("/staff", response_model=list[StaffResponse])
async def list_public_staff(
    ctx: BusinessContext = Depends(get_business_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    staff = await list_staff(session, ctx.business_id, active_only=True)
    return [StaffResponse(id=s.id, display_name=s.display_name) for s in staff]


@router.get("/slots", response_model=SlotsResponse)
async def get_slots(
    service_id: int,
    day: str = Query(..., alias="date", description="First local date, YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="Last local date (inclusive), YYYY-MM-DD"),
    staff_id: Optional[int] = None,
    ctx: BusinessContext = Depends(get_business_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    """
    Bookable start times for a service over one date or a date range.

    Dates with no availability are present with an empty list.
    """
    start_date = parse_local_date(day)
    last_date = parse_local_date(end_date) if end_date else start_date

    engine = build_engine(session)
    slots = await engine.get_available_slots(
        ctx.business_id, service_id, staff_id, start_date, last_date
    )
    return SlotsResponse(timezone=ctx.timezone, slots=format_slots(slots))


@router.get("/slots/check", response_model=SlotCheckResponse)
async def check_slot(
    service_id: int,
    start: str = Query(..., description="Local start, YYYY-MM-DDTHH:MM"),
    staff_id: Optional[int] = None,
    ctx: BusinessContext = Depends(get_business_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    local_start = parse_local_datetime(start)
    engine = build_engine(session)
    available = await engine.is_slot_available(ctx.business_id, service_id, staff_id, local_start)
    return SlotCheckResponse(start=local_start.strftime("%Y-%m-%dT%H:%M"), available=available)


@router.post("/appointments", response_model=AppointmentResponse, status_code=201)
async def book_appointment(
    request: CreateAppointmentRequest,
    ctx: BusinessContext = Depends(get_business_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    """
    Book a slot.

    Error Codes:
    - 404: Unknown service or staff member
    - 409: The slot is no longer available
    - 422: Invalid start format or staff member not offering the service
    """
    appointment = await create_appointment(
        session,
        business_id=ctx.business_id,
        service_id=request.service_id,
        staff_id=request.staff_id,
        local_start=parse_local_datetime(request.start),
        customer_name=request.customer_name,
        customer_phone=request.customer_phone,
        customer_locale=request.customer_locale,
        notes=request.notes,
        source="public",
    )
    return AppointmentResponse.from_appointment(appointment, ctx.timezone)


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_public_appointment(
    appointment_id: uuid.UUID,
    ctx: BusinessContext = Depends(get_business_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    """Cancel an appointment; canceling twice is a 409."""
    appointment = await cancel_appointment(session, ctx.business_id, appointment_id)
    return AppointmentResponse.from_appointment(appointment, ctx.timezone)


@router.get("/appointments/{appointment_id}.ics")
async def appointment_invite(
    appointment_id: uuid.UUID,
    ctx: BusinessContext = Depends(get_business_context_from_slug),
    session: AsyncSession = Depends(get_session),
):
    """Return a .ics invite file compatible with Google, Apple, and Outlook."""
    ics = await appointment_ics(session, ctx.business_id, appointment_id)
    filename = f"bookit-{appointment_id}.ics"
    return Response(
        content=ics,
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
