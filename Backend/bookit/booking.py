"""
Booking flow

Writes appointments on top of the availability engine. The engine answer
used to render the booking page is only a pre-flight check; here the slot
is re-validated inside the request transaction with the business row
locked, so two concurrent requests for the same slot cannot both commit.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Appointment, AppointmentStatus, Business, Service, Staff
from .scheduling.engine import AvailabilityEngine
from .scheduling.errors import InvalidInput, InvalidStatusTransition, NotFound, StorageConflict
from .scheduling.repository import SqlAvailabilityStore, build_engine, commit_or_raise
from .scheduling.timezones import normalize_start, resolve_zone
from .tenancy.queries import get_appointment_by_id


logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER_LOCALE = "es-PR"

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELED}),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.NOSHOW, AppointmentStatus.CANCELED}
    ),
    AppointmentStatus.CANCELED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.NOSHOW: frozenset(),
}


def initial_status(service: Service) -> AppointmentStatus:
    """Bookings that need a deposit wait for the owner to confirm them."""
    if service.deposit_cents and service.deposit_cents > 0:
        return AppointmentStatus.PENDING
    return AppointmentStatus.CONFIRMED


# ────────────────────────────────────────────────────────────────
# Creation
# ────────────────────────────────────────────────────────────────

async def create_appointment(
    session: AsyncSession,
    business_id: int,
    service_id: int,
    staff_id: Optional[int],
    local_start: datetime,
    customer_name: str,
    customer_phone: str,
    customer_locale: str = DEFAULT_CUSTOMER_LOCALE,
    notes: Optional[str] = None,
    source: str = "public",
    engine: Optional[AvailabilityEngine] = None,
    recurring_id: Optional[int] = None,
) -> Appointment:
    """
    Book ``local_start`` (business wall clock) for a customer. An aware
    ``local_start`` books that exact instant.

    Raises:
        NotFound: unknown business, service or staff member
        InvalidInput: bad customer data or a staff member not qualified
        StorageConflict: the slot is no longer available
        StorageUnavailable: the database could not be reached
    """
    customer_name = (customer_name or "").strip()
    customer_phone = (customer_phone or "").strip()
    if not customer_name or not customer_phone:
        raise InvalidInput("Customer name and phone are required")

    engine = engine or build_engine(session)
    store = SqlAvailabilityStore(session)
    await store.lock_business(business_id)

    free = await engine.free_resources(business_id, service_id, staff_id, local_start)
    if not free:
        logger.warning(
            "Slot unavailable business=%s service=%s staff=%s start=%s",
            business_id,
            service_id,
            staff_id,
            local_start,
        )
        raise StorageConflict(
            "Selected time is no longer available",
            {"start": local_start.isoformat(), "staff_id": staff_id},
        )

    business = await session.get(Business, business_id)
    service = await session.get(Service, service_id)
    zone = resolve_zone(business.timezone)
    _, _, starts_at = normalize_start(local_start, zone)

    appointment = Appointment(
        business_id=business_id,
        service_id=service.id,
        staff_id=free[0],
        starts_at=starts_at,
        ends_at=starts_at + timedelta(minutes=service.duration_min),
        buffer_before_min=service.buffer_before_min,
        buffer_after_min=service.buffer_after_min,
        customer_name=customer_name,
        customer_phone=customer_phone,
        customer_locale=customer_locale or DEFAULT_CUSTOMER_LOCALE,
        status=initial_status(service),
        source=source,
        notes=notes,
        recurring_id=recurring_id,
    )
    session.add(appointment)
    await commit_or_raise(session)
    await session.refresh(appointment)

    logger.info(
        "Appointment %s created business=%s service=%s staff=%s starts_at=%s status=%s",
        appointment.id,
        business_id,
        service_id,
        appointment.staff_id,
        appointment.starts_at.isoformat(),
        appointment.status.value,
    )
    return appointment


# ────────────────────────────────────────────────────────────────
# Status transitions
# ────────────────────────────────────────────────────────────────

def check_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransition(
            f"Cannot move appointment from {current.value} to {target.value}",
            {"from": current.value, "to": target.value},
        )


async def transition_status(
    session: AsyncSession,
    business_id: int,
    appointment_id: uuid.UUID,
    target: AppointmentStatus,
) -> Appointment:
    appointment = await get_appointment_by_id(session, business_id, appointment_id)
    if not appointment:
        raise NotFound("Appointment not found", {"appointment_id": str(appointment_id)})

    previous = appointment.status
    check_transition(previous, target)
    appointment.status = target
    await commit_or_raise(session)
    await session.refresh(appointment)

    logger.info(
        "Appointment %s status %s -> %s", appointment.id, previous.value, target.value
    )
    return appointment


async def cancel_appointment(
    session: AsyncSession,
    business_id: int,
    appointment_id: uuid.UUID,
) -> Appointment:
    return await transition_status(session, business_id, appointment_id, AppointmentStatus.CANCELED)


# ────────────────────────────────────────────────────────────────
# Calendar export
# ────────────────────────────────────────────────────────────────

def format_utc_timestamp(value: datetime) -> str:
    """Format datetime as UTC timestamp for iCalendar (RFC 5545)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y%m%dT%H%M%SZ")


def escape_ical_text(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def build_ics_event(
    uid: str,
    start_at: datetime,
    end_at: datetime,
    summary: str,
    description: str,
    location: str,
    status: str = "CONFIRMED",
    now: Optional[datetime] = None,
) -> str:
    dtstamp = format_utc_timestamp(now or datetime.now(timezone.utc))
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//BookIt//Appointments//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:{uid}@bookit",
        f"DTSTAMP:{dtstamp}",
        f"DTSTART:{format_utc_timestamp(start_at)}",
        f"DTEND:{format_utc_timestamp(end_at)}",
        f"SUMMARY:{escape_ical_text(summary)}",
        f"DESCRIPTION:{escape_ical_text(description)}",
        f"LOCATION:{escape_ical_text(location)}",
        f"STATUS:{status}",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\r\n".join(lines) + "\r\n"


async def appointment_ics(
    session: AsyncSession,
    business_id: int,
    appointment_id: uuid.UUID,
) -> str:
    """Render one appointment of the business as an .ics document."""
    result = await session.execute(
        select(Appointment, Service, Business)
        .join(Service, Service.id == Appointment.service_id)
        .join(Business, Business.id == Appointment.business_id)
        .where(Appointment.id == appointment_id, Appointment.business_id == business_id)
    )
    row = result.first()
    if not row:
        raise NotFound("Appointment not found", {"appointment_id": str(appointment_id)})
    appointment, service, business = row

    summary = service.name
    if appointment.staff_id is not None:
        staff = await session.get(Staff, appointment.staff_id)
        if staff:
            summary = f"{service.name} with {staff.display_name}"

    return build_ics_event(
        uid=str(appointment.id),
        start_at=appointment.starts_at,
        end_at=appointment.ends_at,
        summary=summary,
        description=f"Appointment for {appointment.customer_name}",
        location=business.location or business.name,
        status="CANCELLED" if appointment.status == AppointmentStatus.CANCELED else "CONFIRMED",
    )
