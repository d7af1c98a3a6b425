"""
Tenant-scoped query helpers.

ALL queries for tenant data MUST use these helpers or include an explicit
business_id filter. ``scripts/check_tenant_scoping.py`` flags violations.

Usage:
    from bookit.tenancy.queries import require_owned, list_services, scoped_select

    service = await require_owned(session, Service, service_id, ctx.business_id)
    services = await list_services(session, ctx.business_id)

    # Or using composable helpers:
    stmt = scoped_select(Service, business_id).where(Service.active.is_(True))
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

from ..models import (
    Appointment,
    AvailabilityException,
    AvailabilityRule,
    Service,
    Staff,
)
from ..scheduling.errors import InvalidInput
from ..scheduling.repository import translate_storage_error

logger = logging.getLogger(__name__)

# Type variable for generic model functions
T = TypeVar("T", bound=DeclarativeBase)


# ────────────────────────────────────────────────────────────────
# Composable Query Helpers
# ────────────────────────────────────────────────────────────────

def scoped_select(model: Type[T], business_id: int) -> Select:
    """
    Create a SELECT statement pre-filtered by business_id.

    Usage:
        stmt = scoped_select(Service, ctx.business_id).where(Service.active.is_(True))
        result = await session.execute(stmt)
    """
    return select(model).where(tenant_filter(model, business_id))


def tenant_filter(model: Type[T], business_id: int):
    """Return a SQLAlchemy filter clause for business_id."""
    return model.business_id == business_id


async def require_owned(
    session: AsyncSession,
    model: Type[T],
    entity_id: Any,
    business_id: int,
) -> Optional[T]:
    """
    Fetch an entity by ID, validating business ownership.
    Returns None if not found or owned by another business.
    """
    result = await session.execute(
        select(model).where(
            model.id == entity_id,
            tenant_filter(model, business_id),
        )
    )
    return result.scalar_one_or_none()


async def scoped_update(
    session: AsyncSession,
    model: Type[T],
    entity_id: Any,
    business_id: int,
    values: Mapping[str, Any],
    allowed_fields: Sequence[str],
) -> int:
    """
    Partial update builder: apply only the provided fields as one
    parameterized UPDATE scoped to the business.

    ``values`` usually comes from ``payload.model_dump(exclude_unset=True)``.
    Unknown fields are rejected; an empty update touches nothing.

    Raises:
        InvalidInput: a field outside ``allowed_fields``
        StorageConflict: the new values break a unique constraint

    Returns:
        Number of rows updated (0 when the entity is not owned)
    """
    unknown = sorted(set(values) - set(allowed_fields))
    if unknown:
        raise InvalidInput("Fields cannot be updated", {"fields": unknown})
    if not values:
        return 0
    stmt = (
        update(model)
        .where(model.id == entity_id, tenant_filter(model, business_id))
        .values(**dict(values))
        .execution_options(synchronize_session="fetch")
    )
    try:
        result = await session.execute(stmt)
    except DBAPIError as exc:
        # Constraint violations surface here, not at commit
        await session.rollback()
        logger.warning("Update of %s %s failed: %s", model.__name__, entity_id, exc.orig)
        raise translate_storage_error(exc) from exc
    return result.rowcount


# ────────────────────────────────────────────────────────────────
# Service & Staff Queries
# ────────────────────────────────────────────────────────────────

async def list_services(
    session: AsyncSession,
    business_id: int,
    active_only: bool = False,
) -> Sequence[Service]:
    """List services for a business."""
    stmt = scoped_select(Service, business_id)
    if active_only:
        stmt = stmt.where(Service.active.is_(True))
    result = await session.execute(stmt.order_by(Service.name))
    return result.scalars().all()


async def list_staff(
    session: AsyncSession,
    business_id: int,
    active_only: bool = False,
) -> Sequence[Staff]:
    """List staff members for a business."""
    stmt = scoped_select(Staff, business_id)
    if active_only:
        stmt = stmt.where(Staff.active.is_(True))
    result = await session.execute(stmt.order_by(Staff.display_name))
    return result.scalars().all()


async def get_staff_by_ids(
    session: AsyncSession,
    business_id: int,
    staff_ids: Sequence[int],
) -> Sequence[Staff]:
    """Get multiple staff members by IDs, scoped to business."""
    if not staff_ids:
        return []
    result = await session.execute(
        scoped_select(Staff, business_id).where(Staff.id.in_(staff_ids))
    )
    return result.scalars().all()


# ────────────────────────────────────────────────────────────────
# Availability Queries
# ────────────────────────────────────────────────────────────────

async def list_availability_rules(session: AsyncSession, business_id: int) -> Sequence[AvailabilityRule]:
    result = await session.execute(
        scoped_select(AvailabilityRule, business_id)
        .where(AvailabilityRule.is_active.is_(True))
        .order_by(AvailabilityRule.weekday, AvailabilityRule.start_time)
    )
    return result.scalars().all()


async def list_availability_exceptions(
    session: AsyncSession, business_id: int
) -> Sequence[AvailabilityException]:
    result = await session.execute(
        scoped_select(AvailabilityException, business_id).order_by(AvailabilityException.date)
    )
    return result.scalars().all()


# ────────────────────────────────────────────────────────────────
# Appointment Queries
# ────────────────────────────────────────────────────────────────

async def get_appointment_by_id(
    session: AsyncSession,
    business_id: int,
    appointment_id: uuid.UUID,
) -> Optional[Appointment]:
    """Get an appointment by ID, scoped to business."""
    return await require_owned(session, Appointment, appointment_id, business_id)


async def list_appointments_in_range(
    session: AsyncSession,
    business_id: int,
    start_utc: datetime,
    end_utc: datetime,
    staff_id: Optional[int] = None,
) -> Sequence[Appointment]:
    """List appointments overlapping a UTC range, scoped to business."""
    stmt = scoped_select(Appointment, business_id).where(
        Appointment.starts_at < end_utc,
        Appointment.ends_at > start_utc,
    )
    if staff_id is not None:
        stmt = stmt.where(Appointment.staff_id == staff_id)
    result = await session.execute(stmt.order_by(Appointment.starts_at))
    return result.scalars().all()
