"""
SQLAlchemy-backed AvailabilityStore.

Reads businesses, services, staff, rules, exceptions and appointments for the
engine and translates driver failures into StorageConflict/StorageUnavailable.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy import Select, or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..models import (
    Appointment,
    AvailabilityException,
    AvailabilityRule,
    Business,
    RELEASED_STATUSES,
    Service,
    ServiceStaff,
    Staff,
)
from .conflicts import BookingWindow
from .engine import AvailabilityEngine, BusinessInfo, ResourceId, ServiceInfo, StaffInfo
from .errors import StorageConflict, StorageUnavailable
from .rules import DateException, WeeklyRule


logger = logging.getLogger(__name__)


def translate_storage_error(exc: Exception) -> Exception:
    """Map a SQLAlchemy error onto the engine's storage error kinds."""
    if isinstance(exc, IntegrityError):
        return StorageConflict("Conflicting write rejected by the database", {"reason": str(exc.orig)})
    if isinstance(exc, (OperationalError, InterfaceError, DBAPIError)):
        return StorageUnavailable("Database is unavailable, retry later")
    return exc


class SqlAvailabilityStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _execute(self, stmt: Select):
        try:
            return await self.session.execute(stmt)
        except DBAPIError as exc:
            logger.exception("Availability query failed")
            raise translate_storage_error(exc) from exc

    async def get_business(self, business_id: int) -> Optional[BusinessInfo]:
        result = await self._execute(select(Business).where(Business.id == business_id))
        business = result.scalar_one_or_none()
        if not business:
            return None
        return BusinessInfo(id=business.id, timezone=business.timezone, slug=business.slug)

    async def get_service(self, business_id: int, service_id: int) -> Optional[ServiceInfo]:
        result = await self._execute(
            select(Service).where(
                Service.id == service_id,
                Service.business_id == business_id,
                Service.active.is_(True),
            )
        )
        service = result.scalar_one_or_none()
        if not service:
            return None
        return ServiceInfo(
            id=service.id,
            business_id=service.business_id,
            duration_min=service.duration_min,
            buffer_before_min=service.buffer_before_min,
            buffer_after_min=service.buffer_after_min,
            max_per_slot=service.max_per_slot,
        )

    async def get_staff(self, business_id: int, staff_id: int) -> Optional[StaffInfo]:
        result = await self._execute(
            select(Staff).where(Staff.id == staff_id, Staff.business_id == business_id)
        )
        staff = result.scalar_one_or_none()
        if not staff:
            return None
        return StaffInfo(id=staff.id, business_id=staff.business_id, active=staff.active)

    async def has_active_staff(self, business_id: int) -> bool:
        result = await self._execute(
            select(Staff.id).where(Staff.business_id == business_id, Staff.active.is_(True)).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def list_qualified_staff(self, business_id: int, service_id: int) -> List[int]:
        """Active staff linked to the service, or every active staff member if it has no links."""
        linked = await self._execute(
            select(ServiceStaff.staff_id).where(ServiceStaff.service_id == service_id)
        )
        linked_ids = set(linked.scalars().all())

        stmt = select(Staff.id).where(Staff.business_id == business_id, Staff.active.is_(True))
        if linked_ids:
            stmt = stmt.where(Staff.id.in_(linked_ids))
        result = await self._execute(stmt.order_by(Staff.id))
        return list(result.scalars().all())

    async def list_rules(self, business_id: int) -> List[WeeklyRule]:
        result = await self._execute(
            select(AvailabilityRule)
            .where(AvailabilityRule.business_id == business_id, AvailabilityRule.is_active.is_(True))
            .order_by(AvailabilityRule.weekday, AvailabilityRule.start_time)
        )
        return [
            WeeklyRule(
                weekday=rule.weekday,
                start_time=rule.start_time,
                end_time=rule.end_time,
                staff_id=rule.staff_id,
                is_active=rule.is_active,
            )
            for rule in result.scalars().all()
        ]

    async def list_exceptions(
        self, business_id: int, start_date: date, end_date: date
    ) -> List[DateException]:
        result = await self._execute(
            select(AvailabilityException)
            .where(
                AvailabilityException.business_id == business_id,
                AvailabilityException.date >= start_date,
                AvailabilityException.date <= end_date,
            )
            .order_by(AvailabilityException.date)
        )
        return [
            DateException(
                date=exc.date,
                is_closed=exc.is_closed,
                start_time=exc.start_time,
                end_time=exc.end_time,
                staff_id=exc.staff_id,
            )
            for exc in result.scalars().all()
        ]

    async def list_busy_windows(
        self,
        business_id: int,
        resources: Sequence[ResourceId],
        window_start: datetime,
        window_end: datetime,
    ) -> Dict[ResourceId, List[BookingWindow]]:
        staff_ids = [r for r in resources if r is not None]
        resource_filters = []
        if staff_ids:
            resource_filters.append(Appointment.staff_id.in_(staff_ids))
        if None in resources:
            resource_filters.append(Appointment.staff_id.is_(None))
        if not resource_filters:
            return {}

        result = await self._execute(
            select(Appointment)
            .where(
                Appointment.business_id == business_id,
                Appointment.status.notin_(RELEASED_STATUSES),
                Appointment.starts_at < window_end,
                Appointment.ends_at > window_start,
                or_(*resource_filters),
            )
            .order_by(Appointment.starts_at)
        )

        busy: Dict[ResourceId, List[BookingWindow]] = {resource: [] for resource in resources}
        for appt in result.scalars().all():
            busy.setdefault(appt.staff_id, []).append(
                BookingWindow(
                    start=appt.starts_at,
                    end=appt.ends_at,
                    buffer_before=timedelta(minutes=appt.buffer_before_min),
                    buffer_after=timedelta(minutes=appt.buffer_after_min),
                )
            )
        return busy

    async def lock_business(self, business_id: int) -> None:
        """
        Take a row lock on the business for the rest of the transaction.

        Concurrent bookings for the same business serialize here so the
        re-run conflict check sees every committed appointment.
        """
        await self._execute(
            select(Business.id).where(Business.id == business_id).with_for_update()
        )


def build_engine(session: AsyncSession, settings: Optional[Settings] = None) -> AvailabilityEngine:
    settings = settings or get_settings()
    return AvailabilityEngine(
        SqlAvailabilityStore(session),
        granularity_minutes=settings.slot_granularity_minutes,
        min_notice_minutes=settings.min_notice_minutes,
        max_range_days=settings.max_range_days,
    )


async def commit_or_raise(session: AsyncSession) -> None:
    """Commit the unit of work, rolling back and translating driver failures."""
    try:
        await session.commit()
    except DBAPIError as exc:
        await session.rollback()
        logger.exception("Commit failed")
        raise translate_storage_error(exc) from exc


async def flush_or_raise(session: AsyncSession) -> None:
    """Flush pending rows (to get generated ids) with the same translation as commit."""
    try:
        await session.flush()
    except DBAPIError as exc:
        await session.rollback()
        logger.exception("Flush failed")
        raise translate_storage_error(exc) from exc
