import logging
from datetime import time

from sqlalchemy import select

from .core.config import get_settings
from .models import AvailabilityRule, Business, Service, Staff


logger = logging.getLogger(__name__)

# (weekday, open, close) with 0=Sunday
DEFAULT_WEEKLY_SCHEDULE = [
    (1, time(9, 0), time(17, 0)),
    (2, time(9, 0), time(17, 0)),
    (3, time(9, 0), time(17, 0)),
    (4, time(9, 0), time(17, 0)),
    (5, time(9, 0), time(17, 0)),
    (6, time(10, 0), time(15, 0)),
]


async def setup_default_schedule(session, business_id: int) -> bool:
    """
    Create business-wide rules for DEFAULT_WEEKLY_SCHEDULE.

    Returns False without writing anything when the business already has rules.
    """
    result = await session.execute(
        select(AvailabilityRule.id).where(AvailabilityRule.business_id == business_id).limit(1)
    )
    if result.scalar_one_or_none() is not None:
        return False

    session.add_all(
        [
            AvailabilityRule(
                business_id=business_id,
                staff_id=None,
                weekday=weekday,
                start_time=start,
                end_time=end,
                is_active=True,
            )
            for weekday, start, end in DEFAULT_WEEKLY_SCHEDULE
        ]
    )
    await session.commit()
    logger.info("Default schedule created for business %s", business_id)
    return True


async def seed_initial_data(session):
    settings = get_settings()
    result = await session.execute(select(Business).where(Business.slug == settings.demo_business_slug))
    business = result.scalar_one_or_none()

    if not business:
        business = Business(
            name="Demo Salon",
            slug=settings.demo_business_slug,
            timezone=settings.default_timezone,
        )
        session.add(business)
        await session.flush()

    # Seed services if missing
    result = await session.execute(select(Service).where(Service.business_id == business.id))
    services = result.scalars().all()
    if not services:
        session.add_all(
            [
                Service(
                    business_id=business.id,
                    name="Haircut",
                    duration_min=30,
                    price_cents=3500,
                    buffer_after_min=10,
                ),
                Service(
                    business_id=business.id,
                    name="Manicure",
                    duration_min=45,
                    price_cents=2500,
                ),
                Service(
                    business_id=business.id,
                    name="Color Treatment",
                    duration_min=90,
                    price_cents=9000,
                    deposit_cents=2000,
                    buffer_before_min=15,
                ),
            ]
        )

    result = await session.execute(select(Staff).where(Staff.business_id == business.id))
    staff = result.scalars().all()
    if not staff:
        session.add_all(
            [
                Staff(business_id=business.id, display_name="Ana", active=True),
                Staff(business_id=business.id, display_name="Luis", active=True),
            ]
        )

    await session.commit()
    await setup_default_schedule(session, business.id)
