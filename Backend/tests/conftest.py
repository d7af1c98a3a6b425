"""
Pytest configuration and fixtures for async database testing.

Tests run against an in-memory SQLite database (aiosqlite) unless
TEST_DATABASE_URL points somewhere else. Every test gets a fresh schema.
"""
import os
from dataclasses import dataclass
from datetime import time

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Verify we're NOT pointing the suite at a shared database
if "neon" in TEST_DATABASE_URL.lower() or "prod" in TEST_DATABASE_URL.lower():
    raise RuntimeError(
        f"DANGER: Tests are configured to use a production database!\n"
        f"TEST_DATABASE_URL: {TEST_DATABASE_URL}"
    )

# The application engine is built at import time from DATABASE_URL
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from bookit.core.db import Base, get_session  # noqa: E402
from bookit.models import AvailabilityRule, Business, Service, Staff  # noqa: E402


@pytest.fixture(scope="function")
async def async_engine():
    """
    Create async SQLAlchemy engine with a fresh schema.

    Engine is created per test to ensure clean state.
    """
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False, pool_pre_ping=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(async_engine):
    """Create async database session bound to the per-test engine."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        yield session


@pytest.fixture(scope="function")
async def client(async_session):
    """
    Create FastAPI AsyncClient with database session override.

    Startup hooks do not run under ASGITransport; the schema comes from
    the async_engine fixture.
    """
    # Import here to avoid circular dependencies
    from bookit.main import app

    async def override_get_session():
        yield async_session

    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ────────────────────────────────────────────────────────────────
# Data fixtures
# ────────────────────────────────────────────────────────────────

@dataclass
class SalonFixture:
    business: Business
    haircut: Service
    color: Service
    ana: Staff
    luis: Staff


@pytest.fixture
async def salon(async_session) -> SalonFixture:
    """
    "Salon Luna" in America/Puerto_Rico (UTC-4, no DST) with two staff
    members and business-wide hours Mon-Fri 09:00-17:00.

    - Haircut: 30 min, no buffers, no deposit
    - Color: 60 min, 15 min buffer after, 2000 cents deposit
    """
    business = Business(name="Salon Luna", slug="salon-luna", timezone="America/Puerto_Rico")
    async_session.add(business)
    await async_session.flush()

    haircut = Service(business_id=business.id, name="Haircut", duration_min=30, price_cents=3500)
    color = Service(
        business_id=business.id,
        name="Color",
        duration_min=60,
        price_cents=9000,
        deposit_cents=2000,
        buffer_after_min=15,
    )
    ana = Staff(business_id=business.id, display_name="Ana")
    luis = Staff(business_id=business.id, display_name="Luis")
    async_session.add_all([haircut, color, ana, luis])
    async_session.add_all(
        [
            AvailabilityRule(
                business_id=business.id,
                weekday=weekday,
                start_time=time(9, 0),
                end_time=time(17, 0),
            )
            for weekday in range(1, 6)
        ]
    )
    await async_session.commit()
    return SalonFixture(business=business, haircut=haircut, color=color, ana=ana, luis=luis)
