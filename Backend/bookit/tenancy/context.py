"""
Multi-tenancy context module for BookIt.

A business is the tenant. Every tenant-specific database operation runs
with a BusinessContext established from the URL (public booking page slug
or owner API business id).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Depends, Path
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.db import get_session
from ..models import Business
from ..scheduling.errors import NotFound


logger = logging.getLogger(__name__)


class BusinessResolutionSource(str, Enum):
    """How the business context was determined."""

    URL_SLUG = "url_slug"           # From /book/[slug]/ in URL path
    BUSINESS_ID = "business_id"     # From /businesses/[id]/ in URL path


@dataclass(frozen=True)
class BusinessContext:
    """
    Immutable context representing the current tenant for a request.

    Attributes:
        business_id: The database ID of the business (businesses.id)
        slug: URL-safe identifier (e.g., "salon-luna")
        name: Human-readable business name
        timezone: IANA timezone string (e.g., "America/Puerto_Rico")
        location: Free-text address shown on the booking page
        source: How this context was determined
    """

    business_id: int
    slug: Optional[str] = None
    name: Optional[str] = None
    timezone: str = "UTC"
    location: Optional[str] = None
    source: BusinessResolutionSource = BusinessResolutionSource.BUSINESS_ID

    def __post_init__(self):
        if self.business_id <= 0:
            raise ValueError(f"business_id must be positive, got {self.business_id}")

    @classmethod
    def from_business(cls, business: Business, source: BusinessResolutionSource) -> "BusinessContext":
        return cls(
            business_id=business.id,
            slug=business.slug,
            name=business.name,
            timezone=business.timezone,
            location=business.location,
            source=source,
        )


# ────────────────────────────────────────────────────────────────
# Resolution Functions
# ────────────────────────────────────────────────────────────────

async def resolve_business_from_slug(
    session: AsyncSession,
    slug: str,
) -> Optional[BusinessContext]:
    """
    Resolve business context from a URL slug.

    Returns:
        BusinessContext if found, None if slug not found
    """
    result = await session.execute(select(Business).where(Business.slug == slug))
    business = result.scalar_one_or_none()
    if not business:
        return None
    return BusinessContext.from_business(business, BusinessResolutionSource.URL_SLUG)


async def resolve_business_from_id(
    session: AsyncSession,
    business_id: int,
) -> Optional[BusinessContext]:
    result = await session.execute(select(Business).where(Business.id == business_id))
    business = result.scalar_one_or_none()
    if not business:
        return None
    return BusinessContext.from_business(business, BusinessResolutionSource.BUSINESS_ID)


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

async def get_business_context_from_slug(
    slug: str = Path(..., description="Business URL slug (e.g., 'salon-luna')"),
    session: AsyncSession = Depends(get_session),
) -> BusinessContext:
    """Resolve business context strictly from the booking page slug."""
    ctx = await resolve_business_from_slug(session, slug)
    if not ctx:
        raise NotFound(f"Business not found: {slug}", {"slug": slug})
    logger.debug("Resolved business from slug '%s': business_id=%s", slug, ctx.business_id)
    return ctx


async def get_business_context_from_id(
    business_id: int = Path(..., description="Business database ID"),
    session: AsyncSession = Depends(get_session),
) -> BusinessContext:
    ctx = await resolve_business_from_id(session, business_id)
    if not ctx:
        raise NotFound("Business not found", {"business_id": business_id})
    return ctx
