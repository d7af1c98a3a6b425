"""
Business onboarding endpoints.

Creating a business establishes the tenant, so these endpoints DO NOT
require business context resolution.
"""
import logging
import re
import unicodedata

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookit.core.config import get_settings
from bookit.core.db import get_session
from bookit.models import Business
from bookit.scheduling.errors import StorageConflict
from bookit.scheduling.repository import commit_or_raise
from bookit.scheduling.timezones import resolve_zone

logger = logging.getLogger(__name__)

router = APIRouter()


# === Request/Response Models ===

class CreateBusinessRequest(BaseModel):
    """Request to create a new business."""
    name: str = Field(..., min_length=1, max_length=100)
    timezone: str | None = Field(None, description="IANA timezone, defaults to DEFAULT_TIMEZONE")
    location: str | None = Field(None, max_length=255)
    slug: str | None = Field(None, max_length=100)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Business name cannot be empty or whitespace")
        return v.strip()


class BusinessResponse(BaseModel):
    """Public business information."""
    id: int
    name: str
    slug: str
    timezone: str
    location: str | None

    model_config = {"from_attributes": True}


# === Helper Functions ===

def generate_slug(name: str) -> str:
    """
    Generate a URL-safe slug from a business name.

    Examples:
        "Salón Luna" -> "salon-luna"
        "Nails & Spa!!!" -> "nails-spa"
    """
    normalized = unicodedata.normalize("NFKD", name)
    ascii_str = normalized.encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_str.lower()).strip("-")
    return slug[:100] or "business"


async def ensure_unique_slug(db: AsyncSession, base_slug: str) -> str:
    """Append -2, -3, ... to ``base_slug`` until no business uses it."""
    candidate = base_slug
    counter = 2

    while True:
        result = await db.execute(select(Business.id).where(Business.slug == candidate))
        if result.scalar_one_or_none() is None:
            return candidate

        candidate = f"{base_slug}-{counter}"
        counter += 1

        if counter > 1000:
            raise StorageConflict(
                "Unable to generate unique slug after 1000 attempts", {"slug": base_slug}
            )


async def create_business(
    db: AsyncSession,
    name: str,
    timezone: str | None = None,
    location: str | None = None,
    slug: str | None = None,
) -> Business:
    tz_name = timezone or get_settings().default_timezone
    resolve_zone(tz_name)

    base_slug = generate_slug(slug or name)
    business = Business(
        name=name,
        slug=await ensure_unique_slug(db, base_slug),
        timezone=tz_name,
        location=location,
    )
    db.add(business)
    await commit_or_raise(db)
    await db.refresh(business)

    logger.info("Business %s created slug=%s timezone=%s", business.id, business.slug, tz_name)
    return business


# === Endpoints ===

@router.post("/businesses", response_model=BusinessResponse, status_code=201)
async def create_business_endpoint(
    request: CreateBusinessRequest,
    db: AsyncSession = Depends(get_session),
):
    """
    Create a new business (global onboarding endpoint).

    Error Codes:
    - 422: Invalid input or unknown IANA timezone
    """
    business = await create_business(
        db,
        name=request.name,
        timezone=request.timezone,
        location=request.location,
        slug=request.slug,
    )
    return BusinessResponse.model_validate(business)
