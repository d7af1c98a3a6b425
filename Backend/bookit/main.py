import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import get_settings
from .core.db import AsyncSessionLocal, Base, engine
from .core.responses import ErrorCodes, error_response
from .onboarding import router as onboarding_router
from .owner_routes import router as owner_router
from .public_booking import router as public_booking_router
from .recurring import router as recurring_router
from .scheduling.errors import (
    InvalidInput,
    InvalidStatusTransition,
    InvalidTimezone,
    NotFound,
    SchedulingError,
    StorageConflict,
    StorageUnavailable,
)
from .seed import seed_initial_data


settings = get_settings()
app = FastAPI(title="BookIt Booking Backend")
logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 5


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(onboarding_router, tags=["onboarding"])
app.include_router(public_booking_router)
app.include_router(owner_router)
app.include_router(recurring_router)


def status_for(exc: SchedulingError) -> int:
    """HTTP status for an engine/booking error kind."""
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, (InvalidStatusTransition, StorageConflict)):
        return 409
    if isinstance(exc, (InvalidInput, InvalidTimezone)):
        return 422
    if isinstance(exc, StorageUnavailable):
        return 503
    return 500


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    status_code = status_for(exc)
    headers = None
    if isinstance(exc, StorageUnavailable):
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)}
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=status_code,
        content=error_response(exc.code, exc.message, exc.details or None),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=error_response(
            ErrorCodes.VALIDATION_ERROR,
            "Request validation failed",
            {"errors": jsonable_encoder(exc.errors())},
        ),
    )


@app.on_event("startup")
async def on_startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if settings.seed_demo_data:
        async with AsyncSessionLocal() as session:
            await seed_initial_data(session)


@app.get("/health")
async def healthcheck():
    return {"ok": True}
