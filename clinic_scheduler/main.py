import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_scheduler.api.routes import appointments, availability
from clinic_scheduler.api.schemas.appointment import ConflictDetail
from clinic_scheduler.core.config import _ENV_FILE, settings
from clinic_scheduler.core.db import init_db
from clinic_scheduler.core.errors import (
    ConcurrencyError,
    ConflictError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    logger.info(
        "Appointment durations %d-%d min, default slot granularity %d min",
        settings.min_duration_minutes,
        settings.max_duration_minutes,
        settings.default_granularity_minutes,
    )
    if settings.create_tables_on_startup:
        await init_db()
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="Clinic Scheduler API",
        description="Appointment booking, availability and lifecycle",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    app.include_router(appointments.router, prefix="/api/v1")
    app.include_router(availability.router, prefix="/api/v1")

    app.add_exception_handler(SchedulingError, scheduling_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


async def scheduling_exception_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Map engine failures onto HTTP status codes."""
    if isinstance(exc, ConflictError):
        body = ConflictDetail(
            detail=str(exc),
            conflicting_appointment_id=exc.appointment_id,
            conflicting_start_utc=exc.start_utc,
            conflicting_end_utc=exc.end_utc,
        )
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body.model_dump(mode="json"))
    if isinstance(exc, NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})
    if isinstance(exc, ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})
    if isinstance(exc, ConcurrencyError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc)},
            headers={"Retry-After": "1"},
        )
    logger.exception("Unhandled scheduling error: %s", exc)
    return JSONResponse(status_code=500, content={"detail": f"{type(exc).__name__}: {exc}"})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return actual error in JSON instead of a bare 500 page."""
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(status_code=500, content={"detail": f"{type(exc).__name__}: {exc}"})


app = create_app()
