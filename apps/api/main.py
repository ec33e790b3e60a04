"""FastAPI application entrypoint for castle hire bookings."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.logging import setup_logging, get_logger
from db.session import init_db
from integrations.google_calendar import CalendarError
from services.booking_service import (
    BookingNotFoundError,
    BookingServiceError,
    BookingValidationFailed,
    CastleNotFoundError,
)
from apps.api.routers import admin, availability, bookings


# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "Starting castle hire bookings",
        extra={"app_name": settings.app_name, "environment": settings.app_env}
    )

    # Initialize database
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down castle hire bookings")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Bouncy castle hire bookings with double-booking protection",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingValidationFailed)
async def booking_validation_failed_handler(request: Request, exc: BookingValidationFailed):
    """Conflicts are 409, field errors alone are 400."""
    status_code = 409 if exc.has_conflicts else 400
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "result": exc.result.to_dict()},
    )


@app.exception_handler(BookingNotFoundError)
@app.exception_handler(CastleNotFoundError)
async def not_found_handler(request: Request, exc: BookingServiceError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(BookingServiceError)
async def booking_service_error_handler(request: Request, exc: BookingServiceError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(CalendarError)
async def calendar_error_handler(request: Request, exc: CalendarError):
    logger.error(f"Calendar error reached the API: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Calendar service unavailable"})


# Include routers
app.include_router(bookings.router, prefix=settings.api_v1_prefix)
app.include_router(availability.router, prefix=settings.api_v1_prefix)
app.include_router(admin.router, prefix=settings.api_v1_prefix)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.app_env,
        "calendar": "enabled" if settings.calendar_enabled else "disabled",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "apps.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
