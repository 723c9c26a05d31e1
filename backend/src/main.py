# pyright: reportMissingTypeStubs=false
"""
Clinic Queue Backend API

A FastAPI application providing the appointment token lifecycle and the
patient wallet refund ledger for doctor consultation sessions.

Features:
- Schedules with sequential per-schedule token allocation
- Appointment status state machine for the doctor's desk
- Exactly-once refunds into an append-only wallet ledger
- PostgreSQL database with SQLAlchemy ORM
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import appointments, queue, reports, schedules, wallets
from core.constants import CORS_ORIGINS
from services.errors import BookingError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)
logger.info("🏥 Clinic Queue API starting...")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("🚀 Starting Clinic Queue Backend API")
    yield
    logger.info("🛑 Shutting down Clinic Queue Backend API")


# Create FastAPI application
app = FastAPI(
    title="Clinic Queue Backend",
    description="Appointment tokens, queue progress and wallet refunds for clinics",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan,
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
ERROR_RESPONSES = {
    400: {"description": "Bad request"},
    401: {"description": "Unauthorized"},
    403: {"description": "Forbidden"},
    404: {"description": "Resource not found"},
    409: {"description": "Conflict"},
    500: {"description": "Internal server error"},
}

app.include_router(schedules.router, prefix="/api/schedules", tags=["schedules"], responses=ERROR_RESPONSES)
app.include_router(appointments.router, prefix="/api", tags=["appointments"], responses=ERROR_RESPONSES)
app.include_router(wallets.router, prefix="/api/patients", tags=["wallets"], responses=ERROR_RESPONSES)
app.include_router(
    queue.router,
    prefix="/api/doctors",
    tags=["queue"],
    responses={401: ERROR_RESPONSES[401], 500: ERROR_RESPONSES[500]},
)
app.include_router(
    reports.router,
    prefix="/api/reports",
    tags=["reports"],
    responses={code: ERROR_RESPONSES[code] for code in (400, 401, 403, 500)},
)


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API information."""
    return {
        "message": "Clinic Queue Backend API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


# Global exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Translate domain errors into their HTTP status and machine code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    else:
        logger.warning(f"{exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "type": exc.code},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle ValueError exceptions."""
    logger.warning(f"ValueError: {exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "type": "validation_error"},
    )

