"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from consent_gate.api.deps import get_anchoring_service
from consent_gate.api.v1.router import api_router
from consent_gate.core.config import settings
from consent_gate.core.errors import AccessControlError, ErrorKind
from consent_gate.core.logging import setup_logging
from consent_gate.db.init_db import init_db
from consent_gate.db.session import AsyncSessionLocal
from consent_gate.tasks.expiry_sweep import periodic_sweep

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


ERROR_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.WRONG_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.EXPIRED: status.HTTP_410_GONE,
    ErrorKind.REVOKED: status.HTTP_410_GONE,
    ErrorKind.PAYMENT_REQUIRED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.EXTERNAL_DEPENDENCY: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    logger.info(f"Starting Consent Gate API (env={settings.env})")

    if settings.init_db_on_startup and settings.is_dev:
        logger.info("Initializing database...")
        await init_db()

    sweep_task = None
    stop_event = asyncio.Event()
    if settings.sweep_enabled and not settings.is_test:
        sweep_task = asyncio.create_task(
            periodic_sweep(
                AsyncSessionLocal,
                stop_event=stop_event,
                anchoring=get_anchoring_service(),
            )
        )

    yield

    # Shutdown
    if sweep_task is not None:
        stop_event.set()
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task
    logger.info("Shutting down Consent Gate API")


# Create FastAPI application
app = FastAPI(
    title="Consent Gate API",
    description="Patient consent and gated access to medical records",
    version="0.1.0",
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
    openapi_url="/openapi.json" if settings.is_dev else None,
    lifespan=lifespan,
)

# CORS middleware (configure appropriately for production)
if settings.is_dev:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:3001"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(AccessControlError)
async def access_control_exception_handler(
    request: Request, exc: AccessControlError
) -> JSONResponse:
    """Map typed access control failures to HTTP responses."""
    status_code = ERROR_STATUS.get(exc.kind, status.HTTP_409_CONFLICT)
    if exc.kind == ErrorKind.EXTERNAL_DEPENDENCY:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    if settings.is_prod:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


# Include API router
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/", include_in_schema=False)
async def root() -> dict:
    """Root endpoint redirect to docs."""
    return {
        "service": "Consent Gate API",
        "version": "0.1.0",
        "docs": "/docs" if settings.is_dev else "Disabled in production",
    }
