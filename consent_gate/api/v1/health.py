"""Health check endpoints."""

import logging
from datetime import datetime

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from consent_gate.api.deps import DbSession
from consent_gate.services.audit import audit_health

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


class ReadinessResponse(BaseModel):
    """Readiness response including audit sink degradation."""

    status: str
    database: str
    audit_degraded: bool
    audit_failures: int
    last_audit_failure_at: datetime | None = None
    last_audit_error: str | None = None


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Returns service health status",
)
async def health_check() -> HealthResponse:
    """Check if the service is healthy.

    Returns:
        Health status response
    """
    return HealthResponse(status="ok")


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
    description="Returns database reachability and audit sink health for k8s probes",
)
async def readiness_check(session: DbSession) -> ReadinessResponse | JSONResponse:
    """Check if the service is ready to accept requests.

    A degraded audit sink is reported but does not fail readiness;
    an unreachable database does.
    """
    database = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning(f"Readiness database check failed: {exc!r}")
        database = "unavailable"

    audit = audit_health.snapshot()
    body = ReadinessResponse(
        status="ok" if database == "ok" and not audit["audit_degraded"] else "degraded",
        database=database,
        **audit,
    )
    if database != "ok":
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=body.model_dump(mode="json"),
        )
    return body
