"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from consent_gate.api.v1 import (
    audit,
    consent,
    health,
    notifications,
    payments,
    permissions,
    sessions,
)

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

# Consent requests and decisions
api_router.include_router(
    consent.router,
    prefix="/consent",
    tags=["consent"],
)

# Permissions derived from approved consent
api_router.include_router(
    permissions.router,
    prefix="/permissions",
    tags=["permissions"],
)

# Access sessions and file access
api_router.include_router(
    sessions.router,
    prefix="/sessions",
    tags=["sessions"],
)

# Session payments
api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["payments"],
)

# Notification inbox
api_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["notifications"],
)

# Audit (read-only)
api_router.include_router(
    audit.router,
    prefix="/audit",
    tags=["audit"],
)
