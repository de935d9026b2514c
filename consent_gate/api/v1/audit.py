"""Audit entry endpoints.

IMPORTANT: This module intentionally provides READ-ONLY access to audit entries.
Entries are written only by AuditRecorder inside the access control services.
"""

from datetime import datetime

from fastapi import APIRouter, status

from consent_gate.api.deps import CurrentAdmin, DbSession
from consent_gate.models.audit_entry import ActorRole, AuditEventType, TargetType
from consent_gate.schemas.audit import AuditEntryFilter, AuditEntryRead, AuditSummary
from consent_gate.services.audit import AuditService

router = APIRouter()


@router.get(
    "/entries",
    response_model=list[AuditEntryRead],
    status_code=status.HTTP_200_OK,
    summary="List audit entries",
    description="Query audit entries with optional filters (read-only)",
)
async def list_audit_entries(
    session: DbSession,
    admin: CurrentAdmin,
    actor_id: str | None = None,
    actor_role: ActorRole | None = None,
    target_id: str | None = None,
    target_type: TargetType | None = None,
    event_type: AuditEventType | None = None,
    success: bool | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[AuditEntryRead]:
    """Query audit entries, newest first.

    Args:
        actor_id: Filter by actor
        actor_role: Filter by actor role
        target_id: Filter by affected entity
        target_type: Filter by affected entity type
        event_type: Filter by event kind
        success: Filter by outcome
        start: Earliest creation time
        end: Latest creation time
        limit: Maximum results (default 100, max 500)
        offset: Results to skip
    """
    filters = AuditEntryFilter(
        actor_id=actor_id,
        actor_role=actor_role,
        target_id=target_id,
        target_type=target_type,
        event_type=event_type,
        success=success,
        start=start,
        end=end,
        limit=min(max(limit, 1), 500),
        offset=max(offset, 0),
    )

    entries = await AuditService(session).query(filters)
    return [AuditEntryRead.model_validate(e) for e in entries]


@router.get(
    "/entries/{target_type}/{target_id}",
    response_model=list[AuditEntryRead],
    status_code=status.HTTP_200_OK,
    summary="Get target audit history",
)
async def get_target_history(
    target_type: TargetType,
    target_id: str,
    session: DbSession,
    admin: CurrentAdmin,
    limit: int = 100,
) -> list[AuditEntryRead]:
    """Get audit history for one consent, session, file, payment or patient."""
    entries = await AuditService(session).get_target_history(
        target_type=target_type,
        target_id=target_id,
        limit=min(max(limit, 1), 500),
    )
    return [AuditEntryRead.model_validate(e) for e in entries]


@router.get(
    "/summary",
    response_model=AuditSummary,
    status_code=status.HTTP_200_OK,
    summary="Summarize audit entries",
)
async def summarize_audit_entries(
    session: DbSession,
    admin: CurrentAdmin,
    actor_id: str | None = None,
    event_type: AuditEventType | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> AuditSummary:
    """Counts by event type and severity, plus success rate."""
    filters = AuditEntryFilter(actor_id=actor_id, event_type=event_type, start=start, end=end)
    return await AuditService(session).summarize(filters)


# NOTE: No POST, PUT, PATCH, or DELETE endpoints are provided.
# Retention pruning runs as an explicit job, never through the API.
