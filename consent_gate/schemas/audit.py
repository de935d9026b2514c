"""Audit entry schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from consent_gate.models.audit_entry import ActorRole, AuditEventType, Severity, TargetType


class AuditEntryRead(BaseModel):
    """Schema for reading audit entries."""

    id: str
    event_type: AuditEventType
    actor_id: str
    actor_role: ActorRole
    target_id: str
    target_type: TargetType
    action: str
    details: dict[str, Any] | None
    success: bool
    failure_reason: str | None
    severity: Severity
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditEntryFilter(BaseModel):
    """Filter parameters for querying audit entries."""

    actor_id: str | None = None
    actor_role: ActorRole | None = None
    target_id: str | None = None
    target_type: TargetType | None = None
    event_type: AuditEventType | None = None
    success: bool | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int = Field(default=100, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class AuditSummary(BaseModel):
    """Aggregate view over a filtered set of audit entries."""

    total_entries: int
    by_event_type: dict[str, int]
    by_severity: dict[str, int]
    success_rate: float
    first_entry_at: datetime | None = None
    last_entry_at: datetime | None = None
