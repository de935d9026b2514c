"""Notification schemas."""

from datetime import datetime

from pydantic import BaseModel

from consent_gate.models.notification import NotificationKind


class NotificationRead(BaseModel):
    """Schema for reading notifications."""

    id: str
    kind: NotificationKind
    consent_request_id: str | None
    title: str
    message: str
    action_required: bool
    action_url: str | None
    is_read: bool
    read_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class MarkAllReadResponse(BaseModel):
    updated: int
