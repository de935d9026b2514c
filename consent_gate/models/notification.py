"""Notification inbox model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from consent_gate.db.base import Base, TimestampMixin
from consent_gate.models.audit_entry import ActorRole


class NotificationKind(str, Enum):
    REQUEST = "request"
    APPROVAL = "approval"
    DENIAL = "denial"
    EXPIRATION = "expiration"
    REVOCATION = "revocation"


class Notification(Base, TimestampMixin):
    """A message delivered to a patient or provider about a consent."""

    __tablename__ = "notifications"

    recipient_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    recipient_role: Mapped[ActorRole] = mapped_column(String(20), nullable=False)
    kind: Mapped[NotificationKind] = mapped_column(String(20), nullable=False)
    consent_request_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    action_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    action_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Notification {self.kind} -> {self.recipient_role}:{self.recipient_id}>"
