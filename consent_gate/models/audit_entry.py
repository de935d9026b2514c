"""Append-only audit entry model."""

from enum import Enum

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from consent_gate.db.base import Base, TimestampMixin


class AuditEventType(str, Enum):
    """Closed set of auditable events.

    Recording goes through this enum only, so a new event kind has to be
    added here before anything can emit it.
    """

    CONSENT_REQUESTED = "consent_requested"
    CONSENT_GRANTED = "consent_granted"
    CONSENT_DENIED = "consent_denied"
    CONSENT_REVOKED = "consent_revoked"
    CONSENT_EXPIRED = "consent_expired"
    ACCESS_GRANTED = "access_granted"
    ACCESS_DENIED = "access_denied"
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    FILE_VIEWED = "file_viewed"
    FILE_DOWNLOADED = "file_downloaded"
    FILE_EDITED = "file_edited"
    PAYMENT_MADE = "payment_made"
    EMERGENCY_ACCESS = "emergency_access"


class ActorRole(str, Enum):
    """Role of the party performing an action."""

    PATIENT = "patient"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class TargetType(str, Enum):
    PATIENT = "patient"
    FILE = "file"
    CONSENT = "consent"
    SESSION = "session"
    PERMISSION = "permission"
    PAYMENT = "payment"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditEntry(Base, TimestampMixin):
    """Immutable record of one authorization-relevant event.

    IMPORTANT: entries are never updated. The only deletion path is
    explicit retention pruning.
    """

    __tablename__ = "audit_entries"
    __table_args__ = (Index("ix_audit_entries_created_at", "created_at"),)

    event_type: Mapped[AuditEventType] = mapped_column(String(50), nullable=False, index=True)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    actor_role: Mapped[ActorRole] = mapped_column(String(20), nullable=False)
    target_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    target_type: Mapped[TargetType] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    severity: Mapped[Severity] = mapped_column(String(20), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AuditEntry {self.event_type} by {self.actor_role}:{self.actor_id} "
            f"on {self.target_type}:{self.target_id} success={self.success}>"
        )
