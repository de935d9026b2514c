"""Outbox of consent decisions awaiting an external anchor."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from consent_gate.db.base import Base, TimestampMixin


class AnchorEvent(str, Enum):
    """Consent lifecycle events recorded in the external ledger."""

    CONSENT_CREATED = "consent_created"
    APPROVED = "approved"
    REVOKED = "revoked"


class AnchorStatus(str, Enum):
    PENDING = "pending"
    ANCHORED = "anchored"
    FAILED = "failed"


class AnchorRecord(Base, TimestampMixin):
    """One logical anchoring event.

    The row is written in the same transaction as the state change it
    anchors. ``idempotency_key`` is passed to the anchoring service so a
    retried call cannot produce a second anchor.
    """

    __tablename__ = "anchor_records"

    consent_request_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("consent_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event: Mapped[AnchorEvent] = mapped_column(String(30), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[AnchorStatus] = mapped_column(
        String(20), nullable=False, default=AnchorStatus.PENDING, index=True
    )
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    anchored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<AnchorRecord {self.event} {self.status}>"
