"""Access session model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from consent_gate.db.base import Base, PartyPairMixin, TimestampMixin
from consent_gate.models.consent import AccessLevel


class SessionState(str, Enum):
    """Access session states.

    pending_payment -> active -> ended
    active -> ended_by_revocation
    pending_payment -> ended (abandoned)
    """

    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    ENDED = "ended"
    ENDED_BY_REVOCATION = "ended_by_revocation"


OPEN_SESSION_STATES = frozenset({SessionState.PENDING_PAYMENT, SessionState.ACTIVE})


class FileAccessType(str, Enum):
    """Kinds of file touch a provider can make."""

    VIEW = "view"
    DOWNLOAD = "download"
    EDIT = "edit"

    @property
    def required_level(self) -> AccessLevel:
        """Lowest permission level allowing this access type."""
        if self is FileAccessType.EDIT:
            return AccessLevel.EDIT
        return AccessLevel.VIEW


class AccessSession(Base, PartyPairMixin, TimestampMixin):
    """A bounded window of active use of one permission."""

    __tablename__ = "access_sessions"

    permission_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("access_permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    state: Mapped[SessionState] = mapped_column(String(30), nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    files_accessed: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def is_open(self) -> bool:
        return self.state in OPEN_SESSION_STATES

    def __repr__(self) -> str:
        return f"<AccessSession {self.id[:8]}... {self.state}>"
