"""Access permission materialized from an approved consent request."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from consent_gate.db.base import Base, PartyPairMixin, TimestampMixin
from consent_gate.models.consent import AccessLevel


class AccessPermission(Base, PartyPairMixin, TimestampMixin):
    """The currently effective grant for one approved consent request.

    One row per consent request; re-materializing refreshes the row
    instead of adding another.
    """

    __tablename__ = "access_permissions"

    consent_request_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("consent_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    access_level: Mapped[AccessLevel] = mapped_column(String(20), nullable=False)
    allowed_data_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_accessed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deactivation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<AccessPermission {self.provider_id}->{self.patient_id} "
            f"{self.access_level} active={self.is_active}>"
        )
