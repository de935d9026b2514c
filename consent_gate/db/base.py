"""SQLAlchemy 2.0 declarative base and shared column mixins."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, MetaData, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, registry

from consent_gate.utils.time import utc_now

# Naming convention for constraints (important for migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

_mapper_registry = registry(metadata=MetaData(naming_convention=convention))

# Party ids are opaque strings issued by the identity layer
PARTY_ID_LENGTH = 100


class Base(DeclarativeBase):
    """Base class for all models. Every table names itself via ``__tablename__``."""

    registry = _mapper_registry
    metadata = _mapper_registry.metadata

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps (UTC)."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        default=None,
        onupdate=utc_now,
        nullable=True,
    )


class PartyPairMixin:
    """Rows scoped to one provider/patient pair.

    Consent requests, permissions and sessions are all looked up by the
    pair; both sides are indexed.
    """

    provider_id: Mapped[str] = mapped_column(
        String(PARTY_ID_LENGTH), nullable=False, index=True
    )
    patient_id: Mapped[str] = mapped_column(
        String(PARTY_ID_LENGTH), nullable=False, index=True
    )

    @property
    def pair(self) -> tuple[str, str]:
        return self.provider_id, self.patient_id
