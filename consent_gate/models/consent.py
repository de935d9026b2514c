"""Consent request model and its closed vocabularies."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from consent_gate.db.base import Base, PartyPairMixin, TimestampMixin


class AccessLevel(str, Enum):
    """Access level requested by a provider, ordered view < edit < full."""

    VIEW = "view"
    EDIT = "edit"
    FULL = "full"

    @property
    def rank(self) -> int:
        return _ACCESS_LEVEL_RANK[self]

    def covers(self, other: "AccessLevel") -> bool:
        """Check whether this level includes everything ``other`` allows."""
        return self.rank >= AccessLevel(other).rank


_ACCESS_LEVEL_RANK = {AccessLevel.VIEW: 0, AccessLevel.EDIT: 1, AccessLevel.FULL: 2}


class Urgency(str, Enum):
    """Urgency class, drives the patient's response deadline."""

    STANDARD = "standard"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class DataType(str, Enum):
    """Categories of patient data a consent can cover."""

    DEMOGRAPHICS = "demographics"
    MEDICAL_HISTORY = "medical-history"
    MEDICATIONS = "medications"
    ALLERGIES = "allergies"
    LAB_RESULTS = "lab-results"
    IMAGING = "imaging"
    VITAL_SIGNS = "vital-signs"
    VISIT_NOTES = "visit-notes"
    PRESCRIPTIONS = "prescriptions"
    REPORTS = "reports"
    OTHER = "other"


class ConsentStatus(str, Enum):
    """Lifecycle status of a consent request."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"
    REVOKED = "revoked"


TERMINAL_STATUSES = frozenset(
    {ConsentStatus.DENIED, ConsentStatus.EXPIRED, ConsentStatus.REVOKED}
)


def pair_key(provider_id: str, patient_id: str) -> str:
    """Key identifying a (provider, patient) pair."""
    return f"{provider_id}:{patient_id}"


class ConsentRequest(Base, PartyPairMixin, TimestampMixin):
    """A provider's request for time-boxed, scoped access to a patient's data.

    ``pending_pair_key`` is populated only while the request is pending.
    Its unique constraint is the storage-level guarantee that a pair never
    has two pending requests at once.
    """

    __tablename__ = "consent_requests"

    # Requester
    provider_address: Mapped[str] = mapped_column(String(42), nullable=False)
    provider_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Target
    patient_address: Mapped[str] = mapped_column(String(42), nullable=False)

    # Requested scope
    access_level: Mapped[AccessLevel] = mapped_column(String(20), nullable=False)
    data_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    urgency: Mapped[Urgency] = mapped_column(
        String(20), nullable=False, default=Urgency.STANDARD
    )
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    # Lifecycle
    status: Mapped[ConsentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ConsentStatus.PENDING,
        index=True,
    )
    response_deadline: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    pending_pair_key: Mapped[str | None] = mapped_column(
        String(201), nullable=True, unique=True
    )

    # Approved (possibly narrowed) scope
    approved_access_level: Mapped[AccessLevel | None] = mapped_column(
        String(20), nullable=True
    )
    approved_data_types: Mapped[list | None] = mapped_column(JSON, nullable=True)
    approved_duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    conditions: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Decision timestamps and reasons
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    denied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    revocation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # External anchors (filled in once the anchoring call lands)
    anchor_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    decision_anchor_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return (
            f"<ConsentRequest {self.id[:8]}... {self.provider_id}->{self.patient_id} "
            f"{self.status}>"
        )
