"""Payment transaction model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from consent_gate.db.base import Base, TimestampMixin


class PaymentStatus(str, Enum):
    """Status of a payment obligation."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PaymentTransaction(Base, TimestampMixin):
    """A payment owed by a provider to a patient for one session.

    ``reference`` is our own idempotency reference handed to the payment
    service; ``external_tx_ref`` is the ledger's transaction id.
    """

    __tablename__ = "payment_transactions"

    session_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("access_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("access_permissions.id", ondelete="CASCADE"),
        nullable=False,
    )
    payer_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    payee_id: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="ETH")
    status: Mapped[PaymentStatus] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING, index=True
    )
    reference: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    external_tx_ref: Mapped[str | None] = mapped_column(
        String(128), nullable=True, unique=True
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<PaymentTransaction {self.reference} {self.amount} {self.status}>"
