"""Access session and payment schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from consent_gate.models.access_session import FileAccessType, SessionState
from consent_gate.models.payment import PaymentStatus


class AccessSessionStart(BaseModel):
    """Schema for a provider starting a session."""

    patient_id: str = Field(..., min_length=1, max_length=100)


class FileAccessRequest(BaseModel):
    access_type: FileAccessType = FileAccessType.VIEW


class PaymentTransactionRead(BaseModel):
    """Schema for reading payment transactions."""

    id: str
    session_id: str
    permission_id: str
    payer_id: str
    payee_id: str
    amount: int
    currency: str
    status: PaymentStatus
    reference: str
    external_tx_ref: str | None
    confirmed_at: datetime | None
    failure_reason: str | None
    attempts: int
    created_at: datetime

    model_config = {"from_attributes": True}


class AccessSessionRead(BaseModel):
    """Schema for reading access sessions."""

    id: str
    permission_id: str
    provider_id: str
    patient_id: str
    state: SessionState
    started_at: datetime
    activated_at: datetime | None
    last_activity_at: datetime
    ended_at: datetime | None
    end_reason: str | None
    files_accessed: list[dict[str, Any]]
    access_count: int = 0

    model_config = {"from_attributes": True}


class AccessSessionStartResponse(BaseModel):
    """Session plus the payment it is waiting on, if any."""

    session: AccessSessionRead
    payment_required: bool
    payment: PaymentTransactionRead | None = None


class FileAccessGrantRead(BaseModel):
    """What a provider receives for a permitted file access."""

    session_id: str
    file_id: str
    category: str
    access_type: FileAccessType
    handle_ref: str
    is_encrypted: bool
    access_count: int

    model_config = {"from_attributes": True}
