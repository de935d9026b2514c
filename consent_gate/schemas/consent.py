"""Consent request schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from consent_gate.models.consent import AccessLevel, ConsentStatus, DataType, Urgency


class ConsentRequestCreate(BaseModel):
    """Schema for a provider creating a consent request.

    The provider is taken from the authenticated actor. Range and
    vocabulary checks are repeated by the ledger so non-HTTP callers get
    the same validation.
    """

    patient_id: str = Field(..., min_length=1, max_length=100)
    patient_address: str = Field(..., description="Patient wallet address (0x + 40 hex)")
    provider_address: str = Field(..., description="Provider wallet address (0x + 40 hex)")
    provider_name: str | None = Field(None, max_length=255)
    access_level: AccessLevel
    data_types: list[DataType] = Field(..., min_length=1)
    purpose: str
    duration_days: int
    urgency: Urgency = Urgency.STANDARD
    justification: str | None = None
    metadata: dict[str, Any] | None = None


class ConsentApprove(BaseModel):
    """Schema for a patient approving, optionally narrowing, a request."""

    access_level: AccessLevel | None = None
    data_types: list[DataType] | None = None
    duration_days: int | None = None
    conditions: list[str] = Field(default_factory=list)


class ConsentDecisionReason(BaseModel):
    """Schema for deny and revoke bodies."""

    reason: str | None = Field(None, max_length=1000)


class ConsentRequestRead(BaseModel):
    """Schema for reading consent requests."""

    id: str
    provider_id: str
    provider_name: str | None
    provider_address: str
    patient_id: str
    patient_address: str
    access_level: AccessLevel
    data_types: list[str]
    purpose: str
    urgency: Urgency
    duration_days: int
    justification: str | None
    status: ConsentStatus
    response_deadline: datetime
    approved_access_level: AccessLevel | None
    approved_data_types: list[str] | None
    approved_duration_days: int | None
    conditions: list[str] | None
    approved_at: datetime | None
    denied_at: datetime | None
    revoked_at: datetime | None
    expired_at: datetime | None
    denial_reason: str | None
    revocation_reason: str | None
    anchor_ref: str | None
    decision_anchor_ref: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ProviderConsentStats(BaseModel):
    """Request outcomes for one provider."""

    total_requests: int
    by_status: dict[str, int]
    approval_rate: float
    average_response_hours: float
