"""Access permission schemas."""

from datetime import datetime

from pydantic import BaseModel

from consent_gate.models.consent import AccessLevel


class AccessPermissionRead(BaseModel):
    """Schema for reading access permissions."""

    id: str
    consent_request_id: str
    provider_id: str
    patient_id: str
    access_level: AccessLevel
    allowed_data_types: list[str]
    granted_at: datetime
    expires_at: datetime
    access_count: int
    last_accessed_at: datetime | None
    is_active: bool
    deactivated_at: datetime | None
    deactivation_reason: str | None

    model_config = {"from_attributes": True}
