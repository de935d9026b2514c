"""Pydantic schemas for request/response validation."""

from consent_gate.schemas.audit import AuditEntryFilter, AuditEntryRead, AuditSummary
from consent_gate.schemas.consent import (
    ConsentApprove,
    ConsentDecisionReason,
    ConsentRequestCreate,
    ConsentRequestRead,
    ProviderConsentStats,
)
from consent_gate.schemas.notification import MarkAllReadResponse, NotificationRead
from consent_gate.schemas.permission import AccessPermissionRead
from consent_gate.schemas.session import (
    AccessSessionRead,
    AccessSessionStart,
    AccessSessionStartResponse,
    FileAccessGrantRead,
    FileAccessRequest,
    PaymentTransactionRead,
)

__all__ = [
    "AuditEntryRead",
    "AuditEntryFilter",
    "AuditSummary",
    "ConsentRequestCreate",
    "ConsentApprove",
    "ConsentDecisionReason",
    "ConsentRequestRead",
    "ProviderConsentStats",
    "AccessPermissionRead",
    "AccessSessionStart",
    "AccessSessionRead",
    "AccessSessionStartResponse",
    "FileAccessRequest",
    "FileAccessGrantRead",
    "PaymentTransactionRead",
    "NotificationRead",
    "MarkAllReadResponse",
]
