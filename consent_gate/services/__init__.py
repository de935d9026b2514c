"""Business logic services."""

from consent_gate.services.access_sessions import (
    AccessSessionManager,
    FileAccessGrant,
    SessionStart,
)
from consent_gate.services.anchoring import AnchorReconciler, LedgerAnchoringService
from consent_gate.services.audit import AuditRecorder, AuditService, audit_health
from consent_gate.services.consent_ledger import (
    ApprovedScope,
    ConsentLedger,
    ConsentScope,
    PatientRef,
    ProviderRef,
)
from consent_gate.services.gateway import AccessControlGateway
from consent_gate.services.payment_gate import PaymentGate
from consent_gate.services.permissions import PermissionDeriver

__all__ = [
    "AccessControlGateway",
    "ConsentLedger",
    "ProviderRef",
    "PatientRef",
    "ConsentScope",
    "ApprovedScope",
    "PermissionDeriver",
    "PaymentGate",
    "AccessSessionManager",
    "SessionStart",
    "FileAccessGrant",
    "AuditRecorder",
    "AuditService",
    "audit_health",
    "AnchorReconciler",
    "LedgerAnchoringService",
]
