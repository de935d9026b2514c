"""Database models for the consent gate."""

from consent_gate.models.access_session import (
    AccessSession,
    FileAccessType,
    OPEN_SESSION_STATES,
    SessionState,
)
from consent_gate.models.anchor import AnchorEvent, AnchorRecord, AnchorStatus
from consent_gate.models.audit_entry import (
    ActorRole,
    AuditEntry,
    AuditEventType,
    Severity,
    TargetType,
)
from consent_gate.models.consent import (
    AccessLevel,
    ConsentRequest,
    ConsentStatus,
    DataType,
    TERMINAL_STATUSES,
    Urgency,
)
from consent_gate.models.medical_file import MedicalFile
from consent_gate.models.notification import Notification, NotificationKind
from consent_gate.models.payment import PaymentStatus, PaymentTransaction
from consent_gate.models.permission import AccessPermission

__all__ = [
    # Consent
    "ConsentRequest",
    "ConsentStatus",
    "AccessLevel",
    "DataType",
    "Urgency",
    "TERMINAL_STATUSES",
    # Permission
    "AccessPermission",
    # Sessions
    "AccessSession",
    "SessionState",
    "FileAccessType",
    "OPEN_SESSION_STATES",
    # Payments
    "PaymentTransaction",
    "PaymentStatus",
    # Anchoring
    "AnchorRecord",
    "AnchorEvent",
    "AnchorStatus",
    # Notifications
    "Notification",
    "NotificationKind",
    # Files
    "MedicalFile",
    # Audit
    "AuditEntry",
    "AuditEventType",
    "ActorRole",
    "TargetType",
    "Severity",
]
