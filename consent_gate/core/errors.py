"""Typed failures raised by the access control services.

Every failure carries an ``ErrorKind`` so callers (and the HTTP layer) can
tell a stale-state rejection from an external outage without parsing
messages. Services never raise bare ``Exception`` for an expected outcome.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Failure taxonomy shared by every public operation."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    WRONG_STATE = "wrong_state"
    FORBIDDEN = "forbidden"
    EXPIRED = "expired"
    REVOKED = "revoked"
    PAYMENT_REQUIRED = "payment_required"
    EXTERNAL_DEPENDENCY = "external_dependency"


class AccessControlError(Exception):
    """Base class for all typed access control failures."""

    kind: ErrorKind = ErrorKind.WRONG_STATE
    code: str = "access_control_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# Validation


class InvalidRequestError(AccessControlError):
    """Raised when caller input (a consent scope, an access type) fails validation."""

    kind = ErrorKind.VALIDATION
    code = "invalid_request"


# Conflict


class DuplicatePendingRequestError(AccessControlError):
    """Raised when a pending request already exists for the pair."""

    kind = ErrorKind.CONFLICT
    code = "duplicate_pending_request"


class ScopeWidenedError(AccessControlError):
    """Raised when an approval grants more than was requested."""

    kind = ErrorKind.CONFLICT
    code = "scope_widened"


# Not found / wrong state


class ConsentNotFoundError(AccessControlError):
    kind = ErrorKind.NOT_FOUND
    code = "consent_not_found"


class SessionNotFoundError(AccessControlError):
    kind = ErrorKind.NOT_FOUND
    code = "session_not_found"


class PaymentNotFoundError(AccessControlError):
    kind = ErrorKind.NOT_FOUND
    code = "payment_not_found"


class FileNotFoundInStoreError(AccessControlError):
    kind = ErrorKind.NOT_FOUND
    code = "file_not_found"


class NotPendingError(AccessControlError):
    """Raised when approving or denying a request that is no longer pending."""

    kind = ErrorKind.WRONG_STATE
    code = "not_pending"


class NotApprovedError(AccessControlError):
    """Raised when revoking a request that is not approved."""

    kind = ErrorKind.WRONG_STATE
    code = "not_approved"


class InvalidSourceError(AccessControlError):
    """Raised when materializing a permission from a non-approved request."""

    kind = ErrorKind.WRONG_STATE
    code = "invalid_source"


class NoValidPermissionError(AccessControlError):
    """Raised when no active, unexpired permission exists for the pair."""

    kind = ErrorKind.WRONG_STATE
    code = "no_valid_permission"


class SessionNotActiveError(AccessControlError):
    """Raised when a file is touched through a session that is not active."""

    kind = ErrorKind.WRONG_STATE
    code = "session_not_active"


class PaymentRequiredError(SessionNotActiveError):
    """Raised when a session is still waiting for payment confirmation."""

    kind = ErrorKind.PAYMENT_REQUIRED
    code = "payment_required"


class OutOfScopeError(AccessControlError):
    """Raised when a file category or access type exceeds the permission."""

    kind = ErrorKind.FORBIDDEN
    code = "out_of_scope"


class ForbiddenActorError(AccessControlError):
    """Raised when the caller is not the party entitled to act."""

    kind = ErrorKind.FORBIDDEN
    code = "forbidden_actor"


# Terminal outcomes


class RequestExpiredError(AccessControlError):
    """Raised when a request passed its response deadline."""

    kind = ErrorKind.EXPIRED
    code = "request_expired"


class ConsentRevokedError(NotApprovedError):
    """Raised when acting on a consent the patient has already revoked."""

    kind = ErrorKind.REVOKED
    code = "consent_revoked"


# External dependencies


class ExternalServiceError(AccessControlError):
    """Raised when an anchoring or payment call fails after retrying."""

    kind = ErrorKind.EXTERNAL_DEPENDENCY
    code = "external_service_error"
