"""Contracts for the external systems this service depends on.

Each collaborator is an abstract base class; default implementations live
next to the code that uses them. Outbound calls to the anchoring and
payment services go through ``call_with_retry``.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from consent_gate.core.config import settings
from consent_gate.core.errors import AccessControlError, ExternalServiceError
from consent_gate.models.audit_entry import ActorRole
from consent_gate.models.consent import ConsentRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExternalPaymentStatus(str, Enum):
    """Status reported by the payment service."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ProviderTier(str, Enum):
    """Billing tier of a provider. Staked providers have pre-paid access."""

    STANDARD = "standard"
    STAKED = "staked"


@dataclass(frozen=True)
class PaymentSubmission:
    status: ExternalPaymentStatus
    tx_ref: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class PaymentVerification:
    status: ExternalPaymentStatus
    failure_reason: str | None = None


@dataclass(frozen=True)
class ResolvedFile:
    """What the file store tells us about a file. Never the bytes."""

    file_id: str
    patient_id: str
    category: str
    handle_ref: str
    is_encrypted: bool = True


@dataclass(frozen=True)
class NotificationMessage:
    kind: str
    title: str
    body: str
    consent_request_id: str | None = None
    action_required: bool = False
    action_url: str | None = None


class AnchoringService(ABC):
    """Tamper-evident external record of consent decisions.

    Implementations must treat ``idempotency_key`` as the identity of the
    logical event: calling twice with the same key returns the same
    reference.
    """

    @abstractmethod
    async def anchor_consent(self, request: ConsentRequest, idempotency_key: str) -> str:
        pass

    @abstractmethod
    async def anchor_approval(self, request_id: str, idempotency_key: str) -> str:
        pass

    @abstractmethod
    async def anchor_revocation(
        self, request_id: str, reason: str, idempotency_key: str
    ) -> str:
        pass


class PaymentService(ABC):
    """Payment ledger (on-chain or off-chain)."""

    @abstractmethod
    async def submit_payment(
        self, payer: str, payee: str, amount: int, reference: str
    ) -> PaymentSubmission:
        pass

    @abstractmethod
    async def verify_payment(self, tx_ref: str) -> PaymentVerification:
        pass


class FileStore(ABC):
    """Lookup of file metadata for scope checks."""

    @abstractmethod
    async def resolve(self, file_id: str) -> ResolvedFile | None:
        pass


class NotificationSink(ABC):
    """Fire-and-forget delivery of messages to patients and providers."""

    @abstractmethod
    async def deliver(
        self, recipient_id: str, recipient_role: ActorRole, message: NotificationMessage
    ) -> None:
        pass


class ProviderDirectory(ABC):
    """Source of provider staking/verification status."""

    @abstractmethod
    async def get_tier(self, provider_id: str) -> ProviderTier:
        pass


async def call_with_retry(
    operation: str,
    func: Callable[[], Awaitable[T]],
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """Call an external collaborator with a bounded retry.

    Args:
        operation: Name used in logs and in the raised error
        func: Zero-argument coroutine factory performing the call
        attempts: Total attempts including the first (default from settings)
        backoff_seconds: Base delay, growing by itself after each failure

    Returns:
        Whatever ``func`` returns

    Raises:
        ExternalServiceError: If every attempt failed
    """
    attempts = max(attempts if attempts is not None else settings.external_retry_attempts, 1)
    backoff = (
        backoff_seconds
        if backoff_seconds is not None
        else settings.external_retry_backoff_seconds
    )

    def log_failure(retry_state: RetryCallState) -> None:
        logger.warning(
            f"{operation} failed (attempt {retry_state.attempt_number}/{attempts}): "
            f"{retry_state.outcome.exception()!r}"
        )

    # Our own errors are decisions, not transient failures
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_incrementing(start=backoff, increment=backoff),
        retry=retry_if_not_exception_type(AccessControlError),
        after=log_failure,
    )
    try:
        async for attempt in retrying:
            with attempt:
                result = await func()
    except RetryError as exc:
        last_error = exc.last_attempt.exception()
        raise ExternalServiceError(
            f"{operation} failed after {attempts} attempts",
            operation=operation,
            error=str(last_error),
        ) from last_error
    return result
