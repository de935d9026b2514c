"""Payment gate: pricing, payment obligations and session activation.

A session that owes money stays in ``pending_payment`` until a payment
confirmation is verified with the payment service. Confirmation re-reads
the permission, so a revocation that lands while payment is in flight
leaves the session closed.
"""

import logging
from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from consent_gate.core.config import settings
from consent_gate.core.errors import ExternalServiceError, PaymentNotFoundError
from consent_gate.models.access_session import AccessSession, OPEN_SESSION_STATES, SessionState
from consent_gate.models.audit_entry import ActorRole, AuditEventType, TargetType
from consent_gate.models.consent import AccessLevel
from consent_gate.models.payment import PaymentStatus, PaymentTransaction
from consent_gate.models.permission import AccessPermission
from consent_gate.services.audit import AuditRecorder
from consent_gate.services.collaborators import (
    ExternalPaymentStatus,
    PaymentService,
    ProviderDirectory,
    ProviderTier,
    call_with_retry,
)
from consent_gate.services.permissions import PermissionDeriver, is_valid
from consent_gate.utils.time import utc_now

logger = logging.getLogger(__name__)


# Fee multiplier per access level
LEVEL_MULTIPLIER = {
    AccessLevel.VIEW: 1,
    AccessLevel.EDIT: 2,
    AccessLevel.FULL: 3,
}


@dataclass(frozen=True)
class AccessContext:
    """What a quote is priced on."""

    provider_tier: ProviderTier
    access_level: AccessLevel
    data_types: tuple[str, ...] = ()


def calculate_fee(
    context: AccessContext,
    base_fee: int | None = None,
    sensitive_data_types: frozenset[str] | None = None,
) -> int:
    """Price one session's access.

    Staked providers have pre-paid and owe nothing. Otherwise the base fee
    scales with the access level and doubles when any sensitive data type
    is covered.
    """
    if context.provider_tier == ProviderTier.STAKED:
        return 0

    base = settings.base_access_fee if base_fee is None else base_fee
    sensitive = (
        frozenset(settings.sensitive_data_types)
        if sensitive_data_types is None
        else sensitive_data_types
    )

    fee = base * LEVEL_MULTIPLIER[AccessLevel(context.access_level)]
    if sensitive.intersection(context.data_types):
        fee *= 2
    return fee


class StaticProviderDirectory(ProviderDirectory):
    """Provider tiers from configuration."""

    def __init__(self, staked_provider_ids: set[str] | None = None) -> None:
        self.staked_provider_ids = (
            set(settings.staked_provider_ids)
            if staked_provider_ids is None
            else set(staked_provider_ids)
        )

    async def get_tier(self, provider_id: str) -> ProviderTier:
        if provider_id in self.staked_provider_ids:
            return ProviderTier.STAKED
        return ProviderTier.STANDARD


class PaymentGate:
    """Decides whether access must be paid for and records payments."""

    def __init__(
        self,
        session: AsyncSession,
        payment_service: PaymentService,
        directory: ProviderDirectory,
        permissions: PermissionDeriver,
        audit: AuditRecorder,
    ) -> None:
        self.session = session
        self.payment_service = payment_service
        self.directory = directory
        self.permissions = permissions
        self.audit = audit

    def quote(self, permission: AccessPermission, context: AccessContext) -> int:
        """Amount owed for using ``permission`` in ``context``."""
        return calculate_fee(context)

    async def context_for(self, permission: AccessPermission) -> AccessContext:
        tier = await self.directory.get_tier(permission.provider_id)
        return AccessContext(
            provider_tier=tier,
            access_level=AccessLevel(permission.access_level),
            data_types=tuple(permission.allowed_data_types),
        )

    async def quote_for(self, permission: AccessPermission) -> int:
        """Quote with the provider's current tier."""
        return self.quote(permission, await self.context_for(permission))

    async def require_payment(
        self, access_session: AccessSession, permission: AccessPermission
    ) -> PaymentTransaction | None:
        """Create (or reuse) the pending payment a session must clear.

        Returns:
            The pending transaction, or None if nothing is owed. The caller
            keeps the session inert while a transaction is returned.
        """
        latest = await self.latest_for_session(access_session.id)
        if latest is not None and latest.status == PaymentStatus.CONFIRMED:
            return None

        amount = await self.quote_for(permission)
        if amount <= 0:
            return None

        if latest is not None and latest.status == PaymentStatus.PENDING:
            return latest

        transaction = PaymentTransaction(
            session_id=access_session.id,
            permission_id=permission.id,
            payer_id=permission.provider_id,
            payee_id=permission.patient_id,
            amount=amount,
            currency=settings.payment_currency,
            status=PaymentStatus.PENDING,
            reference=f"pay-{uuid4().hex}",
            attempts=0,
        )
        self.session.add(transaction)
        await self.session.flush()

        try:
            await self._submit(transaction)
        except ExternalServiceError as exc:
            # Left pending without an external reference; confirm resubmits
            logger.warning(
                f"Payment submission for {transaction.reference} deferred: {exc.message}",
                extra={"session_id": access_session.id},
            )
        return transaction

    async def _submit(self, transaction: PaymentTransaction) -> None:
        transaction.attempts += 1
        submission = await call_with_retry(
            "submit_payment",
            lambda: self.payment_service.submit_payment(
                transaction.payer_id,
                transaction.payee_id,
                int(transaction.amount),
                transaction.reference,
            ),
        )
        transaction.external_tx_ref = submission.tx_ref
        if submission.status == ExternalPaymentStatus.FAILED:
            transaction.status = PaymentStatus.FAILED
            transaction.failure_reason = submission.failure_reason or "Payment rejected"
        await self.session.flush()

    async def confirm_payment(self, transaction_ref: str) -> PaymentTransaction:
        """Verify a payment and, on success, activate its session.

        Accepts either our reference or the external transaction id.
        Confirming an already confirmed payment returns it unchanged.

        Raises:
            PaymentNotFoundError: If the reference is unknown
            ExternalServiceError: If the payment service stays unreachable
        """
        transaction = await self.get_transaction(transaction_ref)
        if transaction is None:
            raise PaymentNotFoundError(
                "Payment transaction not found", transaction_ref=transaction_ref
            )

        if transaction.status == PaymentStatus.CONFIRMED:
            return transaction

        try:
            if transaction.external_tx_ref is None:
                await self._submit(transaction)
            tx_ref = transaction.external_tx_ref
            verification = await call_with_retry(
                "verify_payment", lambda: self.payment_service.verify_payment(tx_ref)
            )
        except ExternalServiceError:
            await self.session.commit()
            raise

        if verification.status == ExternalPaymentStatus.PENDING:
            await self.session.commit()
            return transaction

        now = utc_now()
        if verification.status == ExternalPaymentStatus.CONFIRMED:
            values = {
                "status": PaymentStatus.CONFIRMED,
                "confirmed_at": now,
                "failure_reason": None,
            }
        else:
            values = {
                "status": PaymentStatus.FAILED,
                "failure_reason": verification.failure_reason or "Payment not confirmed",
            }

        result = await self.session.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == transaction.id)
            .where(PaymentTransaction.status.in_([PaymentStatus.PENDING, PaymentStatus.FAILED]))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # A concurrent confirmation won; report its outcome
            await self.session.commit()
            await self.session.refresh(transaction)
            return transaction

        activated = False
        if values["status"] == PaymentStatus.CONFIRMED:
            activated = await self._activate_session(transaction.session_id, transaction.permission_id)

        await self.session.commit()
        await self.session.refresh(transaction)

        confirmed = transaction.status == PaymentStatus.CONFIRMED
        await self.audit.record(
            AuditEventType.PAYMENT_MADE,
            actor_id=transaction.payer_id,
            actor_role=ActorRole.PROVIDER,
            target_id=transaction.id,
            target_type=TargetType.PAYMENT,
            action="confirm_payment",
            details={
                "reference": transaction.reference,
                "external_tx_ref": transaction.external_tx_ref,
                "amount": int(transaction.amount),
                "currency": transaction.currency,
                "session_id": transaction.session_id,
                "session_activated": activated,
            },
            success=confirmed,
            failure_reason=None if confirmed else transaction.failure_reason,
        )
        return transaction

    async def _activate_session(self, session_id: str, permission_id: str) -> bool:
        """Move a paid session to active, re-checking the permission now."""
        now = utc_now()
        permission = await self.permissions.get(permission_id)

        if not is_valid(permission, now):
            await self.session.execute(
                update(AccessSession)
                .where(AccessSession.id == session_id)
                .where(AccessSession.state.in_(list(OPEN_SESSION_STATES)))
                .values(
                    state=SessionState.ENDED_BY_REVOCATION,
                    ended_at=now,
                    end_reason="permission_invalid_at_payment",
                )
                .execution_options(synchronize_session=False)
            )
            logger.info(f"Paid session {session_id} not activated: permission no longer valid")
            return False

        result = await self.session.execute(
            update(AccessSession)
            .where(AccessSession.id == session_id)
            .where(AccessSession.state == SessionState.PENDING_PAYMENT)
            .values(state=SessionState.ACTIVE, activated_at=now, last_activity_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_transaction(self, transaction_ref: str) -> PaymentTransaction | None:
        """Look up by our reference or by the external transaction id."""
        result = await self.session.execute(
            select(PaymentTransaction)
            .where(
                (PaymentTransaction.reference == transaction_ref)
                | (PaymentTransaction.external_tx_ref == transaction_ref)
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def latest_for_session(self, session_id: str) -> PaymentTransaction | None:
        result = await self.session.execute(
            select(PaymentTransaction)
            .where(PaymentTransaction.session_id == session_id)
            .order_by(PaymentTransaction.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_session(self, session_id: str) -> list[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransaction)
            .where(PaymentTransaction.session_id == session_id)
            .order_by(PaymentTransaction.created_at)
        )
        return list(result.scalars().all())

    async def total_paid_by_provider(self, provider_id: str) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(PaymentTransaction.amount), 0))
            .where(PaymentTransaction.payer_id == provider_id)
            .where(PaymentTransaction.status == PaymentStatus.CONFIRMED)
        )
        return int(result.scalar_one())
