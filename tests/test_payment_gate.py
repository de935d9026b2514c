"""Tests for access pricing and payment confirmation."""

import pytest

from consent_gate.core.config import settings
from consent_gate.core.errors import ExternalServiceError, PaymentNotFoundError
from consent_gate.models.access_session import SessionState
from consent_gate.models.audit_entry import AuditEventType
from consent_gate.models.consent import AccessLevel
from consent_gate.models.payment import PaymentStatus
from consent_gate.schemas.audit import AuditEntryFilter
from consent_gate.services.collaborators import ProviderTier
from consent_gate.services.gateway import AccessControlGateway
from consent_gate.services.payment_gate import AccessContext, calculate_fee
from consent_gate.services.payments import SimulatedPaymentService
from tests.factories import PATIENT_ID, PROVIDER_ID, approve_request

BASE = 1000


class OutagePaymentService(SimulatedPaymentService):
    """Payment service that can be switched off."""

    def __init__(self) -> None:
        super().__init__()
        self.down = False

    async def submit_payment(self, payer, payee, amount, reference):
        if self.down:
            raise ConnectionError("payment node unreachable")
        return await super().submit_payment(payer, payee, amount, reference)

    async def verify_payment(self, tx_ref):
        if self.down:
            raise ConnectionError("payment node unreachable")
        return await super().verify_payment(tx_ref)


class TestCalculateFee:
    """Pricing is a pure function of tier, level and data types."""

    def test_staked_provider_pays_nothing(self) -> None:
        context = AccessContext(ProviderTier.STAKED, AccessLevel.FULL, ("imaging",))
        assert calculate_fee(context, base_fee=BASE) == 0

    @pytest.mark.parametrize(
        "level,expected",
        [(AccessLevel.VIEW, 1000), (AccessLevel.EDIT, 2000), (AccessLevel.FULL, 3000)],
    )
    def test_level_multiplier(self, level: AccessLevel, expected: int) -> None:
        context = AccessContext(ProviderTier.STANDARD, level, ("visit-notes",))
        assert calculate_fee(context, base_fee=BASE, sensitive_data_types=frozenset()) == expected

    def test_sensitive_data_doubles_fee(self) -> None:
        context = AccessContext(ProviderTier.STANDARD, AccessLevel.VIEW, ("lab-results",))
        assert calculate_fee(
            context, base_fee=BASE, sensitive_data_types=frozenset({"lab-results"})
        ) == 2000

    def test_view_quote_is_not_free(self) -> None:
        context = AccessContext(ProviderTier.STANDARD, AccessLevel.VIEW, ("demographics",))
        assert calculate_fee(context) == settings.base_access_fee


class TestQuote:
    @pytest.mark.asyncio
    async def test_quote_uses_provider_tier(self, gateway, directory) -> None:
        request = await approve_request(gateway)
        permission = await gateway.permissions.get_for_request(request.id)

        assert await gateway.payment_gate.quote_for(permission) > 0

        directory.staked_provider_ids.add(PROVIDER_ID)
        assert await gateway.payment_gate.quote_for(permission) == 0


class TestConfirmPayment:
    """Tests for verifying payments and activating sessions."""

    @pytest.mark.asyncio
    async def test_confirm_activates_session(self, gateway, payment_service) -> None:
        await approve_request(gateway)
        started = await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)
        assert started.session.state == SessionState.PENDING_PAYMENT
        payment = started.payment
        assert payment.status == PaymentStatus.PENDING
        assert payment.payer_id == PROVIDER_ID
        assert payment.payee_id == PATIENT_ID
        assert payment.amount > 0

        payment_service.settle(payment.external_tx_ref)
        confirmed = await gateway.payment_gate.confirm_payment(payment.reference)

        assert confirmed.status == PaymentStatus.CONFIRMED
        assert confirmed.confirmed_at is not None
        access_session = await gateway.sessions.get_session(started.session.id)
        assert access_session.state == SessionState.ACTIVE
        assert access_session.activated_at is not None

    @pytest.mark.asyncio
    async def test_confirm_by_external_reference(self, gateway, payment_service) -> None:
        await approve_request(gateway)
        started = await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)
        tx_ref = started.payment.external_tx_ref

        payment_service.settle(tx_ref)
        confirmed = await gateway.payment_gate.confirm_payment(tx_ref)
        assert confirmed.status == PaymentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_unsettled_payment_stays_pending(self, gateway) -> None:
        await approve_request(gateway)
        started = await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)

        result = await gateway.payment_gate.confirm_payment(started.payment.reference)

        assert result.status == PaymentStatus.PENDING
        access_session = await gateway.sessions.get_session(started.session.id)
        assert access_session.state == SessionState.PENDING_PAYMENT

    @pytest.mark.asyncio
    async def test_rejected_payment_leaves_session_inert(self, gateway, payment_service) -> None:
        await approve_request(gateway)
        started = await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)
        payment_service.reject(started.payment.external_tx_ref, "Insufficient funds")

        result = await gateway.payment_gate.confirm_payment(started.payment.reference)

        assert result.status == PaymentStatus.FAILED
        assert result.failure_reason == "Insufficient funds"
        access_session = await gateway.sessions.get_session(started.session.id)
        assert access_session.state == SessionState.PENDING_PAYMENT

        entries = await gateway.audit_queries.query(
            AuditEntryFilter(event_type=AuditEventType.PAYMENT_MADE)
        )
        assert len(entries) == 1
        assert entries[0].success is False

    @pytest.mark.asyncio
    async def test_failed_payment_can_be_reverified(self, gateway, payment_service) -> None:
        await approve_request(gateway)
        started = await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)
        tx_ref = started.payment.external_tx_ref
        payment_service.reject(tx_ref)
        await gateway.payment_gate.confirm_payment(tx_ref)

        payment_service.settle(tx_ref)
        result = await gateway.payment_gate.confirm_payment(tx_ref)

        assert result.status == PaymentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_confirm_is_idempotent(self, gateway, payment_service) -> None:
        await approve_request(gateway)
        started = await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)
        payment_service.settle(started.payment.external_tx_ref)

        first = await gateway.payment_gate.confirm_payment(started.payment.reference)
        second = await gateway.payment_gate.confirm_payment(started.payment.reference)

        assert first.id == second.id
        assert second.status == PaymentStatus.CONFIRMED
        entries = await gateway.audit_queries.query(
            AuditEntryFilter(event_type=AuditEventType.PAYMENT_MADE)
        )
        assert len(entries) == 1
        history = await gateway.payment_gate.list_for_session(started.session.id)
        assert [t.reference for t in history] == [started.payment.reference]

    @pytest.mark.asyncio
    async def test_unknown_reference(self, gateway) -> None:
        with pytest.raises(PaymentNotFoundError):
            await gateway.payment_gate.confirm_payment("pay-does-not-exist")

    @pytest.mark.asyncio
    async def test_revocation_during_payment_blocks_activation(
        self, gateway, payment_service
    ) -> None:
        request = await approve_request(gateway)
        started = await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)
        await gateway.ledger.revoke(request.id, PATIENT_ID, "Changed my mind")

        payment_service.settle(started.payment.external_tx_ref)
        result = await gateway.payment_gate.confirm_payment(started.payment.reference)

        assert result.status == PaymentStatus.CONFIRMED
        access_session = await gateway.sessions.get_session(started.session.id)
        assert access_session.state == SessionState.ENDED_BY_REVOCATION


class TestPaymentServiceOutage:
    """The payment service being down never activates a session."""

    @pytest.mark.asyncio
    async def test_outage_at_start_defers_submission(
        self, async_session, session_factory, directory
    ) -> None:
        payments = OutagePaymentService()
        gateway = AccessControlGateway(
            async_session, session_factory, payment_service=payments, directory=directory
        )
        await approve_request(gateway)

        payments.down = True
        started = await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)

        assert started.session.state == SessionState.PENDING_PAYMENT
        assert started.payment.external_tx_ref is None
        assert started.payment.status == PaymentStatus.PENDING

        with pytest.raises(ExternalServiceError):
            await gateway.payment_gate.confirm_payment(started.payment.reference)

        payments.down = False
        pending = await gateway.payment_gate.confirm_payment(started.payment.reference)
        assert pending.external_tx_ref is not None

        payments.settle(pending.external_tx_ref)
        confirmed = await gateway.payment_gate.confirm_payment(started.payment.reference)
        assert confirmed.status == PaymentStatus.CONFIRMED
        access_session = await gateway.sessions.get_session(started.session.id)
        assert access_session.state == SessionState.ACTIVE
