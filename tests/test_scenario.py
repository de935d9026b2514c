"""End-to-end walk through the consent and access lifecycle."""

from datetime import timedelta

import pytest

from consent_gate.core.errors import PaymentRequiredError, SessionNotActiveError
from consent_gate.models.access_session import SessionState
from consent_gate.models.audit_entry import AuditEventType
from consent_gate.models.consent import ConsentStatus
from consent_gate.models.payment import PaymentStatus
from consent_gate.schemas.audit import AuditEntryFilter
from consent_gate.services.consent_ledger import ApprovedScope
from consent_gate.utils.time import ensure_utc
from tests.factories import PATIENT_ID, PROVIDER_ID, create_request


@pytest.mark.asyncio
async def test_request_approve_pay_access_revoke(gateway, payment_service, lab_file) -> None:
    # Provider asks for two weeks of lab results
    request = await create_request(
        gateway, access_level="view", data_types=["lab-results"], duration_days=14
    )
    assert request.status == ConsentStatus.PENDING

    # Patient grants one week
    approved = await gateway.ledger.approve(
        request.id, PATIENT_ID, ApprovedScope(duration_days=7)
    )
    assert approved.status == ConsentStatus.APPROVED
    permission = await gateway.permissions.get_for_request(request.id)
    assert ensure_utc(permission.expires_at) - ensure_utc(approved.approved_at) == timedelta(days=7)

    # Provider opens a session; access is blocked until the fee clears
    started = await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)
    assert started.payment_required is True
    assert started.payment.amount > 0
    with pytest.raises(PaymentRequiredError):
        await gateway.sessions.access_file(started.session.id, lab_file.id, "view")

    payment_service.settle(started.payment.external_tx_ref)
    confirmed = await gateway.payment_gate.confirm_payment(started.payment.reference)
    assert confirmed.status == PaymentStatus.CONFIRMED

    grant = await gateway.sessions.access_file(started.session.id, lab_file.id, "view")
    assert grant.handle_ref == lab_file.content_hash
    assert grant.access_count == 1

    # Patient changes their mind; the open session is closed at once
    revoked = await gateway.ledger.revoke(request.id, PATIENT_ID, "Second opinion done")
    assert revoked.status == ConsentStatus.REVOKED

    with pytest.raises(SessionNotActiveError):
        await gateway.sessions.access_file(started.session.id, lab_file.id, "view")
    access_session = await gateway.sessions.get_session(started.session.id)
    assert access_session.state == SessionState.ENDED_BY_REVOCATION

    trail = await gateway.audit_queries.query(AuditEntryFilter(limit=500))
    kinds = {AuditEventType(e.event_type) for e in trail}
    assert {
        AuditEventType.CONSENT_REQUESTED,
        AuditEventType.CONSENT_GRANTED,
        AuditEventType.SESSION_STARTED,
        AuditEventType.PAYMENT_MADE,
        AuditEventType.FILE_VIEWED,
        AuditEventType.CONSENT_REVOKED,
        AuditEventType.ACCESS_DENIED,
    } <= kinds
