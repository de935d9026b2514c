"""Tests for the anchor outbox and reconciliation."""

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from consent_gate.models.anchor import AnchorEvent, AnchorRecord, AnchorStatus
from consent_gate.models.consent import ConsentStatus
from consent_gate.services.anchoring import LedgerAnchoringService
from tests.factories import PATIENT_ID, approve_request, create_request


async def anchor_records(session: AsyncSession, request_id: str) -> list[AnchorRecord]:
    result = await session.execute(
        select(AnchorRecord)
        .where(AnchorRecord.consent_request_id == request_id)
        .order_by(AnchorRecord.created_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_ledger_reference_is_idempotent(gateway) -> None:
    """One idempotency key always maps to one anchor."""
    ledger = LedgerAnchoringService(network="test")
    first = await ledger.anchor_approval("consent-1", "consent-1:approved")
    second = await ledger.anchor_approval("consent-1", "consent-1:approved")
    other = await ledger.anchor_approval("consent-1", "consent-1:revoked")

    assert first == second
    assert first.startswith("0x")
    assert other != first


@pytest.mark.asyncio
async def test_anchor_failure_does_not_block_creation(
    gateway, anchoring, async_session: AsyncSession
) -> None:
    anchoring.failures = 2

    request = await create_request(gateway)

    assert request.status == ConsentStatus.PENDING
    assert request.anchor_ref is None
    [record] = await anchor_records(async_session, request.id)
    assert record.status == AnchorStatus.FAILED
    assert record.attempts == 1
    assert "anchoring node unreachable" in record.last_error


@pytest.mark.asyncio
async def test_reconcile_anchors_outstanding(
    gateway, anchoring, async_session: AsyncSession
) -> None:
    anchoring.failures = 2
    request = await create_request(gateway)
    assert len(await gateway.anchors.list_outstanding()) == 1

    result = await gateway.anchors.reconcile()

    assert result == {"anchored": 1, "outstanding": 0}
    [record] = await anchor_records(async_session, request.id)
    assert record.status == AnchorStatus.ANCHORED
    assert record.attempts == 2
    assert record.last_error is None

    reloaded = await gateway.ledger.get_request(request.id)
    assert reloaded.anchor_ref == record.reference
    assert await gateway.anchors.list_outstanding() == []


@pytest.mark.asyncio
async def test_retries_reuse_idempotency_key(gateway, anchoring) -> None:
    anchoring.failures = 1

    request = await create_request(gateway)

    key = f"{request.id}:{AnchorEvent.CONSENT_CREATED.value}"
    assert anchoring.calls == [key, key]
    assert request.anchor_ref is not None


@pytest.mark.asyncio
async def test_decisions_are_anchored_separately(
    gateway, async_session: AsyncSession
) -> None:
    request = await approve_request(gateway)
    await gateway.ledger.revoke(request.id, PATIENT_ID, "Moving clinics")

    records = await anchor_records(async_session, request.id)
    assert [AnchorEvent(r.event) for r in records] == [
        AnchorEvent.CONSENT_CREATED,
        AnchorEvent.APPROVED,
        AnchorEvent.REVOKED,
    ]
    assert all(r.status == AnchorStatus.ANCHORED for r in records)
    assert records[2].reason == "Moving clinics"

    reloaded = await gateway.ledger.get_request(request.id)
    assert reloaded.decision_anchor_ref == records[2].reference


@pytest.mark.asyncio
async def test_reconcile_with_nothing_outstanding(gateway) -> None:
    await create_request(gateway)
    assert await gateway.anchors.reconcile() == {"anchored": 0, "outstanding": 0}
