"""Tests for audit recording, queries and sink degradation."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from consent_gate.core.errors import NoValidPermissionError
from consent_gate.models.audit_entry import (
    ActorRole,
    AuditEventType,
    Severity,
    TargetType,
)
from consent_gate.models.consent import ConsentStatus
from consent_gate.schemas.audit import AuditEntryFilter
from consent_gate.services.audit import AuditHealth, AuditRecorder, calculate_severity
from consent_gate.services.gateway import AccessControlGateway
from consent_gate.services.notifications import DatabaseNotificationSink
from consent_gate.utils.time import utc_now
from tests.factories import PATIENT_ID, PROVIDER_ID, create_request


@pytest.fixture
async def broken_session_factory(tmp_path):
    """Session factory whose database can never be opened."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/missing/audit.db")
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


class TestSeverity:
    @pytest.mark.parametrize(
        "event_type,success,expected",
        [
            (AuditEventType.CONSENT_REQUESTED, True, Severity.LOW),
            (AuditEventType.FILE_VIEWED, True, Severity.LOW),
            (AuditEventType.CONSENT_GRANTED, True, Severity.MEDIUM),
            (AuditEventType.PAYMENT_MADE, True, Severity.MEDIUM),
            (AuditEventType.CONSENT_REVOKED, True, Severity.HIGH),
            (AuditEventType.FILE_EDITED, True, Severity.HIGH),
            (AuditEventType.EMERGENCY_ACCESS, True, Severity.CRITICAL),
            (AuditEventType.FILE_VIEWED, False, Severity.CRITICAL),
        ],
    )
    def test_calculate_severity(self, event_type, success, expected) -> None:
        assert calculate_severity(event_type, success) == expected


class TestAuditRecorder:
    """Tests for appending audit entries."""

    @pytest.mark.asyncio
    async def test_record_stores_entry(self, gateway) -> None:
        entry = await gateway.audit.record(
            AuditEventType.CONSENT_GRANTED,
            actor_id=PATIENT_ID,
            actor_role=ActorRole.PATIENT,
            target_id="consent-1",
            target_type=TargetType.CONSENT,
            action="approve",
            details={"provider_id": PROVIDER_ID},
        )

        assert entry is not None
        assert entry.id is not None
        assert entry.severity == Severity.MEDIUM

        stored = await gateway.audit_queries.get_entry(entry.id)
        assert stored.actor_id == PATIENT_ID
        assert stored.details == {"provider_id": PROVIDER_ID}

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_rejected(self, gateway) -> None:
        with pytest.raises(ValueError):
            await gateway.audit.record(
                "made_up_event",
                actor_id=PATIENT_ID,
                actor_role=ActorRole.PATIENT,
                target_id="x",
                target_type=TargetType.CONSENT,
                action="noop",
            )

    @pytest.mark.asyncio
    async def test_unavailable_sink_returns_none(self, broken_session_factory) -> None:
        health = AuditHealth()
        recorder = AuditRecorder(broken_session_factory, health=health)

        entry = await recorder.record(
            AuditEventType.FILE_VIEWED,
            actor_id=PROVIDER_ID,
            actor_role=ActorRole.PROVIDER,
            target_id="file-1",
            target_type=TargetType.FILE,
            action="view_file",
        )

        assert entry is None
        assert health.degraded is True
        assert health.total_failures == 1
        assert health.failed_event_types["file_viewed"] == 1
        assert health.snapshot()["audit_degraded"] is True

    @pytest.mark.asyncio
    async def test_audit_outage_does_not_block_operations(
        self,
        async_session: AsyncSession,
        session_factory,
        broken_session_factory,
    ) -> None:
        health = AuditHealth()
        gateway = AccessControlGateway(
            async_session,
            broken_session_factory,
            notifier=DatabaseNotificationSink(session_factory),
            audit_health=health,
        )

        request = await create_request(gateway)

        assert request.status == ConsentStatus.PENDING
        assert health.degraded is True

    @pytest.mark.asyncio
    async def test_recovery_clears_degraded(self, session_factory, broken_session_factory) -> None:
        health = AuditHealth()
        args = dict(
            actor_id=PROVIDER_ID,
            actor_role=ActorRole.PROVIDER,
            target_id="file-1",
            target_type=TargetType.FILE,
            action="view_file",
        )
        await AuditRecorder(broken_session_factory, health=health).record(
            AuditEventType.FILE_VIEWED, **args
        )
        await AuditRecorder(session_factory, health=health).record(
            AuditEventType.FILE_VIEWED, **args
        )

        assert health.degraded is False
        assert health.total_failures == 1


class TestAuditQueries:
    """Tests for read-only audit queries."""

    @pytest.mark.asyncio
    async def test_filters(self, gateway) -> None:
        request = await create_request(gateway)
        await gateway.ledger.deny(request.id, PATIENT_ID, "Not now")

        by_actor = await gateway.audit_queries.query(AuditEntryFilter(actor_id=PATIENT_ID))
        assert [e.event_type for e in by_actor] == [AuditEventType.CONSENT_DENIED]

        by_target = await gateway.audit_queries.query(
            AuditEntryFilter(target_id=request.id, target_type=TargetType.CONSENT)
        )
        assert len(by_target) == 2

        limited = await gateway.audit_queries.query(AuditEntryFilter(limit=1))
        assert len(limited) == 1

        failed = await gateway.audit_queries.query(AuditEntryFilter(success=False))
        assert failed == []

    @pytest.mark.asyncio
    async def test_target_history(self, gateway) -> None:
        request = await create_request(gateway)
        await gateway.ledger.approve(request.id, PATIENT_ID)

        history = await gateway.audit_queries.get_target_history(TargetType.CONSENT, request.id)
        assert {e.event_type for e in history} == {
            AuditEventType.CONSENT_REQUESTED,
            AuditEventType.CONSENT_GRANTED,
        }

    @pytest.mark.asyncio
    async def test_summarize(self, gateway) -> None:
        await create_request(gateway)
        with pytest.raises(NoValidPermissionError):
            await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)

        summary = await gateway.audit_queries.summarize(AuditEntryFilter())

        assert summary.total_entries == 2
        assert summary.by_event_type == {"consent_requested": 1, "access_denied": 1}
        assert summary.by_severity == {"low": 1, "critical": 1}
        assert summary.success_rate == 50.0
        assert summary.first_entry_at is not None

    @pytest.mark.asyncio
    async def test_summarize_empty(self, gateway) -> None:
        summary = await gateway.audit_queries.summarize(AuditEntryFilter())
        assert summary.total_entries == 0
        assert summary.success_rate == 0.0

    @pytest.mark.asyncio
    async def test_recent_failures(self, gateway) -> None:
        for _ in range(3):
            with pytest.raises(NoValidPermissionError):
                await gateway.sessions.start(PROVIDER_ID, PATIENT_ID)

        assert await gateway.audit_queries.recent_failures(PROVIDER_ID) == 3
        assert await gateway.audit_queries.recent_failures(PATIENT_ID) == 0

    @pytest.mark.asyncio
    async def test_prune_before(self, gateway) -> None:
        await create_request(gateway)

        assert await gateway.audit_queries.prune_before(utc_now() - timedelta(days=1)) == 0
        assert await gateway.audit_queries.prune_before(utc_now() + timedelta(seconds=5)) == 1
        assert await gateway.audit_queries.query(AuditEntryFilter()) == []

    @pytest.mark.asyncio
    async def test_prune_expired_keeps_recent(self, gateway) -> None:
        await create_request(gateway)
        assert await gateway.audit_queries.prune_expired() == 0


class TestAuditApi:
    """Audit endpoints are admin-only and read-only."""

    def test_admin_can_list(
        self, client: TestClient, provider_headers, admin_headers
    ) -> None:
        created = client.post(
            "/api/v1/consent/requests",
            headers=provider_headers,
            json={
                "patient_id": PATIENT_ID,
                "patient_address": "0x" + "b" * 40,
                "provider_address": "0x" + "a" * 40,
                "access_level": "view",
                "data_types": ["lab-results"],
                "purpose": "Follow-up on recent blood work",
                "duration_days": 14,
            },
        )
        assert created.status_code == 201

        response = client.get("/api/v1/audit/entries", headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert len(body) == 1
        assert body[0]["event_type"] == "consent_requested"

        summary = client.get("/api/v1/audit/summary", headers=admin_headers)
        assert summary.status_code == 200
        assert summary.json()["total_entries"] == 1

    def test_non_admin_is_forbidden(self, client: TestClient, provider_headers) -> None:
        response = client.get("/api/v1/audit/entries", headers=provider_headers)
        assert response.status_code == 403

    def test_no_write_endpoints(self, client: TestClient, admin_headers) -> None:
        response = client.post("/api/v1/audit/entries", headers=admin_headers, json={})
        assert response.status_code == 405

        response = client.delete("/api/v1/audit/entries", headers=admin_headers)
        assert response.status_code == 405
