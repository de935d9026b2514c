"""Tests for consent notifications and the inbox."""

import pytest
from fastapi.testclient import TestClient

from consent_gate.models.notification import NotificationKind
from consent_gate.services.gateway import AccessControlGateway
from consent_gate.services.notifications import (
    LoggingNotificationSink,
    denial_message,
    request_message,
)
from tests.factories import PATIENT_ID, PROVIDER_ID, approve_request, create_request


class TestMessages:
    @pytest.mark.asyncio
    async def test_request_message(self, gateway) -> None:
        request = await create_request(gateway, data_types=["lab-results", "imaging"])

        message = request_message(request)

        assert message.kind == NotificationKind.REQUEST.value
        assert message.action_required is True
        assert "view access to lab-results, imaging for 14 days" in message.body
        assert "Follow-up on recent blood work" in message.body
        assert message.action_url == f"/consent/requests/{request.id}"

    @pytest.mark.asyncio
    async def test_denial_without_reason(self, gateway) -> None:
        request = await create_request(gateway)
        denied = await gateway.ledger.deny(request.id, PATIENT_ID)

        assert denial_message(denied).body == "Your access request was denied."


class TestInbox:
    """Tests for the notification inbox."""

    @pytest.mark.asyncio
    async def test_lifecycle_notifies_both_parties(self, gateway) -> None:
        request = await approve_request(gateway)
        await gateway.ledger.revoke(request.id, PATIENT_ID, "No longer needed")

        patient_inbox = await gateway.notifications.list_for_recipient(PATIENT_ID)
        provider_inbox = await gateway.notifications.list_for_recipient(PROVIDER_ID)

        assert [NotificationKind(n.kind) for n in patient_inbox] == [NotificationKind.REQUEST]
        assert {NotificationKind(n.kind) for n in provider_inbox} == {
            NotificationKind.APPROVAL,
            NotificationKind.REVOCATION,
        }
        revocation = next(
            n for n in provider_inbox if n.kind == NotificationKind.REVOCATION.value
        )
        assert "No longer needed" in revocation.message

    @pytest.mark.asyncio
    async def test_mark_read(self, gateway) -> None:
        await create_request(gateway)
        [notification] = await gateway.notifications.list_for_recipient(PATIENT_ID)

        assert await gateway.notifications.mark_read(notification.id, PROVIDER_ID) is None

        marked = await gateway.notifications.mark_read(notification.id, PATIENT_ID)
        assert marked.is_read is True
        assert marked.read_at is not None
        assert await gateway.notifications.list_for_recipient(PATIENT_ID, unread_only=True) == []

    @pytest.mark.asyncio
    async def test_mark_all_read(self, gateway) -> None:
        first = await create_request(gateway)
        await gateway.ledger.deny(first.id, PATIENT_ID)
        await create_request(gateway)

        assert await gateway.notifications.mark_all_read(PATIENT_ID) == 2
        assert await gateway.notifications.mark_all_read(PATIENT_ID) == 0

    @pytest.mark.asyncio
    async def test_logging_sink_keeps_no_inbox(
        self, async_session, session_factory
    ) -> None:
        gateway = AccessControlGateway(
            async_session, session_factory, notifier=LoggingNotificationSink()
        )
        await create_request(gateway)

        assert await gateway.notifications.list_for_recipient(PATIENT_ID) == []


class TestNotificationApi:
    def test_inbox_endpoints(
        self, client: TestClient, provider_headers, patient_headers
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

        inbox = client.get("/api/v1/notifications", headers=patient_headers)
        assert inbox.status_code == 200
        [notification] = inbox.json()
        assert notification["kind"] == "request"
        assert notification["is_read"] is False

        other = client.post(
            f"/api/v1/notifications/{notification['id']}/read", headers=provider_headers
        )
        assert other.status_code == 404

        read = client.post(
            f"/api/v1/notifications/{notification['id']}/read", headers=patient_headers
        )
        assert read.status_code == 200
        assert read.json()["is_read"] is True

        unread = client.get(
            "/api/v1/notifications", params={"unread_only": True}, headers=patient_headers
        )
        assert unread.json() == []

        read_all = client.post("/api/v1/notifications/read-all", headers=patient_headers)
        assert read_all.status_code == 200
