"""Tests for health, readiness and root endpoints."""

import pytest
from fastapi.testclient import TestClient

from consent_gate.models.audit_entry import AuditEventType
from consent_gate.services.audit import AuditHealth


@pytest.fixture
def fresh_audit_health(monkeypatch) -> AuditHealth:
    health = AuditHealth()
    monkeypatch.setattr("consent_gate.api.v1.health.audit_health", health)
    return health


def test_health_check(client: TestClient) -> None:
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readiness(client: TestClient, fresh_audit_health) -> None:
    response = client.get("/api/v1/health/ready")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "ok"
    assert body["audit_degraded"] is False


def test_readiness_reports_degraded_audit(client: TestClient, fresh_audit_health) -> None:
    fresh_audit_health.record_failure(AuditEventType.FILE_VIEWED, OSError("disk full"))

    response = client.get("/api/v1/health/ready")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    assert body["audit_degraded"] is True
    assert body["audit_failures"] == 1
    assert "disk full" in body["last_audit_error"]


def test_root(client: TestClient) -> None:
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "Consent Gate API"
