"""Tests for bearer token handling."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from consent_gate.core.config import settings
from consent_gate.core.security import create_access_token, decode_access_token


def sign(claims: dict) -> str:
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


class TestTokens:
    def test_round_trip(self) -> None:
        claims = decode_access_token(create_access_token("patient-1", "patient"))

        assert claims is not None
        assert claims.party_id == "patient-1"
        assert claims.role == "patient"

    def test_system_role_not_issued(self) -> None:
        with pytest.raises(ValueError):
            create_access_token("sweeper", "system")

    def test_expired(self) -> None:
        token = create_access_token("patient-1", "patient", expires_delta=timedelta(seconds=-5))
        assert decode_access_token(token) is None

    def test_wrong_type(self) -> None:
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = sign({"sub": "patient-1", "actor_role": "patient", "type": "refresh", "exp": exp})
        assert decode_access_token(token) is None

    def test_bad_signature(self) -> None:
        token = jwt.encode(
            {"sub": "patient-1", "actor_role": "patient", "type": "access"},
            "not-the-key",
            algorithm=settings.algorithm,
        )
        assert decode_access_token(token) is None


class TestCallerResolution:
    def test_expired_token_is_unauthenticated(self, client: TestClient) -> None:
        token = create_access_token("provider-1", "provider", expires_delta=timedelta(seconds=-5))

        response = client.get(
            "/api/v1/consent/requests", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    def test_unknown_role_is_forbidden(self, client: TestClient) -> None:
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = sign({"sub": "sweeper", "actor_role": "system", "type": "access", "exp": exp})

        response = client.get(
            "/api/v1/consent/requests", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 403
