"""Tests for permission derivation."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from consent_gate.core.errors import InvalidSourceError
from consent_gate.models.permission import AccessPermission
from consent_gate.services.permissions import is_valid
from consent_gate.utils.time import utc_now
from tests.factories import PATIENT_ID, PROVIDER_ID, approve_request, create_request


@pytest.mark.asyncio
async def test_materialize_rejects_pending_request(gateway) -> None:
    """A pending request has no permission to derive."""
    request = await create_request(gateway)

    with pytest.raises(InvalidSourceError):
        await gateway.permissions.materialize(request)


@pytest.mark.asyncio
async def test_materialize_is_idempotent(gateway, async_session: AsyncSession) -> None:
    """Re-materializing refreshes the existing row."""
    request = await approve_request(gateway)
    first = await gateway.permissions.get_for_request(request.id)

    again = await gateway.permissions.materialize(request)
    await async_session.commit()

    assert again.id == first.id
    count = await async_session.execute(select(func.count()).select_from(AccessPermission))
    assert count.scalar_one() == 1


@pytest.mark.asyncio
async def test_materialize_after_deactivation_reactivates(gateway) -> None:
    request = await approve_request(gateway)
    permission = await gateway.permissions.get_for_request(request.id)
    assert await gateway.permissions.deactivate(permission, "test") is True

    refreshed = await gateway.permissions.materialize(request)

    assert refreshed.id == permission.id
    assert refreshed.is_active is True
    assert refreshed.deactivation_reason is None


@pytest.mark.asyncio
async def test_deactivate_only_once(gateway) -> None:
    request = await approve_request(gateway)
    permission = await gateway.permissions.get_for_request(request.id)

    assert await gateway.permissions.deactivate(permission, "first") is True
    assert await gateway.permissions.deactivate(permission, "second") is False
    assert permission.deactivation_reason == "first"


@pytest.mark.asyncio
async def test_validity(gateway) -> None:
    request = await approve_request(gateway, duration_days=10)
    permission = await gateway.permissions.get_for_request(request.id)

    assert is_valid(permission) is True
    assert is_valid(permission, utc_now() + timedelta(days=9)) is True
    assert is_valid(permission, utc_now() + timedelta(days=11)) is False
    assert is_valid(None) is False

    await gateway.permissions.deactivate(permission, "revoked")
    assert is_valid(permission) is False


@pytest.mark.asyncio
async def test_get_active_for_pair_ignores_expired(gateway) -> None:
    request = await approve_request(gateway)
    permission = await gateway.permissions.get_active_for_pair(PROVIDER_ID, PATIENT_ID)
    assert permission.consent_request_id == request.id

    assert await gateway.permissions.get_active_for_pair(PROVIDER_ID, "someone-else") is None


@pytest.mark.asyncio
async def test_list_for_party(gateway) -> None:
    await approve_request(gateway)

    assert len(await gateway.permissions.list_for_provider(PROVIDER_ID)) == 1
    assert len(await gateway.permissions.list_for_patient(PATIENT_ID)) == 1
    assert await gateway.permissions.list_for_patient(PROVIDER_ID) == []
