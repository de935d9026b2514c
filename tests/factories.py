"""Shared test data builders and collaborator fakes."""

from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from consent_gate.core.security import create_access_token
from consent_gate.models.consent import ConsentRequest
from consent_gate.services.anchoring import LedgerAnchoringService
from consent_gate.services.collaborators import AnchoringService
from consent_gate.services.consent_ledger import (
    ApprovedScope,
    ConsentScope,
    PatientRef,
    ProviderRef,
)
from consent_gate.services.gateway import AccessControlGateway
from consent_gate.utils.time import utc_now

PROVIDER_ID = "provider-1"
PATIENT_ID = "patient-1"
OTHER_PROVIDER_ID = "provider-2"
OTHER_PATIENT_ID = "patient-2"
ADMIN_ID = "admin-1"
PROVIDER_ADDRESS = "0x" + "a" * 40
PATIENT_ADDRESS = "0x" + "b" * 40


class FlakyAnchoringService(AnchoringService):
    """Fails the first ``failures`` calls, then behaves like the ledger."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls: list[str] = []
        self.ledger = LedgerAnchoringService(network="test")

    def _maybe_fail(self, idempotency_key: str) -> None:
        self.calls.append(idempotency_key)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("anchoring node unreachable")

    async def anchor_consent(self, request, idempotency_key):
        self._maybe_fail(idempotency_key)
        return await self.ledger.anchor_consent(request, idempotency_key)

    async def anchor_approval(self, request_id, idempotency_key):
        self._maybe_fail(idempotency_key)
        return await self.ledger.anchor_approval(request_id, idempotency_key)

    async def anchor_revocation(self, request_id, reason, idempotency_key):
        self._maybe_fail(idempotency_key)
        return await self.ledger.anchor_revocation(request_id, reason, idempotency_key)


def provider_ref(provider_id: str = PROVIDER_ID) -> ProviderRef:
    return ProviderRef(provider_id=provider_id, address=PROVIDER_ADDRESS, name="Dr. Test")


def patient_ref(patient_id: str = PATIENT_ID) -> PatientRef:
    return PatientRef(patient_id=patient_id, address=PATIENT_ADDRESS)


def make_scope(**overrides) -> ConsentScope:
    values = {
        "access_level": "view",
        "data_types": ["lab-results"],
        "purpose": "Follow-up on recent blood work",
        "duration_days": 14,
        "urgency": "standard",
    }
    values.update(overrides)
    return ConsentScope(**values)


async def create_request(
    gateway: AccessControlGateway,
    provider_id: str = PROVIDER_ID,
    patient_id: str = PATIENT_ID,
    **scope_overrides,
) -> ConsentRequest:
    return await gateway.ledger.create_request(
        provider_ref(provider_id), patient_ref(patient_id), make_scope(**scope_overrides)
    )


async def approve_request(
    gateway: AccessControlGateway,
    provider_id: str = PROVIDER_ID,
    patient_id: str = PATIENT_ID,
    approved: ApprovedScope | None = None,
    **scope_overrides,
) -> ConsentRequest:
    request = await create_request(gateway, provider_id, patient_id, **scope_overrides)
    return await gateway.ledger.approve(request.id, patient_id, approved)


async def backdate_deadline(session: AsyncSession, request_id: str) -> None:
    """Move a request's response deadline into the past."""
    await session.execute(
        update(ConsentRequest)
        .where(ConsentRequest.id == request_id)
        .values(response_deadline=utc_now() - timedelta(minutes=1))
        .execution_options(synchronize_session=False)
    )
    await session.commit()


def auth_headers(actor_id: str, role: str) -> dict[str, str]:
    """Authorization headers for an actor with the given role."""
    token = create_access_token(subject=actor_id, actor_role=role)
    return {"Authorization": f"Bearer {token}"}
