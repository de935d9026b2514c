"""Consent request endpoints for providers and patients."""

from fastapi import APIRouter, HTTPException, status

from consent_gate.api.deps import CurrentActor, CurrentPatient, CurrentProvider, Gateway
from consent_gate.models.audit_entry import ActorRole
from consent_gate.models.consent import ConsentRequest, ConsentStatus
from consent_gate.schemas.consent import (
    ConsentApprove,
    ConsentDecisionReason,
    ConsentRequestCreate,
    ConsentRequestRead,
    ProviderConsentStats,
)
from consent_gate.services.consent_ledger import (
    ApprovedScope,
    ConsentScope,
    PatientRef,
    ProviderRef,
)

router = APIRouter()


@router.post(
    "/requests",
    response_model=ConsentRequestRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_consent_request(
    body: ConsentRequestCreate,
    provider: CurrentProvider,
    gateway: Gateway,
) -> ConsentRequest:
    """Request time-boxed access to a patient's data.

    The patient is notified and has until the urgency-based deadline to
    respond (2 hours emergency, 24 hours urgent, 7 days standard).
    """
    return await gateway.ledger.create_request(
        ProviderRef(
            provider_id=provider.id,
            address=body.provider_address,
            name=body.provider_name,
        ),
        PatientRef(patient_id=body.patient_id, address=body.patient_address),
        ConsentScope(
            access_level=body.access_level,
            data_types=[t.value for t in body.data_types],
            purpose=body.purpose,
            duration_days=body.duration_days,
            urgency=body.urgency,
            justification=body.justification,
            metadata=body.metadata,
        ),
    )


@router.get("/requests", response_model=list[ConsentRequestRead])
async def list_consent_requests(
    actor: CurrentActor,
    gateway: Gateway,
    status_filter: ConsentStatus | None = None,
) -> list[ConsentRequest]:
    """List the caller's own requests (as provider) or requests addressed to them (as patient)."""
    if actor.role == ActorRole.PROVIDER:
        return await gateway.ledger.list_for_provider(actor.id, status_filter)
    if actor.role == ActorRole.PATIENT:
        return await gateway.ledger.list_for_patient(actor.id, status_filter)
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Admins must query requests by id",
    )


@router.get("/stats", response_model=ProviderConsentStats)
async def get_provider_stats(
    provider: CurrentProvider,
    gateway: Gateway,
) -> dict:
    """Request outcomes for the calling provider."""
    return await gateway.ledger.provider_stats(provider.id)


@router.get("/requests/{request_id}", response_model=ConsentRequestRead)
async def get_consent_request(
    request_id: str,
    actor: CurrentActor,
    gateway: Gateway,
) -> ConsentRequest:
    """Get one request. Visible to its provider, its patient and admins."""
    request = await gateway.ledger.get_request(request_id)
    if request is None or (
        actor.role != ActorRole.ADMIN and actor.id not in (request.provider_id, request.patient_id)
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Consent request not found",
        )
    return request


@router.post("/requests/{request_id}/approve", response_model=ConsentRequestRead)
async def approve_consent_request(
    request_id: str,
    body: ConsentApprove,
    patient: CurrentPatient,
    gateway: Gateway,
) -> ConsentRequest:
    """Approve a pending request. The approved scope may only narrow the request."""
    return await gateway.ledger.approve(
        request_id,
        patient.id,
        ApprovedScope(
            access_level=body.access_level,
            data_types=[t.value for t in body.data_types] if body.data_types is not None else None,
            duration_days=body.duration_days,
            conditions=body.conditions,
        ),
    )


@router.post("/requests/{request_id}/deny", response_model=ConsentRequestRead)
async def deny_consent_request(
    request_id: str,
    body: ConsentDecisionReason,
    patient: CurrentPatient,
    gateway: Gateway,
) -> ConsentRequest:
    """Deny a pending request."""
    return await gateway.ledger.deny(request_id, patient.id, body.reason)


@router.post("/requests/{request_id}/revoke", response_model=ConsentRequestRead)
async def revoke_consent(
    request_id: str,
    body: ConsentDecisionReason,
    patient: CurrentPatient,
    gateway: Gateway,
) -> ConsentRequest:
    """Revoke an approved consent. Open sessions are closed immediately."""
    return await gateway.ledger.revoke(request_id, patient.id, body.reason)
