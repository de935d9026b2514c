"""Access session endpoints.

Providers open a session against their currently valid permission, pay if
the quote is non-zero, then touch files one at a time. Every touch is
re-authorized against the stored permission.
"""

from fastapi import APIRouter, HTTPException, status

from consent_gate.api.deps import CurrentActor, CurrentProvider, Gateway
from consent_gate.models.access_session import AccessSession, SessionState
from consent_gate.models.audit_entry import ActorRole
from consent_gate.schemas.session import (
    AccessSessionRead,
    AccessSessionStart,
    AccessSessionStartResponse,
    FileAccessGrantRead,
    FileAccessRequest,
    PaymentTransactionRead,
)
from consent_gate.services.access_sessions import FileAccessGrant

router = APIRouter()


@router.post(
    "",
    response_model=AccessSessionStartResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_session(
    body: AccessSessionStart,
    provider: CurrentProvider,
    gateway: Gateway,
) -> AccessSessionStartResponse:
    """Start a session with a patient.

    When ``payment_required`` is true the session stays ``pending_payment``
    until the returned transaction is confirmed.
    """
    started = await gateway.sessions.start(provider.id, body.patient_id)
    return AccessSessionStartResponse(
        session=AccessSessionRead.model_validate(started.session),
        payment_required=started.payment_required,
        payment=(
            PaymentTransactionRead.model_validate(started.payment) if started.payment else None
        ),
    )


@router.get("", response_model=list[AccessSessionRead])
async def list_sessions(
    provider: CurrentProvider,
    gateway: Gateway,
    state: SessionState | None = None,
) -> list[AccessSession]:
    return await gateway.sessions.list_for_provider(provider.id, state)


@router.get("/stats")
async def get_session_stats(
    provider: CurrentProvider,
    gateway: Gateway,
) -> dict:
    """Session, file access and payment totals for the calling provider."""
    return await gateway.sessions.provider_stats(provider.id)


@router.get("/{session_id}", response_model=AccessSessionRead)
async def get_session(
    session_id: str,
    actor: CurrentActor,
    gateway: Gateway,
) -> AccessSession:
    access_session = await gateway.sessions.get_session(session_id)
    if access_session is None or (
        actor.role != ActorRole.ADMIN
        and actor.id not in (access_session.provider_id, access_session.patient_id)
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Access session not found",
        )
    return access_session


@router.post("/{session_id}/files/{file_id}", response_model=FileAccessGrantRead)
async def access_file(
    session_id: str,
    file_id: str,
    body: FileAccessRequest,
    provider: CurrentProvider,
    gateway: Gateway,
) -> FileAccessGrant:
    """View, download or edit one file through an active session."""
    return await gateway.sessions.access_file(
        session_id,
        file_id,
        body.access_type,
        actor_id=provider.id,
    )


@router.post("/{session_id}/end", response_model=AccessSessionRead)
async def end_session(
    session_id: str,
    provider: CurrentProvider,
    gateway: Gateway,
) -> AccessSession:
    return await gateway.sessions.end(session_id, actor_id=provider.id)
