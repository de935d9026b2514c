"""Access permission endpoints (read-only)."""

from fastapi import APIRouter, HTTPException, status

from consent_gate.api.deps import CurrentActor, Gateway
from consent_gate.models.audit_entry import ActorRole
from consent_gate.models.permission import AccessPermission
from consent_gate.schemas.permission import AccessPermissionRead

router = APIRouter()


@router.get("", response_model=list[AccessPermissionRead])
async def list_permissions(
    actor: CurrentActor,
    gateway: Gateway,
) -> list[AccessPermission]:
    """List permissions held by the calling provider or granted by the calling patient."""
    if actor.role == ActorRole.PROVIDER:
        return await gateway.permissions.list_for_provider(actor.id)
    if actor.role == ActorRole.PATIENT:
        return await gateway.permissions.list_for_patient(actor.id)
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Admins must query permissions by id",
    )


@router.get("/{permission_id}", response_model=AccessPermissionRead)
async def get_permission(
    permission_id: str,
    actor: CurrentActor,
    gateway: Gateway,
) -> AccessPermission:
    permission = await gateway.permissions.get(permission_id)
    if permission is None or (
        actor.role != ActorRole.ADMIN
        and actor.id not in (permission.provider_id, permission.patient_id)
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Permission not found",
        )
    return permission
