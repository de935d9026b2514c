"""Notification inbox endpoints."""

from fastapi import APIRouter, HTTPException, status

from consent_gate.api.deps import CurrentActor, Gateway
from consent_gate.models.notification import Notification
from consent_gate.schemas.notification import MarkAllReadResponse, NotificationRead

router = APIRouter()


@router.get("", response_model=list[NotificationRead])
async def list_notifications(
    actor: CurrentActor,
    gateway: Gateway,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    return await gateway.notifications.list_for_recipient(
        actor.id, unread_only=unread_only, limit=min(max(limit, 1), 200)
    )


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    actor: CurrentActor,
    gateway: Gateway,
) -> MarkAllReadResponse:
    updated = await gateway.notifications.mark_all_read(actor.id)
    return MarkAllReadResponse(updated=updated)


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: str,
    actor: CurrentActor,
    gateway: Gateway,
) -> Notification:
    notification = await gateway.notifications.mark_read(notification_id, actor.id)
    if notification is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
    return notification
