"""Consent notifications: message building, delivery sinks and the inbox.

Delivery is fire-and-forget. A notification that cannot be stored is
logged and dropped; it never affects the consent transition that caused it.
"""

import logging
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consent_gate.models.audit_entry import ActorRole
from consent_gate.models.consent import AccessLevel, ConsentRequest
from consent_gate.models.notification import Notification, NotificationKind
from consent_gate.services.collaborators import NotificationMessage, NotificationSink
from consent_gate.utils.time import format_datetime, utc_now

logger = logging.getLogger(__name__)


class DatabaseNotificationSink(NotificationSink):
    """Writes notifications into the in-database inbox."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def deliver(
        self, recipient_id: str, recipient_role: ActorRole, message: NotificationMessage
    ) -> None:
        notification = Notification(
            recipient_id=recipient_id,
            recipient_role=ActorRole(recipient_role),
            kind=NotificationKind(message.kind),
            consent_request_id=message.consent_request_id,
            title=message.title,
            message=message.body,
            action_required=message.action_required,
            action_url=message.action_url,
            is_read=False,
        )
        try:
            async with self.session_factory() as session:
                session.add(notification)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(
                f"Dropped {message.kind} notification for {recipient_id}: {exc!r}",
                extra={"consent_request_id": message.consent_request_id},
            )


class LoggingNotificationSink(NotificationSink):
    """Sink that only logs; used where no inbox is configured."""

    async def deliver(
        self, recipient_id: str, recipient_role: ActorRole, message: NotificationMessage
    ) -> None:
        logger.info(
            f"Notify {ActorRole(recipient_role).value}:{recipient_id} - {message.title}",
            extra={"consent_request_id": message.consent_request_id},
        )


def request_message(request: ConsentRequest) -> NotificationMessage:
    provider = request.provider_name or request.provider_id
    return NotificationMessage(
        kind=NotificationKind.REQUEST.value,
        title="New access request",
        body=(
            f"{provider} requests {AccessLevel(request.access_level).value} access to "
            f"{', '.join(request.data_types)} for {request.duration_days} days. "
            f"Purpose: {request.purpose}. "
            f"Please respond by {format_datetime(request.response_deadline)}."
        ),
        consent_request_id=request.id,
        action_required=True,
        action_url=f"/consent/requests/{request.id}",
    )


def approval_message(request: ConsentRequest) -> NotificationMessage:
    data_types = request.approved_data_types or request.data_types
    return NotificationMessage(
        kind=NotificationKind.APPROVAL.value,
        title="Access request approved",
        body=(
            f"Your request was approved with {AccessLevel(request.approved_access_level).value} access to "
            f"{', '.join(data_types)} for {request.approved_duration_days} days."
        ),
        consent_request_id=request.id,
        action_url=f"/consent/requests/{request.id}",
    )


def denial_message(request: ConsentRequest) -> NotificationMessage:
    body = "Your access request was denied."
    if request.denial_reason:
        body = f"{body} Reason: {request.denial_reason}"
    return NotificationMessage(
        kind=NotificationKind.DENIAL.value,
        title="Access request denied",
        body=body,
        consent_request_id=request.id,
    )


def revocation_message(request: ConsentRequest) -> NotificationMessage:
    body = "Access granted to you has been revoked. Open sessions were closed."
    if request.revocation_reason:
        body = f"{body} Reason: {request.revocation_reason}"
    return NotificationMessage(
        kind=NotificationKind.REVOCATION.value,
        title="Access revoked",
        body=body,
        consent_request_id=request.id,
    )


def expiration_message(request: ConsentRequest, was_approved: bool) -> NotificationMessage:
    if was_approved:
        body = "Your access permission has expired."
    else:
        body = "An access request expired without a response."
    return NotificationMessage(
        kind=NotificationKind.EXPIRATION.value,
        title="Consent expired",
        body=body,
        consent_request_id=request.id,
    )


class NotificationService:
    """Inbox reads and read markers."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> Sequence[Notification]:
        query = select(Notification).where(Notification.recipient_id == recipient_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        query = query.order_by(Notification.created_at.desc()).limit(limit)

        result = await self.session.execute(query)
        return result.scalars().all()

    async def mark_read(self, notification_id: str, recipient_id: str) -> Notification | None:
        """Mark one notification read. Returns None if it is not the recipient's."""
        notification = await self.session.get(Notification, notification_id)
        if notification is None or notification.recipient_id != recipient_id:
            return None

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utc_now()
            await self.session.commit()
            await self.session.refresh(notification)
        return notification

    async def mark_all_read(self, recipient_id: str) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(Notification.recipient_id == recipient_id)
            .where(Notification.is_read.is_(False))
            .values(is_read=True, read_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount
