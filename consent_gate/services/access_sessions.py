"""Access sessions: bounded windows in which a provider uses a permission.

Every file touch re-reads the permission from the database. A revocation
or expiry committed before the touch is therefore always observed, and the
session is closed as soon as it is noticed.
"""

import logging
from dataclasses import dataclass
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from consent_gate.core.config import settings
from consent_gate.core.errors import (
    AccessControlError,
    FileNotFoundInStoreError,
    ForbiddenActorError,
    InvalidRequestError,
    NoValidPermissionError,
    OutOfScopeError,
    PaymentRequiredError,
    SessionNotActiveError,
    SessionNotFoundError,
)
from consent_gate.models.access_session import (
    OPEN_SESSION_STATES,
    AccessSession,
    FileAccessType,
    SessionState,
)
from consent_gate.models.audit_entry import ActorRole, AuditEntry, AuditEventType, TargetType
from consent_gate.models.consent import AccessLevel
from consent_gate.models.payment import PaymentTransaction
from consent_gate.models.permission import AccessPermission
from consent_gate.services.audit import AuditRecorder
from consent_gate.services.collaborators import FileStore
from consent_gate.services.locks import PairLockRegistry, pair_locks
from consent_gate.services.payment_gate import PaymentGate
from consent_gate.services.permissions import PermissionDeriver, is_valid
from consent_gate.utils.time import ensure_utc, format_datetime, utc_now

logger = logging.getLogger(__name__)


FILE_EVENTS = {
    FileAccessType.VIEW: AuditEventType.FILE_VIEWED,
    FileAccessType.DOWNLOAD: AuditEventType.FILE_DOWNLOADED,
    FileAccessType.EDIT: AuditEventType.FILE_EDITED,
}


@dataclass
class SessionStart:
    """Result of starting a session."""

    session: AccessSession
    payment: PaymentTransaction | None = None

    @property
    def payment_required(self) -> bool:
        return self.payment is not None


@dataclass(frozen=True)
class FileAccessGrant:
    """What a caller gets for a permitted file touch. Never the bytes."""

    session_id: str
    file_id: str
    category: str
    access_type: FileAccessType
    handle_ref: str
    is_encrypted: bool
    access_count: int


class AccessSessionManager:
    """Starts, uses and ends access sessions."""

    def __init__(
        self,
        session: AsyncSession,
        permissions: PermissionDeriver,
        payment_gate: PaymentGate,
        file_store: FileStore,
        audit: AuditRecorder,
        locks: PairLockRegistry | None = None,
    ) -> None:
        self.session = session
        self.permissions = permissions
        self.payment_gate = payment_gate
        self.file_store = file_store
        self.audit = audit
        self.locks = locks or pair_locks

    async def start(self, provider_id: str, patient_id: str) -> SessionStart:
        """Begin a session for the pair's currently valid permission.

        The session starts ``active`` when nothing is owed and
        ``pending_payment`` otherwise. The pair lock keeps an in-process
        revocation from landing between the permission check and the
        insert; the permission is read again before commit for revocations
        made elsewhere.

        Raises:
            NoValidPermissionError: If no active, unexpired permission exists
        """
        closed: str | None = None
        async with self.locks.hold(provider_id, patient_id):
            permission = await self.permissions.get_active_for_pair(provider_id, patient_id)
            if permission is not None:
                now = utc_now()
                access_session = AccessSession(
                    permission_id=permission.id,
                    provider_id=provider_id,
                    patient_id=patient_id,
                    state=SessionState.PENDING_PAYMENT,
                    started_at=now,
                    last_activity_at=now,
                    files_accessed=[],
                    access_count=0,
                )
                self.session.add(access_session)
                await self.session.flush()

                payment = await self.payment_gate.require_payment(access_session, permission)
                if payment is None:
                    access_session.state = SessionState.ACTIVE
                    access_session.activated_at = now

                current = await self.permissions.get(permission.id, for_update=True)
                if not is_valid(current):
                    access_session.state = SessionState.ENDED_BY_REVOCATION
                    access_session.ended_at = utc_now()
                    access_session.end_reason = "permission_invalid"
                    closed = access_session.id
                    permission = None

                await self.session.commit()
                await self.session.refresh(access_session)

        if closed is not None:
            logger.info(
                f"Session {closed} closed at start: permission revoked concurrently",
                extra={"session_id": closed, "actor_id": provider_id},
            )
            await self.record_closed([closed], "permission_invalid")

        if permission is None:
            await self.audit.record(
                AuditEventType.ACCESS_DENIED,
                actor_id=provider_id,
                actor_role=ActorRole.PROVIDER,
                target_id=patient_id,
                target_type=TargetType.PATIENT,
                action="start_session",
                success=False,
                failure_reason=NoValidPermissionError.code,
            )
            raise NoValidPermissionError(
                "No valid permission for this provider and patient",
                provider_id=provider_id,
                patient_id=patient_id,
            )

        details: dict[str, Any] = {
            "permission_id": permission.id,
            "patient_id": patient_id,
            "payment_required": payment is not None,
        }
        if payment is not None:
            details["payment_reference"] = payment.reference
            details["amount"] = int(payment.amount)

        logger.info(
            f"Session {access_session.id} started in state {SessionState(access_session.state).value}",
            extra={"session_id": access_session.id, "actor_id": provider_id},
        )
        await self.audit.record(
            AuditEventType.SESSION_STARTED,
            actor_id=provider_id,
            actor_role=ActorRole.PROVIDER,
            target_id=access_session.id,
            target_type=TargetType.SESSION,
            action="start_session",
            details=details,
        )
        return SessionStart(session=access_session, payment=payment)

    async def access_file(
        self,
        session_id: str,
        file_id: str,
        access_type: FileAccessType | str,
        actor_id: str | None = None,
    ) -> FileAccessGrant:
        """Touch one file through a session.

        Every refusal, including an unknown session or access type, is
        audited as ``access_denied`` against the file.

        Raises:
            InvalidRequestError: Unknown access type
            SessionNotFoundError: Unknown session
            PaymentRequiredError: Session still waiting for payment
            SessionNotActiveError: Session ended or permission no longer valid
            FileNotFoundInStoreError: Unknown file
            OutOfScopeError: File outside the permission's patient, categories or level
        """
        if isinstance(access_type, FileAccessType):
            requested = access_type.value
        else:
            requested = str(access_type)
        provider_id: str | None = None

        try:
            try:
                parsed = FileAccessType(requested)
            except ValueError:
                raise InvalidRequestError(
                    "Unknown access type", access_type=requested
                ) from None

            access_session = await self.get_session(session_id)
            if access_session is None:
                raise SessionNotFoundError("Access session not found", session_id=session_id)

            # Read before any rollback can expire the instance
            provider_id = access_session.provider_id
            patient_id = access_session.patient_id

            grant = await self._access_file(access_session, file_id, parsed, actor_id)
        except AccessControlError as exc:
            await self.audit.record(
                AuditEventType.ACCESS_DENIED,
                actor_id=actor_id or provider_id or "unknown",
                actor_role=ActorRole.PROVIDER,
                target_id=file_id,
                target_type=TargetType.FILE,
                action=f"{requested}_file",
                details={"session_id": session_id, "message": exc.message},
                success=False,
                failure_reason=exc.code,
            )
            raise

        await self.audit.record(
            FILE_EVENTS[parsed],
            actor_id=provider_id,
            actor_role=ActorRole.PROVIDER,
            target_id=file_id,
            target_type=TargetType.FILE,
            action=f"{requested}_file",
            details={
                "session_id": session_id,
                "patient_id": patient_id,
                "category": grant.category,
                "access_count": grant.access_count,
            },
        )
        return grant

    async def _access_file(
        self,
        access_session: AccessSession,
        file_id: str,
        access_type: FileAccessType,
        actor_id: str | None,
    ) -> FileAccessGrant:
        session_id = access_session.id
        if actor_id is not None and actor_id != access_session.provider_id:
            raise ForbiddenActorError(
                "Session belongs to another provider", session_id=session_id
            )

        state = SessionState(access_session.state)
        if state == SessionState.PENDING_PAYMENT:
            raise PaymentRequiredError(
                "Payment must be confirmed before files can be accessed",
                session_id=session_id,
            )
        if state != SessionState.ACTIVE:
            raise SessionNotActiveError(
                "Access session is not active", session_id=session_id, state=state.value
            )

        now = utc_now()
        permission = await self.permissions.get(access_session.permission_id)
        if not is_valid(permission, now):
            await self._force_end(session_id, "permission_invalid")
            raise SessionNotActiveError(
                "Permission is no longer valid; session closed", session_id=session_id
            )

        resolved = await self.file_store.resolve(file_id)
        if resolved is None:
            raise FileNotFoundInStoreError("File not found", file_id=file_id)

        if resolved.patient_id != access_session.patient_id:
            raise OutOfScopeError("File belongs to another patient", file_id=file_id)
        if resolved.category not in permission.allowed_data_types:
            raise OutOfScopeError(
                "File category is not covered by the permission",
                file_id=file_id,
                category=resolved.category,
            )
        if not AccessLevel(permission.access_level).covers(access_type.required_level):
            raise OutOfScopeError(
                "Access type exceeds the permitted access level",
                access_type=access_type.value,
                access_level=AccessLevel(permission.access_level).value,
            )

        # Count only against a permission that is still valid at write time
        counted = await self.session.execute(
            update(AccessPermission)
            .where(AccessPermission.id == permission.id)
            .where(AccessPermission.is_active.is_(True))
            .where(AccessPermission.expires_at > now)
            .values(
                access_count=AccessPermission.access_count + 1,
                last_accessed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if counted.rowcount != 1:
            await self._force_end(session_id, "permission_invalid")
            raise SessionNotActiveError(
                "Permission is no longer valid; session closed", session_id=session_id
            )

        entry = {
            "file_id": file_id,
            "access_type": access_type.value,
            "at": format_datetime(now),
        }
        # Append against the counter last seen; a concurrent touch moves it
        while True:
            seen = access_session.access_count or 0
            touched = await self.session.execute(
                update(AccessSession)
                .where(AccessSession.id == session_id)
                .where(AccessSession.state == SessionState.ACTIVE)
                .where(AccessSession.access_count == seen)
                .values(
                    last_activity_at=now,
                    access_count=seen + 1,
                    files_accessed=list(access_session.files_accessed or []) + [entry],
                )
                .execution_options(synchronize_session=False)
            )
            if touched.rowcount == 1:
                break

            access_session = await self.get_session(session_id)
            if access_session is None or not access_session.is_active:
                await self.session.rollback()
                raise SessionNotActiveError(
                    "Access session is not active", session_id=session_id
                )

        await self.session.commit()
        await self.session.refresh(permission)

        return FileAccessGrant(
            session_id=session_id,
            file_id=resolved.file_id,
            category=resolved.category,
            access_type=access_type,
            handle_ref=resolved.handle_ref,
            is_encrypted=resolved.is_encrypted,
            access_count=permission.access_count,
        )

    async def _force_end(self, session_id: str, reason: str) -> None:
        result = await self.session.execute(
            update(AccessSession)
            .where(AccessSession.id == session_id)
            .where(AccessSession.state.in_(list(OPEN_SESSION_STATES)))
            .values(
                state=SessionState.ENDED_BY_REVOCATION,
                ended_at=utc_now(),
                end_reason=reason,
            )
            .returning(AccessSession.id)
            .execution_options(synchronize_session=False)
        )
        closed = list(result.scalars().all())
        await self.session.commit()
        logger.info(
            f"Session {session_id} force-ended: {reason}",
            extra={"session_id": session_id},
        )
        await self.record_closed(closed, reason)

    async def end(self, session_id: str, actor_id: str | None = None) -> AccessSession:
        """End a session. Ending an already closed session is a no-op."""
        access_session = await self.get_session(session_id)
        if access_session is None:
            raise SessionNotFoundError("Access session not found", session_id=session_id)
        if actor_id is not None and actor_id != access_session.provider_id:
            raise ForbiddenActorError(
                "Session belongs to another provider", session_id=session_id
            )
        if not access_session.is_open:
            return access_session

        result = await self.session.execute(
            update(AccessSession)
            .where(AccessSession.id == session_id)
            .where(AccessSession.state.in_(list(OPEN_SESSION_STATES)))
            .values(state=SessionState.ENDED, ended_at=utc_now(), end_reason="ended_by_provider")
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        await self.session.refresh(access_session)

        if result.rowcount == 1:
            await self.audit.record(
                AuditEventType.SESSION_ENDED,
                actor_id=access_session.provider_id,
                actor_role=ActorRole.PROVIDER,
                target_id=session_id,
                target_type=TargetType.SESSION,
                action="end_session",
                details={"files_accessed": len(access_session.files_accessed or [])},
            )
        return access_session

    async def end_for_permission(self, permission_id: str, reason: str) -> list[str]:
        """Close every open session bound to a permission.

        Part of the caller's transaction; the caller commits and then
        passes the returned ids to :meth:`record_closed`.

        Returns:
            Ids of the sessions closed
        """
        result = await self.session.execute(
            update(AccessSession)
            .where(AccessSession.permission_id == permission_id)
            .where(AccessSession.state.in_(list(OPEN_SESSION_STATES)))
            .values(
                state=SessionState.ENDED_BY_REVOCATION,
                ended_at=utc_now(),
                end_reason=reason,
            )
            .returning(AccessSession.id)
            .execution_options(synchronize_session=False)
        )
        closed = list(result.scalars().all())
        if closed:
            logger.info(f"Closed {len(closed)} session(s) for permission {permission_id}: {reason}")
        return closed

    async def expire_abandoned(self, now: datetime | None = None) -> int:
        """End unpaid sessions past the payment window and idle active ones."""
        now = now or utc_now()
        payment_cutoff = now - timedelta(minutes=settings.payment_confirmation_window_minutes)
        idle_cutoff = now - timedelta(minutes=settings.session_idle_timeout_minutes)

        unpaid = await self.session.execute(
            update(AccessSession)
            .where(AccessSession.state == SessionState.PENDING_PAYMENT)
            .where(AccessSession.started_at < payment_cutoff)
            .values(state=SessionState.ENDED, ended_at=now, end_reason="payment_timeout")
            .returning(AccessSession.id)
            .execution_options(synchronize_session=False)
        )
        unpaid_ids = list(unpaid.scalars().all())
        idle = await self.session.execute(
            update(AccessSession)
            .where(AccessSession.state == SessionState.ACTIVE)
            .where(AccessSession.last_activity_at < idle_cutoff)
            .values(state=SessionState.ENDED, ended_at=now, end_reason="idle_timeout")
            .returning(AccessSession.id)
            .execution_options(synchronize_session=False)
        )
        idle_ids = list(idle.scalars().all())
        await self.session.commit()

        total = len(unpaid_ids) + len(idle_ids)
        if total:
            logger.info(f"Ended {len(unpaid_ids)} unpaid and {len(idle_ids)} idle session(s)")
        await self.record_closed(unpaid_ids, "payment_timeout")
        await self.record_closed(idle_ids, "idle_timeout")
        return total

    async def record_closed(self, session_ids: Iterable[str], reason: str) -> None:
        """Audit sessions the system closed. Call only after the closure commits."""
        for session_id in session_ids:
            await self.audit.record(
                AuditEventType.SESSION_ENDED,
                actor_id="system",
                actor_role=ActorRole.SYSTEM,
                target_id=session_id,
                target_type=TargetType.SESSION,
                action="close_session",
                details={"end_reason": reason},
            )

    async def get_session(self, session_id: str) -> AccessSession | None:
        result = await self.session.execute(
            select(AccessSession)
            .where(AccessSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_provider(
        self, provider_id: str, state: SessionState | None = None
    ) -> list[AccessSession]:
        query = select(AccessSession).where(AccessSession.provider_id == provider_id)
        if state is not None:
            query = query.where(AccessSession.state == state)
        result = await self.session.execute(query.order_by(AccessSession.started_at.desc()))
        return list(result.scalars().all())

    async def provider_stats(self, provider_id: str) -> dict[str, Any]:
        """Usage statistics for one provider."""
        sessions = await self.list_for_provider(provider_id)

        durations = [
            (ensure_utc(s.ended_at) - ensure_utc(s.started_at)).total_seconds() / 60
            for s in sessions
            if s.ended_at is not None
        ]
        failures = await self.session.execute(
            select(func.count())
            .select_from(AuditEntry)
            .where(AuditEntry.actor_id == provider_id)
            .where(AuditEntry.event_type == AuditEventType.ACCESS_DENIED)
        )

        return {
            "total_sessions": len(sessions),
            "open_sessions": sum(1 for s in sessions if s.is_open),
            "file_accesses": sum(s.access_count or 0 for s in sessions),
            "access_failures": failures.scalar_one(),
            "total_paid": await self.payment_gate.total_paid_by_provider(provider_id),
            "average_session_minutes": (
                round(sum(durations) / len(durations), 2) if durations else 0.0
            ),
        }
