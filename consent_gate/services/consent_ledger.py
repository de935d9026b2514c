"""Consent ledger: the lifecycle of consent requests.

pending -> approved | denied | expired
approved -> revoked | expired

Every transition is a compare-and-set on the current status, run while
holding the (provider, patient) pair lock. Side effects that can fail
independently (notifications, audit, anchoring) run after the commit and
never undo it.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from consent_gate.core.config import settings
from consent_gate.core.errors import (
    ConsentNotFoundError,
    ConsentRevokedError,
    DuplicatePendingRequestError,
    ForbiddenActorError,
    InvalidRequestError,
    NotApprovedError,
    NotPendingError,
    RequestExpiredError,
    ScopeWidenedError,
)
from consent_gate.models.anchor import AnchorEvent, AnchorRecord
from consent_gate.models.audit_entry import ActorRole, AuditEventType, TargetType
from consent_gate.models.consent import (
    AccessLevel,
    ConsentRequest,
    ConsentStatus,
    DataType,
    Urgency,
    pair_key,
)
from consent_gate.models.permission import AccessPermission
from consent_gate.services.access_sessions import AccessSessionManager
from consent_gate.services.anchoring import AnchorReconciler
from consent_gate.services.audit import AuditRecorder
from consent_gate.services.collaborators import NotificationMessage, NotificationSink
from consent_gate.services.locks import PairLockRegistry, pair_locks
from consent_gate.services.notifications import (
    approval_message,
    denial_message,
    expiration_message,
    request_message,
    revocation_message,
)
from consent_gate.services.permissions import PermissionDeriver
from consent_gate.utils.time import ensure_utc, utc_now

logger = logging.getLogger(__name__)


WALLET_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


@dataclass(frozen=True)
class ProviderRef:
    provider_id: str
    address: str
    name: str | None = None


@dataclass(frozen=True)
class PatientRef:
    patient_id: str
    address: str


@dataclass(frozen=True)
class ConsentScope:
    """What a provider asks for."""

    access_level: AccessLevel | str
    data_types: list[str]
    purpose: str
    duration_days: int
    urgency: Urgency | str = Urgency.STANDARD
    justification: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class ApprovedScope:
    """What a patient grants. Unset fields keep the requested value."""

    access_level: AccessLevel | str | None = None
    data_types: list[str] | None = None
    duration_days: int | None = None
    conditions: list[str] = field(default_factory=list)


def response_window(urgency: Urgency) -> timedelta:
    """Time a patient has to answer a request of the given urgency."""
    if urgency == Urgency.EMERGENCY:
        return timedelta(hours=settings.emergency_response_hours)
    if urgency == Urgency.URGENT:
        return timedelta(hours=settings.urgent_response_hours)
    return timedelta(days=settings.standard_response_days)


def _parse(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [member.value for member in enum_cls]
        raise InvalidRequestError(
            f"Invalid {field_name}: {value!r}", field=field_name, allowed=allowed
        ) from None


def validate_request(
    provider: ProviderRef, patient: PatientRef, scope: ConsentScope
) -> tuple[AccessLevel, Urgency, list[str]]:
    """Validate a new consent request.

    Returns:
        Parsed access level, urgency and de-duplicated data types

    Raises:
        InvalidRequestError: On the first invalid field
    """
    if not provider.provider_id or not patient.patient_id:
        raise InvalidRequestError("Provider and patient are required")
    if provider.provider_id == patient.patient_id:
        raise InvalidRequestError("A provider cannot request access to itself")
    if not WALLET_ADDRESS_PATTERN.match(provider.address or ""):
        raise InvalidRequestError("Invalid provider wallet address", field="provider_address")
    if not WALLET_ADDRESS_PATTERN.match(patient.address or ""):
        raise InvalidRequestError("Invalid patient wallet address", field="patient_address")

    access_level = _parse(AccessLevel, scope.access_level, "access_level")
    urgency = _parse(Urgency, scope.urgency, "urgency")

    if not scope.data_types:
        raise InvalidRequestError("At least one data type is required", field="data_types")
    data_types: list[str] = []
    for value in scope.data_types:
        parsed = _parse(DataType, value, "data_types").value
        if parsed not in data_types:
            data_types.append(parsed)

    if len((scope.purpose or "").strip()) < settings.min_purpose_length:
        raise InvalidRequestError(
            f"Purpose must be at least {settings.min_purpose_length} characters",
            field="purpose",
        )

    if not settings.min_duration_days <= scope.duration_days <= settings.max_duration_days:
        raise InvalidRequestError(
            f"Duration must be between {settings.min_duration_days} and "
            f"{settings.max_duration_days} days",
            field="duration_days",
        )

    if urgency == Urgency.EMERGENCY and not (scope.justification or "").strip():
        raise InvalidRequestError(
            "Emergency requests require a justification", field="justification"
        )

    return access_level, urgency, data_types


def narrow_scope(
    request: ConsentRequest, approved: ApprovedScope | None
) -> tuple[AccessLevel, list[str], int]:
    """Resolve the approved scope, which may only narrow the request.

    Raises:
        InvalidRequestError: Empty data types or non-positive duration
        ScopeWidenedError: Level, data types or duration beyond the request
    """
    approved = approved or ApprovedScope()
    requested_level = AccessLevel(request.access_level)

    level = requested_level
    if approved.access_level is not None:
        level = _parse(AccessLevel, approved.access_level, "access_level")
        if not requested_level.covers(level):
            raise ScopeWidenedError(
                "Approved access level exceeds the requested level",
                requested=requested_level.value,
                approved=level.value,
            )

    data_types = list(request.data_types)
    if approved.data_types is not None:
        if not approved.data_types:
            raise InvalidRequestError(
                "At least one data type must be approved", field="data_types"
            )
        extra = [t for t in approved.data_types if t not in request.data_types]
        if extra:
            raise ScopeWidenedError(
                "Approved data types were not requested", data_types=extra
            )
        data_types = list(dict.fromkeys(approved.data_types))

    duration = request.duration_days
    if approved.duration_days is not None:
        if approved.duration_days < settings.min_duration_days:
            raise InvalidRequestError(
                "Approved duration must be positive", field="duration_days"
            )
        if approved.duration_days > request.duration_days:
            raise ScopeWidenedError(
                "Approved duration exceeds the requested duration",
                requested=request.duration_days,
                approved=approved.duration_days,
            )
        duration = approved.duration_days

    return level, data_types, duration


class ConsentLedger:
    """Creates consent requests and drives their state transitions."""

    def __init__(
        self,
        session: AsyncSession,
        permissions: PermissionDeriver,
        sessions: AccessSessionManager,
        anchors: AnchorReconciler,
        notifier: NotificationSink,
        audit: AuditRecorder,
        locks: PairLockRegistry | None = None,
    ) -> None:
        self.session = session
        self.permissions = permissions
        self.sessions = sessions
        self.anchors = anchors
        self.notifier = notifier
        self.audit = audit
        self.locks = locks or pair_locks

    # Commands

    async def create_request(
        self, provider: ProviderRef, patient: PatientRef, scope: ConsentScope
    ) -> ConsentRequest:
        """Create a pending consent request.

        Raises:
            InvalidRequestError: If the request fails validation
            DuplicatePendingRequestError: If the pair already has a live pending request
        """
        access_level, urgency, data_types = validate_request(provider, patient, scope)
        provider_id = provider.provider_id
        patient_id = patient.patient_id

        async with self.locks.hold(provider_id, patient_id):
            now = utc_now()
            await self._expire_stale_pending(provider_id, patient_id, now)

            request = ConsentRequest(
                provider_id=provider_id,
                provider_address=provider.address,
                provider_name=provider.name,
                patient_id=patient_id,
                patient_address=patient.address,
                access_level=access_level,
                data_types=data_types,
                purpose=scope.purpose.strip(),
                urgency=urgency,
                duration_days=scope.duration_days,
                justification=scope.justification,
                request_metadata=scope.metadata,
                status=ConsentStatus.PENDING,
                response_deadline=now + response_window(urgency),
                pending_pair_key=pair_key(provider_id, patient_id),
            )
            self.session.add(request)
            try:
                await self.session.flush()
            except IntegrityError:
                await self.session.rollback()
                raise DuplicatePendingRequestError(
                    "A pending request already exists for this provider and patient",
                    provider_id=provider_id,
                    patient_id=patient_id,
                ) from None

            record = self.anchors.enqueue(request, AnchorEvent.CONSENT_CREATED)
            await self.session.commit()

        logger.info(
            f"Consent request {request.id} created ({urgency.value}, "
            f"deadline {request.response_deadline.isoformat()})",
            extra={"consent_request_id": request.id, "actor_id": provider_id},
        )

        await self._notify(patient_id, ActorRole.PATIENT, request_message(request))
        await self.audit.record(
            AuditEventType.CONSENT_REQUESTED,
            actor_id=provider_id,
            actor_role=ActorRole.PROVIDER,
            target_id=request.id,
            target_type=TargetType.CONSENT,
            action="create_request",
            details={
                "patient_id": patient_id,
                "access_level": access_level.value,
                "data_types": data_types,
                "duration_days": scope.duration_days,
                "urgency": urgency.value,
            },
        )
        if urgency == Urgency.EMERGENCY:
            await self.audit.record(
                AuditEventType.EMERGENCY_ACCESS,
                actor_id=provider_id,
                actor_role=ActorRole.PROVIDER,
                target_id=request.id,
                target_type=TargetType.CONSENT,
                action="emergency_request",
                details={"patient_id": patient_id, "justification": scope.justification},
            )
        await self.anchors.attempt(record)
        return request

    async def approve(
        self,
        request_id: str,
        approver_id: str,
        approved_scope: ApprovedScope | None = None,
    ) -> ConsentRequest:
        """Approve a pending request, optionally narrowing its scope.

        Approving supersedes any older active permission for the same pair.

        Raises:
            ConsentNotFoundError, ForbiddenActorError, NotPendingError,
            RequestExpiredError, ScopeWidenedError, InvalidRequestError
        """
        request = await self._load(request_id)
        self._check_patient(request, approver_id)

        async with self.locks.hold(*request.pair):
            request = await self._load(request_id)
            now = utc_now()
            await self._check_pending(request, now)
            level, data_types, duration = narrow_scope(request, approved_scope)
            conditions = list(approved_scope.conditions) if approved_scope else []

            approved = await self._transition(
                request,
                ConsentStatus.PENDING,
                status=ConsentStatus.APPROVED,
                approved_at=now,
                approved_access_level=level,
                approved_data_types=data_types,
                approved_duration_days=duration,
                conditions=conditions or None,
                pending_pair_key=None,
            )
            if not approved:
                raise NotPendingError("Request is no longer pending", request_id=request_id)

            superseded: list[str] = []
            for previous in await self.permissions.list_active_for_pair(
                request.provider_id, request.patient_id
            ):
                if await self.permissions.deactivate(previous, "superseded"):
                    superseded += await self.sessions.end_for_permission(previous.id, "superseded")

            permission = await self.permissions.materialize(request)
            record = self.anchors.enqueue(request, AnchorEvent.APPROVED)
            await self.session.commit()

        await self.sessions.record_closed(superseded, "superseded")
        logger.info(
            f"Consent request {request.id} approved: {level.value} "
            f"{data_types} for {duration} days",
            extra={"consent_request_id": request.id, "actor_id": approver_id},
        )

        await self._notify(request.provider_id, ActorRole.PROVIDER, approval_message(request))
        await self.audit.record(
            AuditEventType.CONSENT_GRANTED,
            actor_id=approver_id,
            actor_role=ActorRole.PATIENT,
            target_id=request.id,
            target_type=TargetType.CONSENT,
            action="approve",
            details={
                "provider_id": request.provider_id,
                "permission_id": permission.id,
                "access_level": level.value,
                "data_types": data_types,
                "duration_days": duration,
                "narrowed": (
                    level != AccessLevel(request.access_level)
                    or data_types != list(request.data_types)
                    or duration != request.duration_days
                ),
                "conditions": conditions,
            },
        )
        await self.anchors.attempt(record)
        return request

    async def deny(
        self, request_id: str, approver_id: str, reason: str | None = None
    ) -> ConsentRequest:
        """Deny a pending request.

        Raises:
            ConsentNotFoundError, ForbiddenActorError, NotPendingError,
            RequestExpiredError
        """
        request = await self._load(request_id)
        self._check_patient(request, approver_id)

        async with self.locks.hold(*request.pair):
            request = await self._load(request_id)
            now = utc_now()
            await self._check_pending(request, now)

            denied = await self._transition(
                request,
                ConsentStatus.PENDING,
                status=ConsentStatus.DENIED,
                denied_at=now,
                denial_reason=reason,
                pending_pair_key=None,
            )
            if not denied:
                raise NotPendingError("Request is no longer pending", request_id=request_id)
            await self.session.commit()

        logger.info(
            f"Consent request {request.id} denied",
            extra={"consent_request_id": request.id, "actor_id": approver_id},
        )

        await self._notify(request.provider_id, ActorRole.PROVIDER, denial_message(request))
        await self.audit.record(
            AuditEventType.CONSENT_DENIED,
            actor_id=approver_id,
            actor_role=ActorRole.PATIENT,
            target_id=request.id,
            target_type=TargetType.CONSENT,
            action="deny",
            details={"provider_id": request.provider_id, "reason": reason},
        )
        return request

    async def revoke(
        self, request_id: str, approver_id: str, reason: str | None = None
    ) -> ConsentRequest:
        """Revoke an approved consent.

        The permission is deactivated and bound sessions are closed before
        this returns, so the next file access through them fails.

        Raises:
            ConsentNotFoundError, ForbiddenActorError, NotApprovedError,
            ConsentRevokedError, RequestExpiredError
        """
        request = await self._load(request_id)
        self._check_patient(request, approver_id)

        async with self.locks.hold(*request.pair):
            request = await self._load(request_id)
            if request.status == ConsentStatus.REVOKED:
                raise ConsentRevokedError("Consent is already revoked", request_id=request_id)
            if request.status != ConsentStatus.APPROVED:
                raise NotApprovedError(
                    "Only approved consents can be revoked",
                    request_id=request_id,
                    status=ConsentStatus(request.status).value,
                )

            now = utc_now()
            permission = await self.permissions.get_for_request(request.id)
            if permission is not None and now >= ensure_utc(permission.expires_at):
                await self._expire(request, now)
                raise RequestExpiredError("Consent has already expired", request_id=request_id)

            revoked = await self._transition(
                request,
                ConsentStatus.APPROVED,
                status=ConsentStatus.REVOKED,
                revoked_at=now,
                revocation_reason=reason,
            )
            if not revoked:
                raise NotApprovedError("Consent is no longer approved", request_id=request_id)

            closed = await self._cascade(request, "revoked")
            record = self.anchors.enqueue(request, AnchorEvent.REVOKED, reason=reason)
            await self.session.commit()

        await self.sessions.record_closed(closed, "revoked")
        logger.info(
            f"Consent request {request.id} revoked; {len(closed)} session(s) closed",
            extra={"consent_request_id": request.id, "actor_id": approver_id},
        )

        await self._notify(request.provider_id, ActorRole.PROVIDER, revocation_message(request))
        await self.audit.record(
            AuditEventType.CONSENT_REVOKED,
            actor_id=approver_id,
            actor_role=ActorRole.PATIENT,
            target_id=request.id,
            target_type=TargetType.CONSENT,
            action="revoke",
            details={
                "provider_id": request.provider_id,
                "reason": reason,
                "sessions_closed": len(closed),
            },
        )
        await self.anchors.attempt(record)
        return request

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """Expire pending requests past their deadline and lapsed approvals.

        Safe to run concurrently with itself and with user actions; each
        record is re-checked under its pair lock before the transition.

        Returns:
            Number of requests this call expired
        """
        now = now or utc_now()

        stale_pending = await self.session.execute(
            select(ConsentRequest.id, ConsentRequest.provider_id, ConsentRequest.patient_id)
            .where(ConsentRequest.status == ConsentStatus.PENDING)
            .where(ConsentRequest.response_deadline <= now)
        )
        lapsed_approved = await self.session.execute(
            select(ConsentRequest.id, ConsentRequest.provider_id, ConsentRequest.patient_id)
            .join(AccessPermission, AccessPermission.consent_request_id == ConsentRequest.id)
            .where(ConsentRequest.status == ConsentStatus.APPROVED)
            .where(AccessPermission.expires_at <= now)
        )
        candidates = list(stale_pending.all()) + list(lapsed_approved.all())

        expired = 0
        for request_id, provider_id, patient_id in candidates:
            async with self.locks.hold(provider_id, patient_id):
                request = await self.get_request(request_id)
                if request is None or not await self._is_lapsed(request, now):
                    continue
                if await self._expire(request, now):
                    expired += 1

        if expired:
            logger.info(f"Expiry sweep expired {expired} consent request(s)")
        return expired

    # Queries

    async def get_request(self, request_id: str) -> ConsentRequest | None:
        result = await self.session.execute(
            select(ConsentRequest)
            .where(ConsentRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_provider(
        self, provider_id: str, status: ConsentStatus | None = None
    ) -> list[ConsentRequest]:
        query = select(ConsentRequest).where(ConsentRequest.provider_id == provider_id)
        if status is not None:
            query = query.where(ConsentRequest.status == status)
        result = await self.session.execute(query.order_by(ConsentRequest.created_at.desc()))
        return list(result.scalars().all())

    async def list_for_patient(
        self, patient_id: str, status: ConsentStatus | None = None
    ) -> list[ConsentRequest]:
        query = select(ConsentRequest).where(ConsentRequest.patient_id == patient_id)
        if status is not None:
            query = query.where(ConsentRequest.status == status)
        result = await self.session.execute(query.order_by(ConsentRequest.created_at.desc()))
        return list(result.scalars().all())

    async def get_expiring(self, within_days: int = 7) -> list[ConsentRequest]:
        """Approved consents whose permission lapses within ``within_days``."""
        now = utc_now()
        result = await self.session.execute(
            select(ConsentRequest)
            .join(AccessPermission, AccessPermission.consent_request_id == ConsentRequest.id)
            .where(ConsentRequest.status == ConsentStatus.APPROVED)
            .where(AccessPermission.is_active.is_(True))
            .where(AccessPermission.expires_at > now)
            .where(AccessPermission.expires_at <= now + timedelta(days=within_days))
            .order_by(AccessPermission.expires_at)
        )
        return list(result.scalars().all())

    async def provider_stats(self, provider_id: str) -> dict[str, Any]:
        """Request outcomes for one provider."""
        requests = await self.list_for_provider(provider_id)
        by_status = Counter(ConsentStatus(r.status).value for r in requests)

        response_hours = []
        approved = 0
        decided = 0
        for r in requests:
            decided_at = r.approved_at or r.denied_at
            if decided_at is None:
                continue
            decided += 1
            if r.approved_at is not None:
                approved += 1
            delta = ensure_utc(decided_at) - ensure_utc(r.created_at)
            response_hours.append(delta.total_seconds() / 3600)

        return {
            "total_requests": len(requests),
            "by_status": {status.value: by_status.get(status.value, 0) for status in ConsentStatus},
            "approval_rate": round(approved / decided * 100, 2) if decided else 0.0,
            "average_response_hours": (
                round(sum(response_hours) / len(response_hours), 2) if response_hours else 0.0
            ),
        }

    # Internals

    async def _load(self, request_id: str) -> ConsentRequest:
        request = await self.get_request(request_id)
        if request is None:
            raise ConsentNotFoundError("Consent request not found", request_id=request_id)
        return request

    @staticmethod
    def _check_patient(request: ConsentRequest, approver_id: str) -> None:
        if approver_id != request.patient_id:
            raise ForbiddenActorError(
                "Only the patient can decide on this request", request_id=request.id
            )

    async def _check_pending(self, request: ConsentRequest, now: datetime) -> None:
        if request.status != ConsentStatus.PENDING:
            raise NotPendingError(
                "Request is not pending",
                request_id=request.id,
                status=ConsentStatus(request.status).value,
            )
        if now >= ensure_utc(request.response_deadline):
            await self._expire(request, now)
            raise RequestExpiredError(
                "Response deadline has passed", request_id=request.id
            )

    async def _is_lapsed(self, request: ConsentRequest, now: datetime) -> bool:
        if request.status == ConsentStatus.PENDING:
            return now >= ensure_utc(request.response_deadline)
        if request.status == ConsentStatus.APPROVED:
            permission = await self.permissions.get_for_request(request.id)
            return permission is not None and now >= ensure_utc(permission.expires_at)
        return False

    async def _expire_stale_pending(
        self, provider_id: str, patient_id: str, now: datetime
    ) -> None:
        result = await self.session.execute(
            select(ConsentRequest)
            .where(ConsentRequest.pending_pair_key == pair_key(provider_id, patient_id))
            .execution_options(populate_existing=True)
        )
        pending = result.scalar_one_or_none()
        if pending is not None and now >= ensure_utc(pending.response_deadline):
            await self._expire(pending, now)

    async def _transition(
        self, request: ConsentRequest, expected: ConsentStatus, **values: Any
    ) -> bool:
        """Compare-and-set the status; refreshes ``request`` on success."""
        result = await self.session.execute(
            update(ConsentRequest)
            .where(ConsentRequest.id == request.id)
            .where(ConsentRequest.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await self.session.refresh(request)
        return True

    async def _cascade(self, request: ConsentRequest, reason: str) -> list[str]:
        """Deactivate the request's permission and close its sessions.

        Returns:
            Ids of the sessions closed, to be audited once the caller commits
        """
        permission = await self.permissions.get_for_request(request.id)
        if permission is None:
            return []
        await self.permissions.deactivate(permission, reason)
        return await self.sessions.end_for_permission(permission.id, reason)

    async def _expire(self, request: ConsentRequest, now: datetime) -> bool:
        """Expire a pending or approved request and commit.

        Returns:
            True if this call performed the transition
        """
        previous = ConsentStatus(request.status)
        if previous not in (ConsentStatus.PENDING, ConsentStatus.APPROVED):
            return False

        expired = await self._transition(
            request,
            previous,
            status=ConsentStatus.EXPIRED,
            expired_at=now,
            pending_pair_key=None,
        )
        if not expired:
            return False

        closed: list[str] = []
        if previous == ConsentStatus.APPROVED:
            closed = await self._cascade(request, "expired")
        await self.session.commit()
        await self.sessions.record_closed(closed, "expired")

        was_approved = previous == ConsentStatus.APPROVED
        if was_approved:
            await self._notify(
                request.provider_id, ActorRole.PROVIDER, expiration_message(request, True)
            )
        else:
            await self._notify(
                request.patient_id, ActorRole.PATIENT, expiration_message(request, False)
            )
        await self.audit.record(
            AuditEventType.CONSENT_EXPIRED,
            actor_id="system",
            actor_role=ActorRole.SYSTEM,
            target_id=request.id,
            target_type=TargetType.CONSENT,
            action="expire",
            details={
                "previous_status": previous.value,
                "sessions_closed": len(closed),
            },
        )
        return True

    async def _notify(
        self, recipient_id: str, role: ActorRole, message: NotificationMessage
    ) -> None:
        try:
            await self.notifier.deliver(recipient_id, role, message)
        except Exception as exc:  # notifications are best-effort
            logger.warning(
                f"Notification {message.kind} to {recipient_id} failed: {exc!r}",
                extra={"consent_request_id": message.consent_request_id},
            )

    async def list_anchors(self, request_id: str) -> list[AnchorRecord]:
        result = await self.session.execute(
            select(AnchorRecord)
            .where(AnchorRecord.consent_request_id == request_id)
            .order_by(AnchorRecord.created_at)
        )
        return list(result.scalars().all())
