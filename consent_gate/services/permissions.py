"""Permission derivation from approved consent requests."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from consent_gate.core.errors import InvalidSourceError
from consent_gate.models.consent import ConsentRequest, ConsentStatus
from consent_gate.models.permission import AccessPermission
from consent_gate.utils.time import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def is_valid(permission: AccessPermission | None, now: datetime | None = None) -> bool:
    """A permission is usable iff it is active and not yet expired."""
    if permission is None or not permission.is_active:
        return False
    now = now or utc_now()
    return now < ensure_utc(permission.expires_at)


def permission_expiry(request: ConsentRequest) -> datetime:
    """Absolute expiry: approval time plus the approved duration."""
    return ensure_utc(request.approved_at) + timedelta(days=request.approved_duration_days)


class PermissionDeriver:
    """Materializes and deactivates access permissions.

    Writes are flushed but not committed; the calling service owns the
    transaction so a consent transition and its permission change commit
    together.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    is_valid = staticmethod(is_valid)

    async def materialize(self, request: ConsentRequest) -> AccessPermission:
        """Create or refresh the permission for an approved request.

        Idempotent: a second call for the same request updates the existing
        row instead of adding another.

        Raises:
            InvalidSourceError: If the request is not approved
        """
        if request.status != ConsentStatus.APPROVED or request.approved_at is None:
            raise InvalidSourceError(
                "Permissions can only be derived from approved consent requests",
                consent_request_id=request.id,
                status=str(ConsentStatus(request.status).value),
            )

        access_level = request.approved_access_level or request.access_level
        data_types = list(request.approved_data_types or request.data_types)
        granted_at = ensure_utc(request.approved_at)
        expires_at = permission_expiry(request)

        permission = await self.get_for_request(request.id)
        if permission is None:
            permission = AccessPermission(
                consent_request_id=request.id,
                provider_id=request.provider_id,
                patient_id=request.patient_id,
                access_level=access_level,
                allowed_data_types=data_types,
                granted_at=granted_at,
                expires_at=expires_at,
                access_count=0,
                is_active=True,
            )
            self.session.add(permission)
            logger.info(
                f"Materialized permission for consent {request.id} "
                f"({request.provider_id}->{request.patient_id}, expires {expires_at.isoformat()})",
                extra={"consent_request_id": request.id},
            )
        else:
            permission.access_level = access_level
            permission.allowed_data_types = data_types
            permission.granted_at = granted_at
            permission.expires_at = expires_at
            permission.is_active = True
            permission.deactivated_at = None
            permission.deactivation_reason = None

        await self.session.flush()
        return permission

    async def deactivate(self, permission: AccessPermission, reason: str) -> bool:
        """Deactivate a permission if it is still active.

        Returns:
            True if this call performed the deactivation
        """
        result = await self.session.execute(
            update(AccessPermission)
            .where(AccessPermission.id == permission.id)
            .where(AccessPermission.is_active.is_(True))
            .values(is_active=False, deactivated_at=utc_now(), deactivation_reason=reason)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(permission)
        return result.rowcount == 1

    async def get(
        self, permission_id: str, for_update: bool = False
    ) -> AccessPermission | None:
        """Load a permission, always reading current database state.

        ``for_update`` row-locks it until the caller commits, where the
        backend supports it.
        """
        query = select(AccessPermission).where(AccessPermission.id == permission_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def get_for_request(self, consent_request_id: str) -> AccessPermission | None:
        result = await self.session.execute(
            select(AccessPermission)
            .where(AccessPermission.consent_request_id == consent_request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_active_for_pair(
        self, provider_id: str, patient_id: str
    ) -> list[AccessPermission]:
        result = await self.session.execute(
            select(AccessPermission)
            .where(AccessPermission.provider_id == provider_id)
            .where(AccessPermission.patient_id == patient_id)
            .where(AccessPermission.is_active.is_(True))
            .order_by(AccessPermission.granted_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_active_for_pair(
        self, provider_id: str, patient_id: str
    ) -> AccessPermission | None:
        """Most recent permission for the pair that is currently valid."""
        now = utc_now()
        for permission in await self.list_active_for_pair(provider_id, patient_id):
            if is_valid(permission, now):
                return permission
        return None

    async def list_for_provider(self, provider_id: str) -> list[AccessPermission]:
        result = await self.session.execute(
            select(AccessPermission)
            .where(AccessPermission.provider_id == provider_id)
            .order_by(AccessPermission.granted_at.desc())
        )
        return list(result.scalars().all())

    async def list_for_patient(self, patient_id: str) -> list[AccessPermission]:
        result = await self.session.execute(
            select(AccessPermission)
            .where(AccessPermission.patient_id == patient_id)
            .order_by(AccessPermission.granted_at.desc())
        )
        return list(result.scalars().all())
