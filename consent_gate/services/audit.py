"""Append-only audit recording and read-only audit queries.

Recording never fails the caller: if the audit store is unreachable the
event is logged at WARNING, counted in ``audit_health`` and surfaced by the
readiness endpoint. Nothing in the authorization path reads audit entries.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consent_gate.core.config import settings
from consent_gate.core.logging import audit_logger
from consent_gate.models.audit_entry import (
    ActorRole,
    AuditEntry,
    AuditEventType,
    Severity,
    TargetType,
)
from consent_gate.schemas.audit import AuditEntryFilter, AuditSummary
from consent_gate.utils.time import utc_now

logger = logging.getLogger(__name__)


HIGH_SEVERITY_EVENTS = frozenset(
    {
        AuditEventType.CONSENT_REVOKED,
        AuditEventType.ACCESS_DENIED,
        AuditEventType.FILE_EDITED,
    }
)
MEDIUM_SEVERITY_EVENTS = frozenset(
    {
        AuditEventType.CONSENT_GRANTED,
        AuditEventType.FILE_DOWNLOADED,
        AuditEventType.PAYMENT_MADE,
    }
)


def calculate_severity(event_type: AuditEventType, success: bool) -> Severity:
    """Severity of an audit entry."""
    if event_type == AuditEventType.EMERGENCY_ACCESS or not success:
        return Severity.CRITICAL
    if event_type in HIGH_SEVERITY_EVENTS:
        return Severity.HIGH
    if event_type in MEDIUM_SEVERITY_EVENTS:
        return Severity.MEDIUM
    return Severity.LOW


@dataclass
class AuditHealth:
    """Tracks audit sink degradation for health reporting."""

    total_failures: int = 0
    consecutive_failures: int = 0
    last_failure_at: datetime | None = None
    last_error: str | None = None
    failed_event_types: Counter = field(default_factory=Counter)

    @property
    def degraded(self) -> bool:
        return self.consecutive_failures > 0

    def record_failure(self, event_type: AuditEventType, error: BaseException) -> None:
        self.total_failures += 1
        self.consecutive_failures += 1
        self.last_failure_at = utc_now()
        self.last_error = repr(error)
        self.failed_event_types[event_type.value] += 1

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def snapshot(self) -> dict[str, Any]:
        return {
            "audit_degraded": self.degraded,
            "audit_failures": self.total_failures,
            "last_audit_failure_at": self.last_failure_at,
            "last_audit_error": self.last_error,
        }


audit_health = AuditHealth()


class AuditRecorder:
    """Writes audit entries through a dedicated session.

    Using a separate session keeps audit writes independent of the
    caller's transaction: a failed operation is still audited, and an
    audit failure never rolls back the operation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        health: AuditHealth | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.health = health if health is not None else audit_health

    async def record(
        self,
        event_type: AuditEventType,
        actor_id: str,
        actor_role: ActorRole,
        target_id: str,
        target_type: TargetType,
        action: str,
        details: dict[str, Any] | None = None,
        success: bool = True,
        failure_reason: str | None = None,
    ) -> AuditEntry | None:
        """Append one audit entry.

        Args:
            event_type: Kind of event (closed enumeration)
            actor_id: Party performing the action
            actor_role: Role of that party
            target_id: Affected entity
            target_type: Type of the affected entity
            action: Short verb describing what was attempted
            details: Additional JSON context
            success: Whether the action succeeded
            failure_reason: Machine-readable reason when it did not

        Returns:
            The stored entry, or None if the audit store was unavailable
        """
        # Unknown event kinds are programming errors, not sink failures
        event_type = AuditEventType(event_type)
        actor_role = ActorRole(actor_role)
        target_type = TargetType(target_type)
        entry = AuditEntry(
            event_type=event_type,
            actor_id=actor_id,
            actor_role=actor_role,
            target_id=target_id,
            target_type=target_type,
            action=action,
            details=details,
            success=success,
            failure_reason=failure_reason,
            severity=calculate_severity(event_type, success),
        )

        try:
            async with self.session_factory() as session:
                session.add(entry)
                await session.commit()
                if not success:
                    await self._check_repeated_failures(session, actor_id)
        except (SQLAlchemyError, OSError) as exc:
            self.health.record_failure(event_type, exc)
            audit_logger.degraded(event_type.value, exc)
            return None

        self.health.record_success()
        audit_logger.log(
            event_type=event_type.value,
            actor_role=actor_role.value,
            actor_id=actor_id,
            target_type=target_type.value,
            target_id=target_id,
            success=success,
            failure_reason=failure_reason,
            details=details,
        )
        return entry

    async def _check_repeated_failures(self, session: AsyncSession, actor_id: str) -> None:
        window = timedelta(minutes=settings.failed_access_alert_window_minutes)
        failures = await count_recent_failures(session, actor_id, window)
        if failures >= settings.failed_access_alert_threshold:
            logger.warning(
                f"Repeated failed actions by {actor_id}: {failures} in the last "
                f"{settings.failed_access_alert_window_minutes} minutes",
                extra={"actor_id": actor_id},
            )


async def count_recent_failures(
    session: AsyncSession, actor_id: str, window: timedelta
) -> int:
    """Count failed audit entries for an actor within a trailing window."""
    since = utc_now() - window
    result = await session.execute(
        select(func.count())
        .select_from(AuditEntry)
        .where(AuditEntry.actor_id == actor_id)
        .where(AuditEntry.success.is_(False))
        .where(AuditEntry.created_at >= since)
    )
    return result.scalar_one()


class AuditService:
    """Read-only access to audit entries, plus explicit retention pruning.

    Note: entries are created only through ``AuditRecorder.record``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _filtered(self, filters: AuditEntryFilter):
        query = select(AuditEntry)

        if filters.actor_id:
            query = query.where(AuditEntry.actor_id == filters.actor_id)
        if filters.actor_role:
            query = query.where(AuditEntry.actor_role == filters.actor_role)
        if filters.target_id:
            query = query.where(AuditEntry.target_id == filters.target_id)
        if filters.target_type:
            query = query.where(AuditEntry.target_type == filters.target_type)
        if filters.event_type:
            query = query.where(AuditEntry.event_type == filters.event_type)
        if filters.success is not None:
            query = query.where(AuditEntry.success.is_(filters.success))
        if filters.start:
            query = query.where(AuditEntry.created_at >= filters.start)
        if filters.end:
            query = query.where(AuditEntry.created_at <= filters.end)

        return query

    async def query(self, filters: AuditEntryFilter) -> list[AuditEntry]:
        """Query audit entries, newest first.

        Args:
            filters: Filter parameters

        Returns:
            List of matching audit entries
        """
        query = (
            self._filtered(filters)
            .order_by(AuditEntry.created_at.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_entry(self, entry_id: str) -> AuditEntry | None:
        result = await self.session.execute(
            select(AuditEntry).where(AuditEntry.id == entry_id)
        )
        return result.scalar_one_or_none()

    async def get_target_history(
        self,
        target_type: TargetType,
        target_id: str,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """Get audit history for one entity, newest first."""
        result = await self.session.execute(
            select(AuditEntry)
            .where(AuditEntry.target_type == target_type)
            .where(AuditEntry.target_id == target_id)
            .order_by(AuditEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def recent_failures(self, actor_id: str, window: timedelta | None = None) -> int:
        """Failed actions by ``actor_id`` in the trailing alert window."""
        window = window or timedelta(minutes=settings.failed_access_alert_window_minutes)
        return await count_recent_failures(self.session, actor_id, window)

    async def summarize(self, filters: AuditEntryFilter) -> AuditSummary:
        """Summarize all entries matching the filters (ignores pagination)."""
        result = await self.session.execute(self._filtered(filters))
        entries = list(result.scalars().all())

        by_event_type = Counter(str(AuditEventType(e.event_type).value) for e in entries)
        by_severity = Counter(str(Severity(e.severity).value) for e in entries)
        successes = sum(1 for e in entries if e.success)
        timestamps = [e.created_at for e in entries]

        return AuditSummary(
            total_entries=len(entries),
            by_event_type=dict(by_event_type),
            by_severity=dict(by_severity),
            success_rate=(successes / len(entries) * 100) if entries else 0.0,
            first_entry_at=min(timestamps) if timestamps else None,
            last_entry_at=max(timestamps) if timestamps else None,
        )

    async def prune_before(self, cutoff: datetime) -> int:
        """Delete entries older than ``cutoff``.

        This is the only deletion path for audit entries and is meant to be
        run explicitly by retention jobs, never from request handling.

        Returns:
            Number of entries removed
        """
        if self.session.bind.dialect.name == "postgresql":
            # Lets the append-only trigger accept this transaction's deletes
            await self.session.execute(text("SET LOCAL consent_gate.allow_audit_prune = 'on'"))

        result = await self.session.execute(
            delete(AuditEntry)
            .where(AuditEntry.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        logger.info(f"Pruned {result.rowcount} audit entries older than {cutoff.isoformat()}")
        return result.rowcount

    async def prune_expired(self) -> int:
        """Apply the configured retention period."""
        cutoff = utc_now() - timedelta(days=settings.audit_retention_days)
        return await self.prune_before(cutoff)
