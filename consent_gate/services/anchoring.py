"""Two-phase anchoring of consent decisions.

Phase one writes an ``AnchorRecord`` in the same transaction as the state
change. Phase two calls the anchoring service, immediately on a best-effort
basis and later from the reconciliation job. A slow or failing anchor never
blocks or rolls back the consent transition.
"""

import hashlib
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from consent_gate.core.errors import ExternalServiceError
from consent_gate.models.anchor import AnchorEvent, AnchorRecord, AnchorStatus
from consent_gate.models.consent import AccessLevel, ConsentRequest
from consent_gate.services.collaborators import AnchoringService, call_with_retry
from consent_gate.utils.time import utc_now

logger = logging.getLogger(__name__)


class LedgerAnchoringService(AnchoringService):
    """Simulated tamper-evident ledger.

    In production this would submit a transaction to the consent contract;
    here the reference is a deterministic hash of the idempotency key, so
    repeated calls for one logical event yield one anchor.
    """

    def __init__(self, network: str = "simulated") -> None:
        self.network = network
        self.anchors: dict[str, str] = {}

    def _anchor(self, idempotency_key: str, payload: dict[str, Any]) -> str:
        if idempotency_key in self.anchors:
            return self.anchors[idempotency_key]
        digest = hashlib.sha256(idempotency_key.encode()).hexdigest()
        reference = f"0x{digest}"
        self.anchors[idempotency_key] = reference
        logger.info(f"Anchored {payload.get('event')} on {self.network}: {reference}")
        return reference

    async def anchor_consent(self, request: ConsentRequest, idempotency_key: str) -> str:
        return self._anchor(
            idempotency_key,
            {
                "event": AnchorEvent.CONSENT_CREATED.value,
                "provider": request.provider_address,
                "patient": request.patient_address,
                "access_level": AccessLevel(request.access_level).value,
                "duration_days": request.duration_days,
            },
        )

    async def anchor_approval(self, request_id: str, idempotency_key: str) -> str:
        return self._anchor(
            idempotency_key, {"event": AnchorEvent.APPROVED.value, "request_id": request_id}
        )

    async def anchor_revocation(
        self, request_id: str, reason: str, idempotency_key: str
    ) -> str:
        return self._anchor(
            idempotency_key,
            {"event": AnchorEvent.REVOKED.value, "request_id": request_id, "reason": reason},
        )


class AnchorReconciler:
    """Owns the anchor outbox for one database session."""

    def __init__(self, session: AsyncSession, anchoring: AnchoringService) -> None:
        self.session = session
        self.anchoring = anchoring

    def enqueue(
        self,
        request: ConsentRequest,
        event: AnchorEvent,
        reason: str | None = None,
    ) -> AnchorRecord:
        """Stage an anchor record; committed with the caller's transaction."""
        record = AnchorRecord(
            consent_request_id=request.id,
            event=event,
            idempotency_key=f"{request.id}:{event.value}",
            reason=reason,
            status=AnchorStatus.PENDING,
            attempts=0,
        )
        self.session.add(record)
        return record

    async def _dispatch(self, record: AnchorRecord, request: ConsentRequest) -> str:
        event = AnchorEvent(record.event)
        if event == AnchorEvent.CONSENT_CREATED:
            return await self.anchoring.anchor_consent(request, record.idempotency_key)
        if event == AnchorEvent.APPROVED:
            return await self.anchoring.anchor_approval(request.id, record.idempotency_key)
        return await self.anchoring.anchor_revocation(
            request.id, record.reason or "", record.idempotency_key
        )

    async def attempt(self, record: AnchorRecord) -> bool:
        """Try to anchor one record. Never raises for collaborator failures.

        Returns:
            True if the record is anchored after this call
        """
        if record.status == AnchorStatus.ANCHORED:
            return True

        request = await self.session.get(ConsentRequest, record.consent_request_id)
        if request is None:
            logger.warning(f"Dropping anchor for missing consent {record.consent_request_id}")
            return False

        record.attempts += 1
        try:
            reference = await call_with_retry(
                f"anchor_{AnchorEvent(record.event).value}",
                lambda: self._dispatch(record, request),
            )
        except ExternalServiceError as exc:
            record.status = AnchorStatus.FAILED
            record.last_error = exc.details.get("error") or exc.message
            await self.session.commit()
            logger.warning(
                f"Anchoring {AnchorEvent(record.event).value} for consent {request.id} deferred: {exc.message}",
                extra={"consent_request_id": request.id},
            )
            return False

        record.status = AnchorStatus.ANCHORED
        record.reference = reference
        record.anchored_at = utc_now()
        record.last_error = None
        if AnchorEvent(record.event) == AnchorEvent.CONSENT_CREATED:
            request.anchor_ref = reference
        else:
            request.decision_anchor_ref = reference
        await self.session.commit()
        return True

    async def list_outstanding(self, limit: int = 100) -> list[AnchorRecord]:
        result = await self.session.execute(
            select(AnchorRecord)
            .where(AnchorRecord.status.in_([AnchorStatus.PENDING, AnchorStatus.FAILED]))
            .order_by(AnchorRecord.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def reconcile(self, limit: int = 100) -> dict[str, int]:
        """Retry every outstanding anchor.

        Returns:
            Counts of anchored and still-outstanding records
        """
        anchored = 0
        outstanding = 0
        for record in await self.list_outstanding(limit):
            if await self.attempt(record):
                anchored += 1
            else:
                outstanding += 1

        if anchored or outstanding:
            logger.info(f"Anchor reconciliation: anchored={anchored} outstanding={outstanding}")
        return {"anchored": anchored, "outstanding": outstanding}
