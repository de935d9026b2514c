"""Composition root wiring the access control services on one session."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consent_gate.services.access_sessions import AccessSessionManager
from consent_gate.services.anchoring import AnchorReconciler, LedgerAnchoringService
from consent_gate.services.audit import AuditHealth, AuditRecorder, AuditService
from consent_gate.services.collaborators import (
    AnchoringService,
    FileStore,
    NotificationSink,
    PaymentService,
    ProviderDirectory,
)
from consent_gate.services.consent_ledger import ConsentLedger
from consent_gate.services.file_store import DatabaseFileStore
from consent_gate.services.locks import PairLockRegistry
from consent_gate.services.notifications import DatabaseNotificationSink, NotificationService
from consent_gate.services.payment_gate import PaymentGate, StaticProviderDirectory
from consent_gate.services.payments import SimulatedPaymentService
from consent_gate.services.permissions import PermissionDeriver


class AccessControlGateway:
    """All access control services for one unit of work.

    Collaborators default to the in-process implementations; pass real
    ones (or fakes in tests) to override.
    """

    def __init__(
        self,
        session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        anchoring: AnchoringService | None = None,
        payment_service: PaymentService | None = None,
        file_store: FileStore | None = None,
        notifier: NotificationSink | None = None,
        directory: ProviderDirectory | None = None,
        audit_health: AuditHealth | None = None,
        locks: PairLockRegistry | None = None,
    ) -> None:
        self.session = session
        self.audit = AuditRecorder(session_factory, health=audit_health)
        self.audit_queries = AuditService(session)
        self.permissions = PermissionDeriver(session)
        self.payment_gate = PaymentGate(
            session,
            payment_service or SimulatedPaymentService(),
            directory or StaticProviderDirectory(),
            self.permissions,
            self.audit,
        )
        self.sessions = AccessSessionManager(
            session,
            self.permissions,
            self.payment_gate,
            file_store or DatabaseFileStore(session),
            self.audit,
            locks=locks,
        )
        self.anchors = AnchorReconciler(session, anchoring or LedgerAnchoringService())
        self.ledger = ConsentLedger(
            session,
            self.permissions,
            self.sessions,
            self.anchors,
            notifier or DatabaseNotificationSink(session_factory),
            self.audit,
            locks=locks,
        )
        self.notifications = NotificationService(session)
