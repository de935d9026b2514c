"""Default payment service used outside production."""

import logging
from uuid import uuid4

from consent_gate.services.collaborators import (
    ExternalPaymentStatus,
    PaymentService,
    PaymentSubmission,
    PaymentVerification,
)

logger = logging.getLogger(__name__)


class SimulatedPaymentService(PaymentService):
    """In-memory payment ledger.

    Submissions are accepted as pending and idempotent on ``reference``.
    ``settle`` / ``reject`` let operators and tests decide the outcome a
    later verification will observe.
    """

    def __init__(self, auto_confirm: bool = False) -> None:
        self.auto_confirm = auto_confirm
        self._by_reference: dict[str, str] = {}
        self._status: dict[str, ExternalPaymentStatus] = {}
        self._failure_reasons: dict[str, str] = {}

    async def submit_payment(
        self, payer: str, payee: str, amount: int, reference: str
    ) -> PaymentSubmission:
        if reference in self._by_reference:
            tx_ref = self._by_reference[reference]
            return PaymentSubmission(status=self._status[tx_ref], tx_ref=tx_ref)

        tx_ref = f"0x{uuid4().hex}{uuid4().hex}"
        self._by_reference[reference] = tx_ref
        self._status[tx_ref] = (
            ExternalPaymentStatus.CONFIRMED if self.auto_confirm else ExternalPaymentStatus.PENDING
        )
        logger.info(f"Submitted payment {reference}: {payer} -> {payee} amount={amount}")
        return PaymentSubmission(status=self._status[tx_ref], tx_ref=tx_ref)

    async def verify_payment(self, tx_ref: str) -> PaymentVerification:
        status = self._status.get(tx_ref)
        if status is None:
            return PaymentVerification(
                status=ExternalPaymentStatus.FAILED, failure_reason="Unknown transaction"
            )
        return PaymentVerification(status=status, failure_reason=self._failure_reasons.get(tx_ref))

    def settle(self, tx_ref: str) -> None:
        self._status[tx_ref] = ExternalPaymentStatus.CONFIRMED

    def reject(self, tx_ref: str, reason: str = "Payment rejected") -> None:
        self._status[tx_ref] = ExternalPaymentStatus.FAILED
        self._failure_reasons[tx_ref] = reason
