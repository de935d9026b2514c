"""Payment endpoints for session access fees."""

from fastapi import APIRouter, HTTPException, status

from consent_gate.api.deps import CurrentActor, CurrentProvider, Gateway
from consent_gate.models.audit_entry import ActorRole
from consent_gate.models.payment import PaymentTransaction
from consent_gate.schemas.session import PaymentTransactionRead

router = APIRouter()


def _visible_to(transaction: PaymentTransaction | None, actor_id: str, role: ActorRole) -> bool:
    if transaction is None:
        return False
    return role == ActorRole.ADMIN or actor_id in (transaction.payer_id, transaction.payee_id)


@router.get("/{reference}", response_model=PaymentTransactionRead)
async def get_payment(
    reference: str,
    actor: CurrentActor,
    gateway: Gateway,
) -> PaymentTransaction:
    """Look up a transaction by our reference or the processor's."""
    transaction = await gateway.payment_gate.get_transaction(reference)
    if not _visible_to(transaction, actor.id, actor.role):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found",
        )
    return transaction


@router.post("/{reference}/confirm", response_model=PaymentTransactionRead)
async def confirm_payment(
    reference: str,
    provider: CurrentProvider,
    gateway: Gateway,
) -> PaymentTransaction:
    """Verify a payment with the processor and activate its session.

    Safe to repeat: a confirmed transaction is returned unchanged.
    """
    transaction = await gateway.payment_gate.get_transaction(reference)
    if not _visible_to(transaction, provider.id, ActorRole.PROVIDER):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found",
        )
    return await gateway.payment_gate.confirm_payment(reference)
