"""FastAPI dependency injection utilities."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consent_gate.core.security import PARTY_ROLES, PartyClaims, decode_access_token
from consent_gate.db.session import AsyncSessionLocal, get_db
from consent_gate.models.audit_entry import ActorRole
from consent_gate.services.anchoring import LedgerAnchoringService
from consent_gate.services.collaborators import (
    AnchoringService,
    PaymentService,
    ProviderDirectory,
)
from consent_gate.services.gateway import AccessControlGateway
from consent_gate.services.payment_gate import StaticProviderDirectory
from consent_gate.services.payments import SimulatedPaymentService

# Security scheme
security = HTTPBearer(auto_error=False)

# Process-wide collaborators; their simulated state must outlive a request
_anchoring_service = LedgerAnchoringService()
_payment_service = SimulatedPaymentService()
_provider_directory = StaticProviderDirectory()


@dataclass(frozen=True)
class Actor:
    """The authenticated caller."""

    id: str
    role: ActorRole


async def get_current_claims(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> PartyClaims | None:
    """Verify the bearer token, if any."""
    if not credentials:
        return None

    return decode_access_token(credentials.credentials)


async def get_current_actor(
    claims: Annotated[PartyClaims | None, Depends(get_current_claims)],
) -> Actor:
    """Get the authenticated patient, provider or admin.

    Raises:
        HTTPException: If the token is missing, invalid or carries no known role
    """
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if claims.role not in PARTY_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unknown actor role",
        )

    return Actor(id=claims.party_id, role=ActorRole(claims.role))


def require_role(*roles: ActorRole):
    """Create a dependency that requires one of the given roles.

    Usage:
        provider: Annotated[Actor, Depends(require_role(ActorRole.PROVIDER))]
    """

    async def role_checker(
        actor: Annotated[Actor, Depends(get_current_actor)],
    ) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(r.value for r in roles).capitalize()} authentication required",
            )
        return actor

    return role_checker


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for writers that need their own transaction (audit, inbox)."""
    return AsyncSessionLocal


def get_anchoring_service() -> AnchoringService:
    return _anchoring_service


def get_payment_service() -> PaymentService:
    return _payment_service


def get_provider_directory() -> ProviderDirectory:
    return _provider_directory


async def get_gateway(
    session: Annotated[AsyncSession, Depends(get_db)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    anchoring: Annotated[AnchoringService, Depends(get_anchoring_service)],
    payment_service: Annotated[PaymentService, Depends(get_payment_service)],
    directory: Annotated[ProviderDirectory, Depends(get_provider_directory)],
) -> AccessControlGateway:
    """Wire the access control services for one request."""
    return AccessControlGateway(
        session,
        session_factory,
        anchoring=anchoring,
        payment_service=payment_service,
        directory=directory,
    )


# Type aliases for cleaner dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
CurrentPatient = Annotated[Actor, Depends(require_role(ActorRole.PATIENT))]
CurrentProvider = Annotated[Actor, Depends(require_role(ActorRole.PROVIDER))]
CurrentAdmin = Annotated[Actor, Depends(require_role(ActorRole.ADMIN))]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Gateway = Annotated[AccessControlGateway, Depends(get_gateway)]
