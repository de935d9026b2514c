"""Bearer tokens naming the party behind an API call.

Tokens are issued by the marketplace identity layer; this module only
signs test/dev tokens and verifies incoming ones. A token carries the
party id in ``sub`` and the party's role in ``actor_role``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from consent_gate.core.config import settings

TOKEN_TYPE = "access"
ROLE_CLAIM = "actor_role"

# Roles a caller may present; background jobs act as "system" without a token
PARTY_ROLES = frozenset({"patient", "provider", "admin"})


@dataclass(frozen=True)
class PartyClaims:
    party_id: str
    role: str


def create_access_token(
    subject: str,
    actor_role: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Sign a token for a patient, provider or admin.

    Raises:
        ValueError: If the role is not one a party can hold
    """
    if actor_role not in PARTY_ROLES:
        raise ValueError(f"cannot issue a token for role {actor_role!r}")

    now = datetime.now(timezone.utc)
    claims = {
        "sub": subject,
        ROLE_CLAIM: actor_role,
        "type": TOKEN_TYPE,
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes)),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> PartyClaims | None:
    """Verify a token and pull out the party it names.

    Returns None for a bad signature, an expired token, a token of another
    type or one without a subject. The role is returned as presented so the
    caller can tell an unknown role apart from a missing token.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    if payload.get("type") != TOKEN_TYPE or not payload.get("sub"):
        return None

    return PartyClaims(
        party_id=str(payload["sub"]),
        role=str(payload.get(ROLE_CLAIM, "")),
    )
