"""
Actor resolution for marketplace routes.
"""
from enum import Enum
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPAuthorizationCredentials

from marketplace.core.security import decode_token, security


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    ADMIN = "admin"


def _actor_from_payload(payload: dict) -> dict:
    actor_id_raw = payload.get("sub") or payload.get("actor_id")
    if actor_id_raw is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing actor identifier (sub)",
        )
    try:
        role = ActorRole(payload.get("role", ""))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token does not carry a marketplace role",
        )
    return {"actor_id": int(actor_id_raw), "role": role}


class ActorChecker:
    """Dependency that resolves the caller and checks its marketplace role."""

    def __init__(self, *allowed_roles: ActorRole):
        self.allowed_roles = set(allowed_roles)

    async def __call__(
        self,
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> dict:
        actor = _actor_from_payload(decode_token(credentials.credentials))
        if actor["role"] not in self.allowed_roles and actor["role"] != ActorRole.ADMIN:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {', '.join(sorted(r.value for r in self.allowed_roles))}",
            )
        return actor


require_customer = ActorChecker(ActorRole.CUSTOMER)
require_supplier = ActorChecker(ActorRole.SUPPLIER)
require_any_actor = ActorChecker(ActorRole.CUSTOMER, ActorRole.SUPPLIER)
