# backend/partsdb/security.py

"""
Acting-identity helpers for the procurement core.

Responsibilities:
- Decode the bearer token issued by the identity service
- FastAPI dependencies for the current actor
- Role-based access helpers for router dependencies

This core does not authenticate users or store credentials. It verifies the
token signature, reads the `sub` / `role` claims and records the identity on
every mutating operation for audit attribution.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Set, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

# In production, ALWAYS override these via environment variables.
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Used by FastAPI's OpenAPI docs; tokens are issued by the identity service.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class ActorRole(str, enum.Enum):
    ADMIN = "ADMIN"
    DISPATCHER = "DISPATCHER"
    BUYER = "BUYER"
    STOREKEEPER = "STOREKEEPER"
    TECHNICIAN = "TECHNICIAN"


@dataclass(frozen=True)
class Actor:
    """The identity a request acts on behalf of."""

    id: str
    role: ActorRole
    name: Optional[str] = None


# ---------------------------------------------------------------------------
# JWT TOKENS
# ---------------------------------------------------------------------------


def create_access_token(
    *,
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed JWT.

    Only used by tooling and tests; production tokens come from the
    identity service and must include `sub` and `role`.
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta if expires_delta is not None else timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def actor_from_token(token: str) -> Actor:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise _credentials_exception()

    subject = payload.get("sub")
    if not subject:
        raise _credentials_exception()
    try:
        role = ActorRole(str(payload.get("role", "")).upper())
    except ValueError:
        raise _credentials_exception()
    return Actor(id=str(subject), role=role, name=payload.get("name"))


# ---------------------------------------------------------------------------
# FASTAPI DEPENDENCIES
# ---------------------------------------------------------------------------


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    """
    Decode the bearer token and return the acting identity.
    """
    return actor_from_token(token)


# ---------------------------------------------------------------------------
# ROLE-BASED ACCESS HELPER
# ---------------------------------------------------------------------------


def require_roles(
    *allowed_roles: Union[ActorRole, str],
) -> Callable[[Actor], Actor]:
    """
    Dependency factory to enforce that the current actor has one of the given roles.

    Usage:
        @router.post(...)
        def endpoint(actor: Actor = Depends(require_roles(ActorRole.BUYER))):
            ...

    ADMIN always passes, even if not explicitly listed in `allowed_roles`.
    """
    normalised_roles: Set[ActorRole] = set()
    for r in allowed_roles:
        if isinstance(r, ActorRole):
            normalised_roles.add(r)
        else:
            try:
                normalised_roles.add(ActorRole(r))
            except ValueError:
                raise ValueError(f"Unknown role {r!r} passed to require_roles()")

    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role == ActorRole.ADMIN:
            return actor
        if actor.role not in normalised_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this operation",
            )
        return actor

    return dependency
