"""Authentication for web API: JWT bearer tokens and role checks.

Tokens are issued by the platform identity service. `sub` is the user id,
`role` the platform role.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config
from arena.models import Tournament

http_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str = "user"


def create_access_token(user_id: int, role: str = "user") -> str:
    expire = datetime.now(timezone.utc) + timedelta(days=config.JWT_EXPIRE_DAYS)
    payload = {"sub": str(user_id), "role": role, "exp": expire}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    x_auth_token: Optional[str] = Header(None, alias="X-Auth-Token"),
) -> Optional[Actor]:
    """Return the actor from the JWT, or None if not authenticated. Accepts Authorization: Bearer or X-Auth-Token."""
    token = None
    if credentials and credentials.credentials:
        token = credentials.credentials
    elif x_auth_token:
        token = x_auth_token
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    return Actor(user_id=user_id, role=str(payload.get("role") or "user"))


async def require_actor(
    actor: Optional[Actor] = Depends(get_current_actor),
) -> Actor:
    """Require authenticated actor. Raises 401 if not logged in."""
    if not actor:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


def is_admin(actor: Actor) -> bool:
    return actor.role.lower() in config.ADMIN_ROLE_NAMES


def ensure_manager(actor: Actor, tournament: Tournament) -> Actor:
    """Require the tournament's organizer or an admin. Raises 403 otherwise."""
    if actor.user_id != tournament.organizer_id and not is_admin(actor):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organizer or admin access required")
    return actor


async def require_admin_actor(
    actor: Actor = Depends(require_actor),
) -> Actor:
    """Dependency: require logged-in admin."""
    if not is_admin(actor):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor
