"""
Bearer-token identity for workflow endpoints.

Login and user management live elsewhere; this module only issues and
verifies the signed JWTs that carry a user id and role.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from madadkaro_server.core.config import get_settings
from madadkaro_shared.schemas.common import Role

settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedUser:
    """The acting user of a request."""

    user_id: uuid.UUID
    role: Role


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_access_token(
    user_id: uuid.UUID,
    role: Role,
    *,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token for a user."""
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "iat": now,
        "exp": exp,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> AuthenticatedUser:
    """Decode and verify a token. Raises jwt.PyJWTError on failure."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    try:
        return AuthenticatedUser(user_id=uuid.UUID(payload["sub"]), role=Role(payload["role"]))
    except (KeyError, ValueError) as exc:
        raise jwt.InvalidTokenError("malformed claims") from exc


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthenticatedUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return decode_access_token(credentials.credentials)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


async def require_customer(
    auth: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    if auth.role != Role.CUSTOMER:
        raise HTTPException(status_code=403, detail="Customer access required")
    return auth


async def require_tasker(
    auth: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    if auth.role != Role.TASKER:
        raise HTTPException(status_code=403, detail="Tasker access required")
    return auth
