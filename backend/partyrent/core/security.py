"""Bearer token decoding for API callers.

Tokens are issued by the marketplace's auth service; this API only verifies
them and extracts the caller's id and role.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from partyrent.core.config import settings
from partyrent.core.exceptions import ForbiddenError, UnauthorizedError

ALGORITHM = "HS256"

ROLE_CLIENT = "CLIENT"
ROLE_PROVIDER = "PROVIDER"
ROLE_ADMIN = "ADMIN"

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller."""
    id: uuid.UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def create_access_token(
    user_id: uuid.UUID,
    role: str,
    expires_delta: timedelta = timedelta(minutes=15),
) -> str:
    """Create an access token. Used by tests and local tooling."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[CurrentUser]:
    """Decode and validate an access token.

    Returns:
        CurrentUser if the token is valid, None otherwise
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None

    if payload.get("type") != "access":
        return None

    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        return None

    return CurrentUser(id=user_id, role=payload.get("role", ROLE_CLIENT))


def create_onboarding_state(
    provider_id: uuid.UUID,
    expires_delta: timedelta = timedelta(hours=24),
) -> str:
    """Signed token carried through PayPal's onboarding redirect.

    The redirect back from PayPal is a plain browser navigation without an
    Authorization header, so the provider is identified by this token.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(provider_id),
        "type": "paypal_onboarding",
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_onboarding_state(token: Optional[str]) -> Optional[uuid.UUID]:
    """Return the provider id of a valid onboarding state, None otherwise."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None

    if payload.get("type") != "paypal_onboarding":
        return None

    try:
        return uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """FastAPI dependency resolving the caller from the Authorization header."""
    if credentials is None:
        raise UnauthorizedError("Authentication required. Please log in to continue.")

    user = decode_access_token(credentials.credentials)
    if user is None:
        raise UnauthorizedError("Invalid or expired token")
    return user


async def require_admin(
    user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """FastAPI dependency that only lets admins through."""
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user
