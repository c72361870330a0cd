# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication: password hashing, JWT identity tokens and route guards."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict, ValidationError

from midden_server.config import settings
from midden_server.errors import Forbidden, InvalidToken, NoToken, Unauthenticated

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

GUEST_USERNAME = "guest"
GUEST_PASSWORD = "guest"


class Identity(BaseModel):
    """Authenticated principal as carried in token claims."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str | None = None
    role: str
    permissions: list[str] = []

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


# Static identity for the reserved guest login; never stored.
GUEST_IDENTITY = Identity(
    id=0,
    username=GUEST_USERNAME,
    email=None,
    role="Viewer",
    permissions=["read:public"],
)


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a password against its hash."""
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        # Unrecognised or corrupt hash
        return False


# Checked against when the username is unknown so both failure paths cost one bcrypt round.
_DUMMY_HASH = hash_password("midden_timing_dummy")


def verify_password_or_dummy(plain: str, hashed: str | None) -> bool:
    """Like verify_password, but still burns a hash comparison when there is no hash."""
    if hashed is None:
        verify_password(plain, _DUMMY_HASH)
        return False
    return verify_password(plain, hashed)


def is_guest_login(username: str, password: str) -> bool:
    return username == GUEST_USERNAME and password == GUEST_PASSWORD


def create_access_token(
    identity: Identity,
    expires_delta: timedelta | None = None,
    secret: str | None = None,
) -> str:
    """Create a signed JWT carrying the full identity."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    to_encode: dict[str, Any] = identity.model_dump()
    to_encode.update({"iat": now, "exp": expire})
    return jwt.encode(to_encode, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, secret: str | None = None) -> Identity:
    """Decode and validate a JWT.

    Bad signature, expiry, malformed input and missing claims all raise
    InvalidToken; the caller is not told which.
    """
    try:
        payload = jwt.decode(
            token, secret or settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
        return Identity.model_validate(payload)
    except (JWTError, ValidationError) as e:
        raise InvalidToken() from e


async def authenticate_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Identity:
    """Require a valid Bearer token and attach its identity to request.state."""
    if not credentials or not credentials.credentials:
        raise NoToken()
    identity = decode_token(credentials.credentials)
    request.state.identity = identity
    return identity


def get_request_identity(request: Request) -> Identity | None:
    """Identity attached by authenticate_token for this request, if any."""
    return getattr(request.state, "identity", None)


def check_permission(identity: Identity | None, permission: str) -> Identity:
    """Exact-match permission check; no wildcards or hierarchy."""
    if identity is None:
        raise Unauthenticated()
    if not identity.has_permission(permission):
        raise Forbidden(required=permission)
    return identity


def require_permission(permission: str) -> Callable[..., Any]:
    """Dependency factory: authenticate the request, then require `permission`.

    Usage:
        @router.get("/users")
        async def list_users(_: Identity = Depends(require_permission("read:users"))): ...
    """

    async def permission_gate(
        request: Request,
        _identity: Identity = Depends(authenticate_token),
    ) -> Identity:
        return check_permission(get_request_identity(request), permission)

    permission_gate.__name__ = f"require_{permission.replace(':', '_')}"
    return permission_gate
