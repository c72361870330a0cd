# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication API routes: register, password login, 2FA verification."""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from midden_server.api.schemas import (
    LoginResponse,
    RegisterResponse,
    SessionUser,
    TokenResponse,
    UserCreate,
    UserLogin,
    UserSummary,
    VerifyTwoFactorRequest,
)
from midden_server.auth import Identity, create_access_token
from midden_server.database import get_db
from midden_server.services.accounts import authenticate_credentials, register_user
from midden_server.services.two_factor import VerificationCodeIssuer, get_code_issuer, verify_code

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


def _session_user(identity: Identity) -> SessionUser:
    return SessionUser(username=identity.username, role=identity.role, permissions=identity.permissions)


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
) -> RegisterResponse:
    """Create a new account with the Viewer role."""
    row = await register_user(db, data.username, data.email, data.password)
    return RegisterResponse(message="User registered", user=UserSummary.model_validate(row))


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
async def login(
    data: UserLogin,
    db: AsyncSession = Depends(get_db),
    issuer: VerificationCodeIssuer = Depends(get_code_issuer),
) -> LoginResponse:
    """Check the password and send a 2FA code. Guest logins get a token straight away."""
    principal = await authenticate_credentials(db, data.username, data.password)
    if isinstance(principal, Identity):
        return LoginResponse(
            message="Guest login successful",
            token=create_access_token(principal),
            user=_session_user(principal),
        )
    issued = await issuer.issue(db, principal.id, principal.email)
    return LoginResponse(
        message="Verification code sent to your email",
        user_id=principal.id,
        dev_code=issued.code if issuer.skip_delivery else None,
    )


@router.post("/verify-2fa", response_model=TokenResponse)
async def verify_two_factor(
    data: VerifyTwoFactorRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Exchange a valid one-time code for an access token."""
    identity = await verify_code(db, data.user_id, data.code)
    logger.info("User %s completed 2FA login", identity.username)
    return TokenResponse(
        message="Login successful",
        token=create_access_token(identity),
        user=_session_user(identity),
    )
