# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""One-time login codes: issue after a correct password, verify before a token."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends
from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from midden_server.auth import Identity
from midden_server.config import Settings, get_settings
from midden_server.errors import InvalidOrExpiredCode, ServerError
from midden_server.models import Permission, Role, User, VerificationCode, role_permissions
from midden_server.services.email import EmailSender, get_email_sender

logger = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999


def generate_code() -> str:
    """Uniform 6-digit code from a CSPRNG; never starts with 0."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


@dataclass
class IssuedCode:
    code: str
    expires_at: datetime
    delivered: bool


class VerificationCodeIssuer:
    """Stores a fresh code for a user and hands it to the email sender.

    Earlier unexpired codes are left in place. Delivery problems are logged
    and never fail the login.
    """

    def __init__(self, sender: EmailSender, ttl_minutes: int = 10, skip_delivery: bool = False) -> None:
        self.sender = sender
        self.ttl = timedelta(minutes=ttl_minutes)
        self.skip_delivery = skip_delivery

    async def issue(
        self,
        db: AsyncSession,
        user_id: int,
        email: str,
        now: datetime | None = None,
    ) -> IssuedCode:
        code = generate_code()
        expires_at = (now or datetime.now(timezone.utc)) + self.ttl
        await db.execute(
            insert(VerificationCode).values(user_id=user_id, code=code, expires_at=expires_at)
        )
        await db.commit()

        if self.skip_delivery:
            logger.info("[DEV] Verification code for %s: %s", email, code)
            return IssuedCode(code=code, expires_at=expires_at, delivered=False)
        try:
            delivered = await self.sender.send_verification_code(email, code)
        except Exception:
            logger.exception("Verification email to %s raised", email)
            delivered = False
        if not delivered:
            logger.warning("Verification code for user %s was not delivered", user_id)
        return IssuedCode(code=code, expires_at=expires_at, delivered=delivered)


def get_code_issuer(
    sender: EmailSender = Depends(get_email_sender),
    settings: Settings = Depends(get_settings),
) -> VerificationCodeIssuer:
    """Dependency building an issuer around the application's email sender."""
    return VerificationCodeIssuer(
        sender,
        ttl_minutes=settings.verification_code_ttl_minutes,
        skip_delivery=settings.skip_email_verification,
    )


async def load_identity(db: AsyncSession, user_id: int) -> Identity | None:
    """User, role name and the role's permission slugs in one query.

    A role without permissions yields an empty list. Returns None if the
    user (or its role) does not exist.
    """
    result = await db.execute(
        select(
            User.id,
            User.username,
            User.email,
            Role.name.label("role"),
            Permission.slug,
        )
        .join(Role, User.role_id == Role.id)
        .outerjoin(role_permissions, role_permissions.c.role_id == Role.id)
        .outerjoin(Permission, Permission.id == role_permissions.c.permission_id)
        .where(User.id == user_id)
        .order_by(Permission.id)
    )
    rows = result.all()
    if not rows:
        return None
    first = rows[0]
    permissions = list(dict.fromkeys(r.slug for r in rows if r.slug is not None))
    return Identity(
        id=first.id,
        username=first.username,
        email=first.email,
        role=first.role,
        permissions=permissions,
    )


async def verify_code(
    db: AsyncSession,
    user_id: int,
    code: str,
    now: datetime | None = None,
) -> Identity:
    """Consume a login code and return the user's identity.

    On a match every code of the user is deleted, not only the matched one.
    The lookup and the delete are separate statements, so two overlapping
    attempts with the same code can both pass the lookup.
    """
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(VerificationCode.id)
        .where(
            VerificationCode.user_id == user_id,
            VerificationCode.code == code,
            VerificationCode.expires_at > now,
        )
        .limit(1)
    )
    if result.first() is None:
        raise InvalidOrExpiredCode()

    await db.execute(delete(VerificationCode).where(VerificationCode.user_id == user_id))
    await db.commit()

    identity = await load_identity(db, user_id)
    if identity is None:
        logger.error("Code verified for user %s but the user could not be loaded", user_id)
        raise ServerError()
    return identity
