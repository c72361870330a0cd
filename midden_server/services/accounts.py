# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Account registration and password login."""

import logging

from sqlalchemy import Row, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from midden_server.auth import GUEST_IDENTITY, Identity, hash_password, is_guest_login, verify_password_or_dummy
from midden_server.errors import DuplicateUser, InvalidCredentials
from midden_server.models import User
from midden_server.models.role import Role

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "Viewer"
# Seeded id of the Viewer role, used if the lookup comes back empty.
DEFAULT_ROLE_ID = 3


async def register_user(db: AsyncSession, username: str, email: str, password: str) -> Row:
    """Create a user with the Viewer role. Returns (id, username, email).

    Two storage calls: role lookup, then insert. A uniqueness violation on
    username or email becomes DuplicateUser, including when two
    registrations race.
    """
    password_hash = hash_password(password)
    result = await db.execute(select(Role.id).where(Role.name == DEFAULT_ROLE))
    role_id = result.scalar_one_or_none() or DEFAULT_ROLE_ID
    try:
        result = await db.execute(
            insert(User)
            .values(
                username=username,
                email=email,
                password_hash=password_hash,
                role_id=role_id,
            )
            .returning(User.id, User.username, User.email)
        )
    except IntegrityError as e:
        logger.info("Registration rejected for %s: username or email taken", username)
        raise DuplicateUser() from e
    row = result.one()
    await db.commit()
    return row


async def authenticate_credentials(db: AsyncSession, username: str, password: str) -> Identity | User:
    """Check a username/password pair.

    The reserved guest pair returns the static guest identity without any
    storage access. Otherwise returns the stored User; unknown user and wrong
    password both raise InvalidCredentials.
    """
    if is_guest_login(username, password):
        return GUEST_IDENTITY
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if not verify_password_or_dummy(password, user.password_hash if user else None):
        raise InvalidCredentials()
    return user
