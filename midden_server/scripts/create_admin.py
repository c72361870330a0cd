#!/usr/bin/env python3
# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Create admin user. Run: python -m midden_server.scripts.create_admin"""

import asyncio
import getpass
import sys

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from midden_server.auth import hash_password
from midden_server.database import async_session_maker, init_db
from midden_server.models import Role, User


async def create_admin(session: AsyncSession, username: str, email: str, password: str) -> bool:
    """Insert an Admin-role user. Returns False if the username or email is taken."""
    result = await session.execute(
        select(User.id).where(or_(User.username == username, User.email == email))
    )
    if result.first():
        return False
    role_id = await session.scalar(select(Role.id).where(Role.name == "Admin"))
    if role_id is None:
        raise RuntimeError("Admin role missing; run init_db first")
    session.add(
        User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            role_id=role_id,
        )
    )
    await session.commit()
    return True


async def main():
    await init_db()
    username = input("Admin username: ").strip()
    email = input("Admin email: ").strip()
    password = getpass.getpass("Password: ")
    if not username or not email or not password:
        print("All fields required")
        sys.exit(1)

    async with async_session_maker() as session:
        if not await create_admin(session, username, email, password):
            print("User already exists")
            sys.exit(1)
        print("Admin user created.")


if __name__ == "__main__":
    asyncio.run(main())
