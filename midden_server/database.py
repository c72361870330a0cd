# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database connection, session management and startup bootstrap."""

import asyncio
import logging
from collections.abc import AsyncGenerator

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import selectinload

from midden_server.config import settings
from midden_server.models import Base, Permission, Role

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

DEFAULT_PERMISSIONS: dict[str, str] = {
    "read:public": "Read public content",
    "read:users": "List user accounts",
    "write:users": "Delete users and change their roles",
}

# Insertion order fixes the ids on a fresh database: Admin=1, Editor=2, Viewer=3.
DEFAULT_ROLES: dict[str, list[str]] = {
    "Admin": ["read:public", "read:users", "write:users"],
    "Editor": ["read:public", "read:users"],
    "Viewer": ["read:public"],
}


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI that yields a database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def wait_for_database(db_engine: AsyncEngine, retries: int, delay: float) -> None:
    """Block until the database answers SELECT 1, trying at most `retries` times."""
    attempt = 0
    while True:
        attempt += 1
        try:
            async with db_engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return
        except (OSError, SQLAlchemyError):
            if attempt >= retries:
                logger.error("Database not reachable after %d attempts", attempt)
                raise
            logger.warning(
                "Database not ready, retrying in %.0fs... (%d left)", delay, retries - attempt
            )
            await asyncio.sleep(delay)


async def seed_rbac(session: AsyncSession) -> None:
    """Insert the default permissions and roles that are missing. Existing roles are left as-is."""
    result = await session.execute(select(Permission))
    permissions = {p.slug: p for p in result.scalars()}
    for slug, description in DEFAULT_PERMISSIONS.items():
        if slug not in permissions:
            permissions[slug] = Permission(slug=slug, description=description)
            session.add(permissions[slug])

    result = await session.execute(select(Role).options(selectinload(Role.permissions)))
    roles = {r.name: r for r in result.scalars()}
    for name, slugs in DEFAULT_ROLES.items():
        if name not in roles:
            session.add(Role(name=name, permissions=[permissions[s] for s in slugs]))
    await session.commit()


async def init_db() -> None:
    """Wait for the database, create all tables and seed roles. Call at startup."""
    await wait_for_database(engine, settings.db_connect_retries, settings.db_connect_retry_delay)
    logger.info("Building tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session_maker() as session:
        await seed_rbac(session)
    logger.info("Database initialized")
