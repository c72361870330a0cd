# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pytest fixtures.

The app runs against an in-memory SQLite database seeded with the default
roles, and outgoing email goes to a recording fake. The app lifespan is not
started, so no PostgreSQL connection is attempted.
"""

from dataclasses import dataclass, field
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from midden_server.auth import Identity, create_access_token, hash_password
from midden_server.config import get_settings, settings
from midden_server.database import get_db, seed_rbac
from midden_server.main import app
from midden_server.models import Base, Role, User
from midden_server.services.email import get_email_sender


@dataclass
class FakeEmailSender:
    """Records sent codes; `fail` makes every send report failure."""

    fail: bool = False
    raise_error: bool = False
    sent: list[tuple[str, str]] = field(default_factory=list)

    async def send_verification_code(self, to: str, code: str) -> bool:
        if self.raise_error:
            raise ConnectionError("smtp down")
        self.sent.append((to, code))
        return not self.fail


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_maker(anyio_backend):
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        await seed_rbac(session)
    yield maker
    await engine.dispose()


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def test_settings():
    return settings.model_copy(update={"skip_email_verification": False})


@pytest.fixture
async def client(session_maker, email_sender, test_settings):
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_settings] = lambda: test_settings
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_maker):
    """Insert a user with the named role; returns its id."""

    async def _make_user(username: str, password: str = "s3cret-pass", role: str = "Viewer") -> int:
        async with session_maker() as session:
            role_id = await session.scalar(select(Role.id).where(Role.name == role))
            user = User(
                username=username,
                email=f"{username}@example.com",
                password_hash=hash_password(password),
                role_id=role_id,
            )
            session.add(user)
            await session.commit()
            return user.id

    return _make_user


@pytest.fixture
def auth_header():
    """Build an Authorization header for a token with the given claims."""

    def _auth_header(
        role: str,
        permissions: list[str],
        expires: timedelta | None = None,
        secret: str | None = None,
    ) -> dict[str, str]:
        identity = Identity(
            id=99, username="tester", email="tester@example.com", role=role, permissions=permissions
        )
        return {"Authorization": f"Bearer {create_access_token(identity, expires, secret)}"}

    return _auth_header
