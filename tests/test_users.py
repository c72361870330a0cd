# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User management routes and the token/permission guard in front of them."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from midden_server.database import get_db
from midden_server.main import app
from midden_server.models import Role, User

pytestmark = pytest.mark.anyio

ADMIN_PERMISSIONS = ["read:public", "read:users", "write:users"]


async def _role_of(session_maker, user_id: int) -> str | None:
    async with session_maker() as session:
        return await session.scalar(
            select(Role.name).join(User, User.role_id == Role.id).where(User.id == user_id)
        )


async def test_no_authorization_header_is_401(client: AsyncClient):
    session = AsyncMock()

    async def watched_db():
        yield session

    app.dependency_overrides[get_db] = watched_db
    r = await client.get("/users")
    assert r.status_code == 401
    assert r.json()["detail"] == "Access Denied: No Token Provided"
    session.execute.assert_not_awaited()


@pytest.mark.parametrize("method,path", [("DELETE", "/users/1"), ("PATCH", "/users/1/role")])
async def test_write_routes_without_token_never_reach_storage(client: AsyncClient, method, path):
    session = AsyncMock()

    async def watched_db():
        yield session

    app.dependency_overrides[get_db] = watched_db
    r = await client.request(method, path, json={"roleId": 2})
    assert r.status_code == 401
    session.execute.assert_not_awaited()


async def test_non_bearer_scheme_is_401(client: AsyncClient):
    r = await client.get("/users", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert r.status_code == 401


async def test_wrongly_signed_token_is_403(client: AsyncClient, auth_header):
    r = await client.get("/users", headers=auth_header("Admin", ADMIN_PERMISSIONS, secret="not-ours"))
    assert r.status_code == 403
    assert r.json()["detail"] == "Access Denied: Invalid Token"


async def test_expired_token_is_403(client: AsyncClient, auth_header):
    headers = auth_header("Admin", ADMIN_PERMISSIONS, expires=timedelta(seconds=-1))
    r = await client.get("/users", headers=headers)
    assert r.status_code == 403


async def test_malformed_token_is_403(client: AsyncClient):
    r = await client.get("/users", headers={"Authorization": "Bearer not.a.jwt"})
    assert r.status_code == 403


async def test_missing_permission_is_403_naming_it(client: AsyncClient, auth_header):
    r = await client.get("/users", headers=auth_header("Viewer", ["read:public"]))
    assert r.status_code == 403
    body = r.json()
    assert body["detail"].startswith("Forbidden")
    assert body["required"] == "read:users"


async def test_list_users(client: AsyncClient, make_user, auth_header):
    admin_id = await make_user("root", role="Admin")
    viewer_id = await make_user("val")
    r = await client.get("/users", headers=auth_header("Editor", ["read:users"]))
    assert r.status_code == 200
    users = r.json()["users"]
    assert [u["id"] for u in users] == [admin_id, viewer_id]
    assert users[0] == {"id": admin_id, "username": "root", "email": "root@example.com", "role": "Admin"}


async def test_read_permission_cannot_delete(client: AsyncClient, make_user, auth_header):
    user_id = await make_user("wes")
    r = await client.delete(f"/users/{user_id}", headers=auth_header("Editor", ["read:users"]))
    assert r.status_code == 403
    assert r.json()["required"] == "write:users"


async def test_delete_user(client: AsyncClient, make_user, auth_header, session_maker):
    user_id = await make_user("xena")
    r = await client.delete(f"/users/{user_id}", headers=auth_header("Admin", ADMIN_PERMISSIONS))
    assert r.status_code == 200
    assert r.json()["message"] == "User deleted successfully"
    async with session_maker() as session:
        assert await session.get(User, user_id) is None


async def test_delete_admin_is_refused(client: AsyncClient, make_user, auth_header, session_maker):
    admin_id = await make_user("boss", role="Admin")
    r = await client.delete(f"/users/{admin_id}", headers=auth_header("Admin", ADMIN_PERMISSIONS))
    assert r.status_code == 403
    assert r.json()["detail"] == "Cannot delete an Admin user"
    assert await _role_of(session_maker, admin_id) == "Admin"


async def test_delete_missing_user_is_404(client: AsyncClient, auth_header):
    r = await client.delete("/users/999", headers=auth_header("Admin", ADMIN_PERMISSIONS))
    assert r.status_code == 404
    assert r.json()["detail"] == "User not found"


async def test_change_role(client: AsyncClient, make_user, auth_header, session_maker):
    user_id = await make_user("yuri")
    r = await client.patch(
        f"/users/{user_id}/role",
        json={"roleId": 2},
        headers=auth_header("Admin", ADMIN_PERMISSIONS),
    )
    assert r.status_code == 200
    assert r.json()["message"] == "User role updated"
    assert await _role_of(session_maker, user_id) == "Editor"


async def test_change_role_requires_role_id(client: AsyncClient, make_user, auth_header):
    user_id = await make_user("zed")
    r = await client.patch(
        f"/users/{user_id}/role", json={}, headers=auth_header("Admin", ADMIN_PERMISSIONS)
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "roleId is required"


async def test_change_role_of_admin_is_refused(client: AsyncClient, make_user, auth_header, session_maker):
    admin_id = await make_user("chief", role="Admin")
    r = await client.patch(
        f"/users/{admin_id}/role", json={"roleId": 3}, headers=auth_header("Admin", ADMIN_PERMISSIONS)
    )
    assert r.status_code == 403
    assert r.json()["detail"] == "Cannot modify role of an Admin user"
    assert await _role_of(session_maker, admin_id) == "Admin"


async def test_change_role_of_missing_user_is_404(client: AsyncClient, auth_header):
    r = await client.patch(
        "/users/999/role", json={"roleId": 2}, headers=auth_header("Admin", ADMIN_PERMISSIONS)
    )
    assert r.status_code == 404
    assert r.json()["detail"] == "User not found"


async def test_change_to_unknown_role_is_404(client: AsyncClient, make_user, auth_header):
    user_id = await make_user("ugo")
    r = await client.patch(
        f"/users/{user_id}/role", json={"roleId": 77}, headers=auth_header("Admin", ADMIN_PERMISSIONS)
    )
    assert r.status_code == 404
    assert r.json()["detail"] == "Role not found"


@pytest.mark.parametrize("path", [f"/users/{2**70}", "/users/0"])
async def test_delete_out_of_range_id_is_422(client: AsyncClient, auth_header, path):
    r = await client.delete(path, headers=auth_header("Admin", ADMIN_PERMISSIONS))
    assert r.status_code == 422


async def test_change_to_out_of_range_role_is_422(client: AsyncClient, make_user, auth_header):
    user_id = await make_user("vic")
    r = await client.patch(
        f"/users/{user_id}/role", json={"roleId": 2**70}, headers=auth_header("Admin", ADMIN_PERMISSIONS)
    )
    assert r.status_code == 422
