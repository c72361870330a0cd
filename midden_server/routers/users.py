# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User management API. Every route needs a token carrying the listed permission."""

import logging

from fastapi import APIRouter, Depends, Path
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from midden_server.api.schemas import MAX_ID, MessageResponse, RoleUpdate, UserListItem, UsersListResponse
from midden_server.auth import Identity, require_permission
from midden_server.database import get_db
from midden_server.errors import AdminProtected, MissingField, NotFound
from midden_server.models import Role, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

ADMIN_ROLE = "Admin"


async def _target_role_name(db: AsyncSession, user_id: int) -> str | None:
    """Role name of the target user; raises NotFound if there is no such user."""
    result = await db.execute(
        select(User.id, Role.name.label("role"))
        .outerjoin(Role, User.role_id == Role.id)
        .where(User.id == user_id)
    )
    row = result.first()
    if row is None:
        raise NotFound()
    return row.role


@router.get("", response_model=UsersListResponse)
async def list_users(
    _identity: Identity = Depends(require_permission("read:users")),
    db: AsyncSession = Depends(get_db),
) -> UsersListResponse:
    """List all users with their role name."""
    result = await db.execute(
        select(User.id, User.username, User.email, Role.name.label("role"))
        .outerjoin(Role, User.role_id == Role.id)
        .order_by(User.id.asc())
    )
    return UsersListResponse(users=[UserListItem.model_validate(r) for r in result.all()])


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int = Path(ge=1, le=MAX_ID),
    identity: Identity = Depends(require_permission("write:users")),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """Delete a user. Admin accounts cannot be deleted."""
    if await _target_role_name(db, user_id) == ADMIN_ROLE:
        raise AdminProtected("Cannot delete an Admin user")
    await db.execute(delete(User).where(User.id == user_id))
    await db.commit()
    logger.info("User %s deleted by %s", user_id, identity.username)
    return MessageResponse(message="User deleted successfully")


@router.patch("/{user_id}/role", response_model=MessageResponse)
async def update_user_role(
    data: RoleUpdate,
    user_id: int = Path(ge=1, le=MAX_ID),
    identity: Identity = Depends(require_permission("write:users")),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """Assign a different role. Admin accounts keep their role."""
    if not data.role_id:
        raise MissingField("roleId is required")
    if await _target_role_name(db, user_id) == ADMIN_ROLE:
        raise AdminProtected("Cannot modify role of an Admin user")
    role_id = await db.scalar(select(Role.id).where(Role.id == data.role_id))
    if role_id is None:
        raise NotFound("Role not found")
    await db.execute(update(User).where(User.id == user_id).values(role_id=role_id))
    await db.commit()
    logger.info("User %s moved to role %s by %s", user_id, role_id, identity.username)
    return MessageResponse(message="User role updated")
