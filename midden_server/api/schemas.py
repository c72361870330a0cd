# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pydantic schemas for API request/response."""

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# Largest id an INTEGER primary key can hold
MAX_ID = 2**31 - 1


# Auth
class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    email: EmailStr
    password: str = Field(min_length=1)


class UserLogin(BaseModel):
    username: str
    password: str


class VerifyTwoFactorRequest(BaseModel):
    # Clients may post the code as a JSON number
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    user_id: int = Field(alias="userId", ge=1, le=MAX_ID)
    code: str


class UserSummary(BaseModel):
    id: int
    username: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class RegisterResponse(BaseModel):
    message: str
    user: UserSummary


class SessionUser(BaseModel):
    username: str
    role: str
    permissions: list[str]


class LoginResponse(BaseModel):
    """Password step result. Guest logins carry token and user instead of userId."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    user_id: int | None = Field(default=None, alias="userId")
    dev_code: str | None = None
    token: str | None = None
    user: SessionUser | None = None


class TokenResponse(BaseModel):
    message: str
    token: str
    user: SessionUser


# Users
class UserListItem(BaseModel):
    id: int
    username: str
    email: str
    role: str | None = None

    model_config = ConfigDict(from_attributes=True)


class UsersListResponse(BaseModel):
    users: list[UserListItem]


class RoleUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role_id: int | None = Field(default=None, alias="roleId", le=MAX_ID)


class MessageResponse(BaseModel):
    message: str
