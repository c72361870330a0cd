# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Failure kinds raised by the authentication core and their HTTP mapping.

Every kind carries a fixed status code and a stable message. Messages never
include exception text from storage or delivery.
"""

from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse


class AuthError(Exception):
    """Base class for recognised failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Server error"

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        if message is not None:
            self.message = message
        self.extra = extra
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        return {"detail": self.message, **self.extra}


class InvalidCredentials(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid credentials"


class DuplicateUser(AuthError):
    status_code = status.HTTP_409_CONFLICT
    message = "Username or email already exists"


class InvalidOrExpiredCode(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid or expired code"


class NoToken(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Access Denied: No Token Provided"


class InvalidToken(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Access Denied: Invalid Token"


class Unauthenticated(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "User not authenticated"


class Forbidden(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Forbidden: You do not have permission to perform this action"

    def __init__(self, required: str) -> None:
        super().__init__(required=required)
        self.required = required


class NotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "User not found"


class AdminProtected(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Cannot modify an Admin user"


class MissingField(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Missing required field"


class ServerError(AuthError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Server error"


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthError as a JSON body with its mapped status."""
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)
