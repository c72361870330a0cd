# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database models."""

from midden_server.models.base import Base
from midden_server.models.role import Permission, Role, role_permissions
from midden_server.models.user import User
from midden_server.models.verification_code import VerificationCode

__all__ = [
    "Base",
    "Permission",
    "Role",
    "role_permissions",
    "User",
    "VerificationCode",
]
