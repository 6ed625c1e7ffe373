"""Database models."""

from repokit.models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDMixin
from repokit.models.permission import (
    Permission,
    PermissionAction,
    PermissionResource,
    role_permissions,
)
from repokit.models.role import Role, user_roles
from repokit.models.user import User

__all__ = [
    "Base",
    "SoftDeleteMixin",
    "TimestampMixin",
    "UUIDMixin",
    "Permission",
    "PermissionAction",
    "PermissionResource",
    "Role",
    "User",
    "role_permissions",
    "user_roles",
]
