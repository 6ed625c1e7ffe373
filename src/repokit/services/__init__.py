"""Application services built on the repositories."""

from repokit.services.permissions import (
    AssignDefaultPermissionsService,
    CreatePermissionService,
    PermissionData,
)
from repokit.services.users import PaginateUserService

__all__ = [
    "AssignDefaultPermissionsService",
    "CreatePermissionService",
    "PaginateUserService",
    "PermissionData",
]
