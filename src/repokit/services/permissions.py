"""Permission services."""

from dataclasses import dataclass
from itertools import product

from sqlalchemy.ext.asyncio import AsyncSession

from repokit.core.logging import get_logger
from repokit.models.permission import Permission, PermissionAction, PermissionResource
from repokit.models.role import Role
from repokit.repositories.options import RepositoryOptions
from repokit.repositories.permissions import PermissionRepository
from repokit.repositories.roles import RoleRepository

logger = get_logger(__name__)

ADMIN_ROLE_SLUG = "admin"


@dataclass(frozen=True)
class PermissionData:
    """Input for ``CreatePermissionService``."""

    resource: PermissionResource
    action: PermissionAction
    name: str | None = None
    description: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or f"{PermissionResource(self.resource).value}.{PermissionAction(self.action).value}"


class CreatePermissionService:
    """Create a permission, or refresh name and description of the existing one.

    Permissions are unique per resource/action pair.
    """

    def __init__(self, permission_repository: PermissionRepository) -> None:
        self.permission_repository = permission_repository

    async def handle(self, data: PermissionData, transaction: AsyncSession | None = None) -> Permission:
        permission = await self.permission_repository.update_or_create(
            {"resource": PermissionResource(data.resource), "action": PermissionAction(data.action)},
            {"name": data.display_name, "description": data.description},
            RepositoryOptions(transaction=transaction),
        )
        logger.info("Permission saved", permission_id=str(permission.id), name=permission.name)
        return permission


class AssignDefaultPermissionsService:
    """Ensure every resource/action permission exists and the admin role holds them all."""

    def __init__(
        self,
        permission_repository: PermissionRepository,
        role_repository: RoleRepository,
    ) -> None:
        self.permission_repository = permission_repository
        self.role_repository = role_repository

    async def run(self, transaction: AsyncSession) -> Role:
        """Create missing default permissions and grant them to the admin role.

        Runs inside ``transaction``; the caller commits or rolls back.
        """
        opts = RepositoryOptions(transaction=transaction)

        permissions = [
            await self.permission_repository.first_or_create(
                {"resource": resource, "action": action},
                {"name": f"{resource.value}.{action.value}"},
                opts,
            )
            for resource, action in product(PermissionResource, PermissionAction)
        ]

        role = await self.role_repository.first_or_create(
            {"slug": ADMIN_ROLE_SLUG},
            {"name": "Administrator", "description": "Full access to every resource"},
            opts,
        )
        attached = await self.role_repository.attach_permissions(ADMIN_ROLE_SLUG, permissions, transaction)

        logger.info(
            "Default permissions assigned",
            permissions=len(permissions),
            attached=attached,
        )
        return role
