"""Role repository built on BaseRepository (composition)."""

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from repokit.core.cache import QueryCache
from repokit.core.database import Database
from repokit.core.logging import get_logger
from repokit.models.permission import Permission
from repokit.models.role import Role
from repokit.repositories.base import BaseRepository
from repokit.repositories.options import RepositoryOptions


class RoleRepository:
    """Repository for Role entities using composition pattern.

    Args:
        database: Database handle; the application default when None
        cache: Query cache; the process-wide default when None
    """

    def __init__(self, database: Database | None = None, cache: QueryCache | None = None) -> None:
        self._base_repo: BaseRepository[Role] = BaseRepository(Role, database=database, cache=cache)
        self._logger = get_logger(f"{__name__}.RoleRepository")

    @property
    def base(self) -> BaseRepository[Role]:
        return self._base_repo

    async def first_or_create(
        self,
        search: Mapping[str, Any],
        payload: Mapping[str, Any] | None = None,
        opts: RepositoryOptions | None = None,
    ) -> Role:
        return await self._base_repo.first_or_create(search, payload, opts)

    async def find_by_slug(self, slug: str, opts: RepositoryOptions | None = None) -> Role | None:
        return await self._base_repo.find_by("slug", slug, opts)

    async def attach_permissions(
        self,
        slug: str,
        permissions: Iterable[Permission],
        transaction: AsyncSession,
    ) -> int:
        """Grant ``permissions`` to the role with ``slug`` inside ``transaction``.

        Permissions the role already has are skipped.

        Returns:
            Number of permissions newly attached

        Raises:
            NotFoundError: If no role has ``slug``
        """
        role = await self._base_repo.find_by_or_fail(
            "slug",
            slug,
            RepositoryOptions(
                transaction=transaction,
                preload=["permissions"],
                modify_query=[lambda query: query.execution_options(populate_existing=True)],
            ),
        )
        granted = {permission.id for permission in role.permissions}
        missing = [permission for permission in permissions if permission.id not in granted]
        role.permissions.extend(missing)
        await transaction.flush()

        self._logger.info("Permissions attached to role", slug=slug, attached=len(missing))
        return len(missing)
