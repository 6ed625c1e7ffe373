"""Permission repository built on BaseRepository (composition)."""

from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any

from sqlalchemy import Select

from repokit.core.cache import QueryCache
from repokit.core.database import Database
from repokit.core.logging import get_logger
from repokit.models.permission import Permission, PermissionAction, PermissionResource
from repokit.models.role import Role
from repokit.repositories.base import BaseRepository
from repokit.repositories.options import RepositoryOptions


class PermissionRepository:
    """Repository for Permission entities using composition pattern.

    Args:
        database: Database handle; the application default when None
        cache: Query cache; the process-wide default when None
    """

    def __init__(self, database: Database | None = None, cache: QueryCache | None = None) -> None:
        self._base_repo: BaseRepository[Permission] = BaseRepository(Permission, database=database, cache=cache)
        self._logger = get_logger(f"{__name__}.PermissionRepository")

    @property
    def base(self) -> BaseRepository[Permission]:
        return self._base_repo

    # ========================================================================
    # DELEGATED METHODS
    # ========================================================================

    async def create(self, payload: Mapping[str, Any], opts: RepositoryOptions | None = None) -> Permission:
        return await self._base_repo.create(payload, opts)

    async def first_or_create(
        self,
        search: Mapping[str, Any],
        payload: Mapping[str, Any] | None = None,
        opts: RepositoryOptions | None = None,
    ) -> Permission:
        return await self._base_repo.first_or_create(search, payload, opts)

    async def update_or_create(
        self,
        search: Mapping[str, Any],
        payload: Mapping[str, Any],
        opts: RepositoryOptions | None = None,
    ) -> Permission:
        return await self._base_repo.update_or_create(search, payload, opts)

    async def list(self, opts: RepositoryOptions | None = None) -> Sequence[Permission]:
        return await self._base_repo.list(opts)

    async def count(self, opts: RepositoryOptions | None = None) -> int:
        return await self._base_repo.count(opts)

    # ========================================================================
    # CUSTOM PERMISSION METHODS
    # ========================================================================

    async def find_by_resource_action(
        self,
        resource: PermissionResource | str,
        action: PermissionAction | str,
        opts: RepositoryOptions | None = None,
    ) -> Permission | None:
        """Find the permission for one resource/action pair."""
        opts = opts or RepositoryOptions()

        def matching(query: Select[Any]) -> Select[Any]:
            return query.where(
                Permission.resource == PermissionResource(resource),
                Permission.action == PermissionAction(action),
            )

        return await self._base_repo.first(replace(opts, modify_query=[*opts.modify_query, matching]))

    async def for_role(self, slug: str, opts: RepositoryOptions | None = None) -> Sequence[Permission]:
        """Permissions granted by the role with ``slug``, ordered by name."""
        opts = opts or RepositoryOptions()

        def granted_by_role(query: Select[Any]) -> Select[Any]:
            return query.join(Permission.roles).where(Role.slug == slug)

        return await self._base_repo.list(
            replace(
                opts,
                sort_by=opts.sort_by or "name",
                modify_query=[*opts.modify_query, granted_by_role],
            )
        )
