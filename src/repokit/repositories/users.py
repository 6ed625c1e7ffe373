"""User repository built on BaseRepository (composition)."""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from typing import Any

from sqlalchemy import Select, or_
from sqlalchemy.orm import selectinload

from repokit.core.cache import QueryCache
from repokit.core.database import Database
from repokit.core.logging import get_logger
from repokit.models.user import User
from repokit.repositories.base import BaseRepository
from repokit.repositories.options import (
    BatchResult,
    FilterCriteria,
    PaginatedResult,
    PaginateOptions,
    QueryModifier,
    RepositoryOptions,
)


def include_roles(query: Select[Any]) -> Select[Any]:
    """Scope: load each user's roles with a second SELECT ... IN query."""
    return query.options(selectinload(User.roles))


def search(term: str) -> QueryModifier:
    """Modifier matching ``term`` anywhere in the full name or email."""
    pattern = f"%{term}%"

    def modifier(query: Select[Any]) -> Select[Any]:
        return query.where(or_(User.full_name.like(pattern), User.email.like(pattern)))

    return modifier


class UserRepository:
    """Repository for User entities using composition pattern.

    Standard operations are delegated to ``BaseRepository[User]``; the
    ``include_roles`` scope and the ``search`` modifier are user specific.

    Args:
        database: Database handle; the application default when None
        cache: Query cache; the process-wide default when None
    """

    SCOPES: Mapping[str, QueryModifier] = {"include_roles": include_roles}

    def __init__(self, database: Database | None = None, cache: QueryCache | None = None) -> None:
        self._base_repo: BaseRepository[User] = BaseRepository(
            User, database=database, cache=cache, scopes=self.SCOPES
        )
        self._logger = get_logger(f"{__name__}.UserRepository")

    @property
    def base(self) -> BaseRepository[User]:
        return self._base_repo

    # ========================================================================
    # DELEGATED METHODS
    # ========================================================================

    async def create(self, payload: Mapping[str, Any], opts: RepositoryOptions | None = None) -> User:
        return await self._base_repo.create(payload, opts)

    async def create_in_batches(
        self,
        payloads: Sequence[Mapping[str, Any]],
        batch_size: int = 1000,
        opts: RepositoryOptions | None = None,
    ) -> BatchResult:
        return await self._base_repo.create_in_batches(payloads, batch_size, opts)

    async def find_by(self, field: str, value: Any, opts: RepositoryOptions | None = None) -> User | None:
        return await self._base_repo.find_by(field, value, opts)

    async def find_by_or_fail(self, field: str, value: Any, opts: RepositoryOptions | None = None) -> User:
        return await self._base_repo.find_by_or_fail(field, value, opts)

    async def find_where(
        self,
        filters: Sequence[FilterCriteria | Mapping[str, Any]],
        opts: RepositoryOptions | None = None,
    ) -> list[User]:
        return await self._base_repo.find_where(filters, opts)

    async def paginate(self, opts: PaginateOptions | None = None, base_url: str = "/") -> PaginatedResult[User]:
        return await self._base_repo.paginate(opts, base_url=base_url)

    async def update(
        self, field: str, value: Any, payload: Mapping[str, Any], opts: RepositoryOptions | None = None
    ) -> User | None:
        return await self._base_repo.update(field, value, payload, opts)

    async def soft_delete(self, field: str, value: Any, opts: RepositoryOptions | None = None) -> int:
        return await self._base_repo.soft_delete(field, value, opts)

    async def restore(self, field: str, value: Any, opts: RepositoryOptions | None = None) -> int:
        return await self._base_repo.restore(field, value, opts)

    async def count(self, opts: RepositoryOptions | None = None) -> int:
        return await self._base_repo.count(opts)

    async def chunk(
        self, chunk_size: int, callback: Callable[[list[User]], Any], opts: RepositoryOptions | None = None
    ) -> None:
        await self._base_repo.chunk(chunk_size, callback, opts)

    # ========================================================================
    # CUSTOM USER METHODS
    # ========================================================================

    async def find_by_email(self, email: str, opts: RepositoryOptions | None = None) -> User | None:
        """Find a user by email, lower-cased before matching."""
        return await self._base_repo.find_by("email", email.strip().lower(), opts)

    async def search(self, term: str, opts: PaginateOptions | None = None) -> PaginatedResult[User]:
        """Paginate users whose name or email contains ``term``, with roles loaded."""
        opts = opts or PaginateOptions()
        self._logger.debug("Searching users", term=term)
        return await self._base_repo.paginate(
            replace(
                opts,
                modify_query=[*opts.modify_query, search(term)],
                scopes=[*opts.scopes, "include_roles"],
            )
        )
