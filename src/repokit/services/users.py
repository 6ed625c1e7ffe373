"""User services."""

from dataclasses import replace

from repokit.core.logging import get_logger
from repokit.models.user import User
from repokit.repositories.options import PaginatedResult, PaginateOptions
from repokit.repositories.users import UserRepository, search

logger = get_logger(__name__)


class PaginateUserService:
    """Page through users, optionally filtered by a search term, with roles loaded."""

    def __init__(self, user_repository: UserRepository) -> None:
        self.user_repository = user_repository

    async def run(
        self,
        opts: PaginateOptions | None = None,
        search_term: str | None = None,
        base_url: str = "/users",
    ) -> PaginatedResult[User]:
        """Return one page of users.

        A search term is added after any modifiers already present in
        ``opts``; the ``include_roles`` scope is always applied.
        """
        opts = opts or PaginateOptions()
        modifiers = list(opts.modify_query)
        if search_term:
            modifiers.append(search(search_term))

        logger.debug("Paginating users", page=opts.page, per_page=opts.per_page, search=search_term)
        return await self.user_repository.paginate(
            replace(opts, modify_query=modifiers, scopes=["include_roles"]),
            base_url=base_url,
        )
