"""Test application services."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from repokit.core.cache import MemoryQueryCache
from repokit.core.database import Database
from repokit.models import PermissionAction, PermissionResource, User
from repokit.repositories.options import PaginateOptions, RepositoryOptions
from repokit.repositories.permissions import PermissionRepository
from repokit.repositories.roles import RoleRepository
from repokit.repositories.users import UserRepository
from repokit.services import (
    AssignDefaultPermissionsService,
    CreatePermissionService,
    PaginateUserService,
    PermissionData,
)
from repokit.services.permissions import ADMIN_ROLE_SLUG
from tests.factories import create_role, create_user, user_payload


@pytest.fixture
def permission_repository(test_database: Database, query_cache: MemoryQueryCache) -> PermissionRepository:
    return PermissionRepository(test_database, query_cache)


@pytest.fixture
def role_repository(test_database: Database, query_cache: MemoryQueryCache) -> RoleRepository:
    return RoleRepository(test_database, query_cache)


class TestPermissionData:
    """Test PermissionData display names."""

    def test_display_name_defaults_to_resource_and_action(self) -> None:
        data = PermissionData(resource=PermissionResource.FILES, action=PermissionAction.LIST)
        assert data.display_name == "files.list"

    def test_display_name_prefers_explicit_name(self) -> None:
        data = PermissionData(resource=PermissionResource.FILES, action=PermissionAction.LIST, name="Browse files")
        assert data.display_name == "Browse files"


class TestCreatePermissionService:
    """Test CreatePermissionService.handle()."""

    async def test_creates_then_updates_same_permission(
        self, permission_repository: PermissionRepository
    ) -> None:
        """Test a second call for the same pair updates instead of duplicating."""
        service = CreatePermissionService(permission_repository)

        created = await service.handle(PermissionData(PermissionResource.USERS, PermissionAction.DELETE))
        updated = await service.handle(
            PermissionData(PermissionResource.USERS, PermissionAction.DELETE, name="Remove users", description="x")
        )

        assert created.name == "users.delete"
        assert updated.id == created.id
        assert updated.name == "Remove users"
        assert updated.description == "x"
        assert await permission_repository.count() == 1

    async def test_runs_in_caller_transaction(
        self, permission_repository: PermissionRepository, db_session: AsyncSession
    ) -> None:
        service = CreatePermissionService(permission_repository)

        await service.handle(PermissionData(PermissionResource.ROLES, PermissionAction.READ), db_session)

        assert await permission_repository.count(RepositoryOptions(transaction=db_session)) == 1
        assert await permission_repository.count() == 0


class TestAssignDefaultPermissionsService:
    """Test AssignDefaultPermissionsService.run()."""

    async def test_grants_every_permission_to_admin(
        self,
        permission_repository: PermissionRepository,
        role_repository: RoleRepository,
        db_session: AsyncSession,
    ) -> None:
        """Test every resource/action permission exists and the admin role holds all of them."""
        expected = len(PermissionResource) * len(PermissionAction)
        service = AssignDefaultPermissionsService(permission_repository, role_repository)

        role = await service.run(db_session)

        opts = RepositoryOptions(transaction=db_session)
        assert role.slug == ADMIN_ROLE_SLUG
        assert await permission_repository.count(opts) == expected
        granted = await permission_repository.for_role(ADMIN_ROLE_SLUG, opts)
        assert len(granted) == expected
        assert granted[0].name == "files.create"

    async def test_is_idempotent(
        self,
        permission_repository: PermissionRepository,
        role_repository: RoleRepository,
        db_session: AsyncSession,
    ) -> None:
        service = AssignDefaultPermissionsService(permission_repository, role_repository)

        first = await service.run(db_session)
        second = await service.run(db_session)

        opts = RepositoryOptions(transaction=db_session)
        assert second.id == first.id
        assert await permission_repository.count(opts) == len(PermissionResource) * len(PermissionAction)
        assert await role_repository.base.count(opts) == 1


class TestPaginateUserService:
    """Test PaginateUserService.run()."""

    @pytest.fixture
    def service(self, test_database: Database, query_cache: MemoryQueryCache) -> PaginateUserService:
        return PaginateUserService(UserRepository(test_database, query_cache))

    async def test_pages_users_with_roles(self, service: PaginateUserService, db_session: AsyncSession) -> None:
        role = await create_role(db_session, slug="staff")
        for age in range(12):
            await create_user(db_session, age=age, roles=[role])
        await db_session.commit()

        page = await service.run(PaginateOptions(page=2, per_page=5, sort_by="age"))

        assert [user.age for user in page.items] == [5, 6, 7, 8, 9]
        assert page.last_page == 3
        assert all([r.slug for r in user.roles] == ["staff"] for user in page.items)
        assert page.meta()["next_page_url"] == "/users?page=3"

    async def test_search_term_narrows_results(self, service: PaginateUserService) -> None:
        await service.user_repository.create(user_payload(full_name="Barbara Liskov"))
        await service.user_repository.create(user_payload(full_name="Ken Thompson"))

        page = await service.run(search_term="Liskov")

        assert page.total == 1
        assert page.items[0].full_name == "Barbara Liskov"

    async def test_existing_modifiers_are_kept(self, service: PaginateUserService) -> None:
        await service.user_repository.create(user_payload(full_name="Ann Young", age=20))
        await service.user_repository.create(user_payload(full_name="Ann Old", age=80))

        page = await service.run(
            PaginateOptions(modify_query=[lambda query: query.where(User.age < 50)]),
            search_term="Ann",
        )

        assert [user.full_name for user in page.items] == ["Ann Young"]
