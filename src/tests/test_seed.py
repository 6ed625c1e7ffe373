"""Test the database seed script."""

import pytest
from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError

from repokit.core.cache import MemoryQueryCache
from repokit.core.database import Database
from repokit.models import PermissionAction, PermissionResource
from repokit.repositories.options import RepositoryOptions
from repokit.repositories.permissions import PermissionRepository
from repokit.repositories.users import UserRepository
from repokit.seed import ADMIN_USER, SAMPLE_USERS, hash_password, seed_database


class TestHashPassword:
    def test_hash_is_salted_argon2id(self) -> None:
        first = hash_password("secret")
        second = hash_password("secret")

        assert first.startswith("$argon2id$")
        assert first != second
        assert PasswordHasher().verify(first, "secret")
        with pytest.raises(VerifyMismatchError):
            PasswordHasher().verify(second, "other")


class TestSeedDatabase:
    """Test seed_database()."""

    async def test_seeds_users_permissions_and_admin(
        self, test_database: Database, query_cache: MemoryQueryCache
    ) -> None:
        """Test a fresh database gets the admin, the sample users and every permission."""
        result = await seed_database(test_database)

        assert result is not None
        assert (result.success, result.failed) == (len(SAMPLE_USERS), 0)

        users = UserRepository(test_database, query_cache)
        assert await users.count() == len(SAMPLE_USERS) + 1

        admin = await users.find_by_email(ADMIN_USER["email"], RepositoryOptions(preload=["roles"]))
        assert admin is not None
        assert admin.password_hash is not None
        assert [role.slug for role in admin.roles] == ["admin"]

        permissions = PermissionRepository(test_database, query_cache)
        assert await permissions.count() == len(PermissionResource) * len(PermissionAction)
        assert len(await permissions.for_role("admin")) == len(PermissionResource) * len(PermissionAction)

    async def test_is_idempotent(self, test_database: Database, query_cache: MemoryQueryCache) -> None:
        await seed_database(test_database)

        assert await seed_database(test_database) is None
        assert await UserRepository(test_database, query_cache).count() == len(SAMPLE_USERS) + 1

    async def test_uses_default_database(self, test_database: Database, query_cache: MemoryQueryCache) -> None:
        result = await seed_database()

        assert result is not None
        assert await UserRepository(test_database, query_cache).count() == len(SAMPLE_USERS) + 1
