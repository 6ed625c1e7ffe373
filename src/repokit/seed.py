"""Database seed script with sample users, default permissions and an admin role.

Usage:
    python -m repokit.seed

Features:
    - Idempotent: skips seeding when users already exist
    - Creates the schema first when it is missing (development databases)
    - Default permissions for every resource/action, granted to the admin role
    - Sample users inserted with ``create_in_batches``
"""

import asyncio
import secrets

from argon2 import PasswordHasher

from repokit.core.database import Database, get_database
from repokit.core.logging import configure_logging, get_logger
from repokit.models import Base
from repokit.repositories.options import BatchResult, RepositoryOptions
from repokit.repositories.permissions import PermissionRepository
from repokit.repositories.roles import RoleRepository
from repokit.repositories.users import UserRepository
from repokit.services.permissions import AssignDefaultPermissionsService

logger = get_logger(__name__)

ADMIN_USER = {
    "full_name": "Admin User",
    "email": "admin@example.com",
    "status": "active",
    "age": 35,
}

SAMPLE_USERS = [
    {"full_name": "Ada Lovelace", "email": "ada@example.com", "status": "active", "age": 36},
    {"full_name": "Alan Turing", "email": "alan@example.com", "status": "active", "age": 41},
    {"full_name": "Grace Hopper", "email": "grace@example.com", "status": "active", "age": 85},
    {"full_name": "Edsger Dijkstra", "email": "edsger@example.com", "status": "inactive", "age": 72},
    {"full_name": "Barbara Liskov", "email": "barbara@example.com", "status": "active", "age": 84},
    {"full_name": "Donald Knuth", "email": "donald@example.com", "status": "active", "age": 86},
    {"full_name": "Margaret Hamilton", "email": "margaret@example.com", "status": "active", "age": 88},
    {"full_name": "Ken Thompson", "email": "ken@example.com", "status": "inactive", "age": 81},
    {"full_name": "Frances Allen", "email": "frances@example.com", "status": "active", "age": 88},
    {"full_name": "John Backus", "email": "john@example.com", "status": "inactive", "age": 82},
]

SEED_BATCH_SIZE = 5

_password_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    """Argon2id hash in PHC string form (``$argon2id$...``)."""
    return _password_hasher.hash(password)


async def create_schema(database: Database) -> None:
    """Create missing tables for every model."""
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_database(database: Database | None = None) -> BatchResult | None:
    """Main seeding function.

    Returns:
        The batch result for the sample users, or None when already seeded
    """
    database = database or get_database()
    logger.info("Starting database seeding")

    await create_schema(database)

    users = UserRepository(database)
    if await users.base.exists(RepositoryOptions(with_trashed=True)):
        logger.info("Database already contains users. Skipping seed (idempotent).")
        return None

    permissions = PermissionRepository(database)
    roles = RoleRepository(database)

    async with database.session() as session, session.begin():
        opts = RepositoryOptions(transaction=session)

        admin_role = await AssignDefaultPermissionsService(permissions, roles).run(session)
        await users.create(
            {**ADMIN_USER, "password_hash": hash_password(secrets.token_urlsafe(16)), "roles": [admin_role]},
            opts,
        )
        result = await users.create_in_batches(SAMPLE_USERS, batch_size=SEED_BATCH_SIZE, opts=opts)

    logger.info(
        "Database seeding completed successfully",
        users=result.success + 1,
        failed=result.failed,
    )
    return result


if __name__ == "__main__":
    configure_logging()
    asyncio.run(seed_database())
