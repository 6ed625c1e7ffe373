"""Shared pytest fixtures for test suite."""

import os
from collections.abc import AsyncGenerator, Iterator
from pathlib import Path

# Set test environment variables BEFORE any app imports
# This ensures tracing and other features are disabled during app initialization
os.environ["ENVIRONMENT"] = "testing"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["OTEL_ENABLED"] = "false"  # Disable OpenTelemetry to prevent background threads
os.environ["VALKEY_URL"] = ""  # Tests use FakeRedis for the Redis backend
os.environ["CACHE_BACKEND"] = "memory"

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from repokit.core.cache import MemoryQueryCache, set_query_cache
from repokit.core.config import Settings
from repokit.core.database import Database, create_engine, set_database
from repokit.main import app
from repokit.models import Base
from tests.factories import FakeClock


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Get settings configured for testing."""
    return Settings(
        environment="testing",
        log_level="WARNING",
    )


# ===== Database Fixtures =====


@pytest_asyncio.fixture
async def test_database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """File-backed SQLite database with every table created, one per test.

    A file (rather than ``:memory:``) lets the repository open several
    connections that all see committed data. It is also installed as the
    application default database for the duration of the test.

    Yields:
        Database: Test database handle
    """
    database = Database(create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"))

    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    set_database(database)
    yield database
    set_database(None)

    await database.close()


@pytest_asyncio.fixture
async def db_session(test_database: Database) -> AsyncGenerator[AsyncSession, None]:
    """Session inside a transaction that is rolled back after the test.

    Pass it as ``RepositoryOptions(transaction=db_session)``.
    """
    async with test_database.session() as session:
        transaction = await session.begin()
        try:
            yield session
        finally:
            if transaction.is_active:
                await transaction.rollback()


# ===== Cache Fixtures =====


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def query_cache(clock: FakeClock) -> Iterator[MemoryQueryCache]:
    """Memory cache on the fake clock, installed as the process default."""
    cache = MemoryQueryCache(max_entries=100, default_ttl=60, clock=clock)
    set_query_cache(cache)
    yield cache
    set_query_cache(None)


@pytest_asyncio.fixture
async def fake_redis() -> AsyncGenerator[FakeAsyncRedis, None]:
    """In-memory Redis speaking bytes, as RedisQueryCache expects."""
    client = FakeAsyncRedis(decode_responses=False)
    await client.flushdb()
    yield client
    await client.flushdb()
    await client.aclose()


# ===== API Client Fixtures =====


@pytest_asyncio.fixture
async def async_client(
    test_database: Database, query_cache: MemoryQueryCache
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app, backed by the test database and cache.

    Example:
        async def test_endpoint(async_client: AsyncClient):
            response = await async_client.get("/health")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
