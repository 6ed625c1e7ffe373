"""Database connection management with async SQLAlchemy."""

from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from repokit.core.config import settings
from repokit.core.logging import get_logger

logger = get_logger(__name__)


class DBErrorMessage:
    """Standardized database error messages."""
    CREATE_ENGINE_NO_URL = "DATABASE_URL is not configured"
    CREATE_ENGINE_MIN_DB_POOL_SIZE = "DATABASE_POOL_SIZE must be at least 1"
    CREATE_ENGINE_NEGATIVE_MAX_OVERFLOW = "DATABASE_MAX_OVERFLOW must be non-negative"
    CREATE_ENGINE_FAILED = "Failed to create database engine"

    CLOSE_DATABASE_FAILED = "Failed to close database connections"


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own transaction boundaries on SQLite connections.

    The sqlite3 driver emits its own BEGIN lazily, which breaks SAVEPOINT
    (used by batch inserts and atomic upserts). Disabling the driver's
    behaviour and emitting BEGIN explicitly restores them.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create AsyncEngine with connection pooling configuration.

    Args:
        database_url: Override for ``settings.database_url``

    Returns:
        AsyncEngine: Configured async SQLAlchemy engine

    Connection Pool Configuration (server databases only):
        - pool_size: Number of connections to keep in the pool (default: 20)
        - max_overflow: Maximum overflow connections (default: 10)
        - pool_pre_ping: Test connections before handing them out
        - pool_recycle: Recycle connections after one hour

    Raises:
        ValueError: If database URL is invalid or settings are misconfigured
    """
    try:
        url = database_url or settings.database_url
        if not url:
            raise ValueError(DBErrorMessage.CREATE_ENGINE_NO_URL)

        if url.startswith("sqlite"):
            logger.info("Creating async SQLite engine", url=url)
            engine = create_async_engine(url, echo=settings.database_echo)
            enable_sqlite_savepoints(engine)
            return engine

        if settings.database_pool_size < 1:
            raise ValueError(DBErrorMessage.CREATE_ENGINE_MIN_DB_POOL_SIZE)

        if settings.database_max_overflow < 0:
            raise ValueError(DBErrorMessage.CREATE_ENGINE_NEGATIVE_MAX_OVERFLOW)

        logger.info(
            "Creating async database engine",
            url=url.split("@")[1] if "@" in url else "***",
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )

        return create_async_engine(
            url,
            echo=settings.database_echo,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    except ValueError:
        raise
    except Exception as e:
        logger.error(f"Failed to create database engine, due to configuration error: {e}")
        raise ValueError(DBErrorMessage.CREATE_ENGINE_FAILED) from e


class Database:
    """Database handle: an engine plus the session factory bound to it.

    Repositories open sessions through ``session()`` when the caller did not
    hand them a transaction, and ``raw_query()`` runs literal SQL.

    Example:
        database = Database(create_engine())
        async with database.session() as session, session.begin():
            await repo.create({"email": "a@example.com"}, RepositoryOptions(transaction=session))
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.engine = engine
        self.session_maker = session_maker or async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    def session(self) -> AsyncSession:
        """Open a new session; use it as an async context manager."""
        return self.session_maker()

    async def raw_query(
        self,
        sql: str,
        bindings: Sequence[Any] | Mapping[str, Any] | None = None,
    ) -> Any:
        """Execute literal SQL in its own transaction.

        Positional ``bindings`` are handed to the driver untouched, so the SQL
        must use the driver's placeholder style. Mapping bindings are bound by
        name (``:name``).

        Returns:
            A list of row mappings for statements returning rows, otherwise
            the affected row count.
        """
        async with self.engine.begin() as conn:
            if bindings is not None and not isinstance(bindings, Mapping):
                result = await conn.exec_driver_sql(sql, tuple(bindings))
            else:
                result = await conn.execute(text(sql), dict(bindings or {}))
            if result.returns_rows:
                return [dict(row) for row in result.mappings().all()]
            return result.rowcount

    async def check_connection(self) -> bool:
        """Run ``SELECT 1``; returns False instead of raising."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.debug("Database connection check passed")
            return True
        except Exception as e:
            logger.error(f"Database connection check failed with error: {e}")
            return False

    async def close(self) -> None:
        await self.engine.dispose()


# Application default database, created on first use
_database: Database | None = None


def get_database() -> Database:
    """Return the application default database, creating it on first use."""
    global _database
    if _database is None:
        _database = Database(create_engine())
    return _database


def set_database(database: Database | None) -> None:
    """Replace the application default database (tests, alternative wiring)."""
    global _database
    _database = database


async def check_database_connection() -> bool:
    """Check if database connection is available.

    Used for health checks and diagnostics.

    Returns:
        bool: True if connection successful, False otherwise
    """
    return await get_database().check_connection()


async def close_database() -> None:
    """Close all database connections.

    Should be called during application shutdown.

    Raises:
        RuntimeError: If graceful shutdown fails
    """
    if _database is None:
        return
    try:
        logger.info("Closing database connections")
        await _database.close()
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")
        raise RuntimeError(DBErrorMessage.CLOSE_DATABASE_FAILED) from e
