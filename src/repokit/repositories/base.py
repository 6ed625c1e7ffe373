"""Generic repository facade over async SQLAlchemy.

``BaseRepository`` turns coarse, declarative per-call options into SQLAlchemy
statements so services never touch the query API directly.

Key Concepts:
- COMPOSITION PATTERN: entity repositories wrap a ``BaseRepository[Model]``
- OPTIONS, NOT BUILDERS: every operation takes a ``RepositoryOptions`` bag
- SESSIONS: ``opts.transaction`` is used as-is and never committed; without
  one the repository opens (and for writes commits) its own session
- SOFT DELETE: rows with a soft-delete timestamp are hidden by default
- CACHE: ``find_by`` can read through an injected ``QueryCache``; every
  successful write clears that cache entirely
- TRACING: @trace_database decorators integrate with OpenTelemetry

Usage Example:
    repo = BaseRepository(User, database=get_database())
    user = await repo.create({"email": "ada@example.com", "full_name": "Ada"})
    page = await repo.paginate(PaginateOptions(page=1, per_page=20, sort_by="fullName"))
    adults = await repo.find_where([
        FilterCriteria("age", FilterOperator.GTE, 18),
        {"field": "status", "operator": "eq", "value": "active"},
    ])

See repokit/repositories/users.py for the composition pattern in use.
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, ClassVar, Generic, TypeVar

from sqlalchemy import Select, delete, func, not_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase, load_only, selectinload
from sqlalchemy.sql.elements import ColumnElement

from repokit.core.cache import QueryCache, build_key, get_query_cache
from repokit.core.database import Database, get_database
from repokit.core.i18n import translate
from repokit.core.logging import get_logger
from repokit.core.tracing import trace_database
from repokit.repositories.options import (
    BatchError,
    BatchResult,
    FilterCriteria,
    FilterOperator,
    PaginatedResult,
    PaginateOptions,
    QueryModifier,
    RepositoryOptions,
)
from repokit.repositories.schema import ModelSchema, model_schema

ModelType = TypeVar("ModelType", bound=DeclarativeBase)

ORDER_ASC = "asc"
ORDER_DESC = "desc"
DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 10
DEFAULT_BATCH_SIZE = 1000


# ============================================================================
# CUSTOM EXCEPTION HIERARCHY
# ============================================================================
# Store errors (SQLAlchemyError) are not wrapped; they reach the caller as-is.


class RepositoryError(Exception):
    """Base exception for errors raised by the repository itself."""


class ValidationError(RepositoryError):
    """Raised when caller input cannot be turned into a query.

    Covers unknown sort keys and fields, bad sort directions, unknown filter
    operators and malformed pagination values. ``allowed`` lists the accepted
    values when there is a fixed set.

    Example:
        try:
            await repo.list(RepositoryOptions(sort_by="nope"))
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=e.message)
    """

    def __init__(self, message: str, allowed: Sequence[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.allowed = list(allowed) if allowed else []


class NotFoundError(RepositoryError):
    """Raised by ``find_by_or_fail`` when no row matches."""


class ConfigurationError(RepositoryError):
    """Raised when the repository is asked for something it was not set up for.

    For example ``raw`` without a database, ``soft_delete`` on a model without
    a soft-delete column, or an unregistered scope name.
    """


# ============================================================================
# BASE REPOSITORY
# ============================================================================


class BaseRepository(Generic[ModelType]):
    """Generic repository providing lookups, filtering, pagination and writes.

    Entity repositories wrap an instance of this class (composition) and add
    their own query helpers on top.

    Args:
        model: Mapped model class (e.g., User, Permission)
        database: Database handle; the application default is used when None.
            ``raw`` only works with an explicit handle.
        cache: Query cache; the process-wide default is used when None
        scopes: Named query modifiers, merged over the class-level ``scopes``

    Example (Composition Pattern):
        class UserRepository:
            def __init__(self, database: Database | None = None) -> None:
                self._base_repo = BaseRepository(User, database, scopes={"active": only_active})

            async def find_by_email(self, email: str) -> User | None:
                return await self._base_repo.find_by("email", email)
    """

    ORDER_ASC = ORDER_ASC
    ORDER_DESC = ORDER_DESC

    scopes: ClassVar[Mapping[str, QueryModifier]] = {}

    def __init__(
        self,
        model: type[ModelType],
        database: Database | None = None,
        cache: QueryCache | None = None,
        scopes: Mapping[str, QueryModifier] | None = None,
    ) -> None:
        self.model = model
        self.schema: ModelSchema = model_schema(model)
        self._database = database
        self._cache = cache
        self._scopes: dict[str, QueryModifier] = {**type(self).scopes, **(scopes or {})}
        self._logger = get_logger(f"{__name__}.{model.__name__}Repository")

    @property
    def database(self) -> Database:
        if self._database is not None:
            return self._database
        return get_database()

    @property
    def cache(self) -> QueryCache:
        if self._cache is not None:
            return self._cache
        return get_query_cache()

    # ========================================================================
    # CREATE OPERATIONS
    # ========================================================================

    @trace_database()
    async def create(
        self, payload: Mapping[str, Any], opts: RepositoryOptions | None = None
    ) -> ModelType:
        """Insert one row and return the new instance.

        Server-side defaults (timestamps) are populated on the returned
        instance. The cache is cleared afterwards.

        Raises:
            ValidationError: If the payload names an unknown attribute
            SQLAlchemyError: Constraint violations and other store errors
        """
        opts = opts or RepositoryOptions()
        values = self._payload(payload)

        async with self._session_scope(opts, write=True) as session:
            instance = self.model(**values)
            session.add(instance)
            await session.flush()

        await self._clear_cache()
        self._logger.info(
            "Entity created successfully",
            model=self.model.__name__,
            entity_id=getattr(instance, self.schema.primary_key, None),
        )
        return instance

    @trace_database()
    async def create_many(
        self, payloads: Iterable[Mapping[str, Any]], opts: RepositoryOptions | None = None
    ) -> list[ModelType]:
        """Insert several rows in one flush and return them in input order."""
        opts = opts or RepositoryOptions()
        instances = [self.model(**self._payload(payload)) for payload in payloads]
        if not instances:
            return []

        async with self._session_scope(opts, write=True) as session:
            session.add_all(instances)
            await session.flush()

        await self._clear_cache()
        self._logger.info("Entities created successfully", model=self.model.__name__, count=len(instances))
        return instances

    @trace_database()
    async def create_in_batches(
        self,
        payloads: Sequence[Mapping[str, Any]],
        batch_size: int = DEFAULT_BATCH_SIZE,
        opts: RepositoryOptions | None = None,
    ) -> BatchResult:
        """Insert ``payloads`` in consecutive slices of ``batch_size``.

        Each slice runs in its own SAVEPOINT. A failing slice is rolled back,
        counted in ``failed`` and recorded as ``BatchError(start_offset,
        message)``; the remaining slices still run.

        With ``opts.transaction`` the slices run inside the caller's
        transaction. Otherwise one transaction is opened for all slices and
        committed at the end; an error outside the per-slice guard rolls it
        back and propagates.

        Example:
            result = await repo.create_in_batches(rows, batch_size=500)
            if result.failed:
                logger.warning("Some rows failed", errors=result.errors)
        """
        opts = opts or RepositoryOptions()
        if batch_size is None or batch_size < 1:
            raise ValidationError(
                translate("errors.invalid_pagination", "{name} must be a positive integer", name="batch_size")
            )

        rows = list(payloads)
        result = BatchResult()

        if opts.transaction is not None:
            await self._insert_batches(opts.transaction, rows, batch_size, result)
        else:
            async with self.database.session() as session, session.begin():
                await self._insert_batches(session, rows, batch_size, result)

        if result.success:
            await self._clear_cache()

        self._logger.info(
            "Batch insert finished",
            model=self.model.__name__,
            success=result.success,
            failed=result.failed,
        )
        return result

    async def _insert_batches(
        self,
        session: AsyncSession,
        rows: list[Mapping[str, Any]],
        batch_size: int,
        result: BatchResult,
    ) -> None:
        for start in range(0, len(rows), batch_size):
            batch = rows[start:start + batch_size]
            try:
                async with session.begin_nested():
                    session.add_all([self.model(**self._payload(payload)) for payload in batch])
                    await session.flush()
                result.success += len(batch)
            except Exception as e:
                result.failed += len(batch)
                result.errors.append(BatchError(index=start, message=str(e)))
                self._logger.warning(
                    "Batch slice failed",
                    model=self.model.__name__,
                    index=start,
                    size=len(batch),
                    error=str(e),
                )

    # ========================================================================
    # READ OPERATIONS
    # ========================================================================

    @trace_database()
    async def find_by(
        self, field: str, value: Any, opts: RepositoryOptions | None = None
    ) -> ModelType | None:
        """Return the first row where ``field == value``, or None.

        With ``opts.cache`` the cache is consulted first, and a found row is
        stored under the key (namespaced by model) for ``opts.cache.ttl``.

        Example:
            user = await repo.find_by("email", email, RepositoryOptions(
                cache=CacheOptions(key=f"email:{email}", ttl=60),
            ))
        """
        opts = opts or RepositoryOptions()

        if opts.cache is not None:
            cached = await self.cache.get(self._cache_key(opts.cache.key))
            if cached is not None:
                self._logger.debug("Cache hit", model=self.model.__name__, key=opts.cache.key)
                return cached

        query = self._apply_order(self.build_query(field, value, opts), opts, default_to_pk=False)
        async with self._session_scope(opts) as session:
            result = await session.execute(query.limit(1))
            instance = result.scalars().first()

        if opts.cache is not None and instance is not None:
            await self.cache.set(self._cache_key(opts.cache.key), instance, opts.cache.ttl)

        self._logger.debug(
            "Entity lookup",
            model=self.model.__name__,
            field=field,
            found=instance is not None,
        )
        return instance

    async def find_by_or_fail(
        self, field: str, value: Any, opts: RepositoryOptions | None = None
    ) -> ModelType:
        """Like ``find_by`` but raises ``NotFoundError`` when nothing matches."""
        instance = await self.find_by(field, value, opts)
        if instance is None:
            raise NotFoundError(
                translate(
                    "errors.not_found",
                    "{model} with {field} {value} not found",
                    model=self.model.__name__,
                    field=field,
                    value=value,
                )
            )
        return instance

    @trace_database()
    async def find_many_by(
        self, field: str, values: Iterable[Any], opts: RepositoryOptions | None = None
    ) -> list[ModelType]:
        """Return every row whose ``field`` is one of ``values``."""
        opts = opts or RepositoryOptions()
        column = self._column(field)
        query = self.build_query(opts=opts).where(column.in_(list(values)))
        return await self._all(self._apply_order(query, opts, default_to_pk=False), opts)

    @trace_database()
    async def find_where(
        self,
        filters: Iterable[FilterCriteria | Mapping[str, Any]],
        opts: RepositoryOptions | None = None,
    ) -> list[ModelType]:
        """Return rows matching every filter (logical AND).

        Filters are ``FilterCriteria`` or mappings with ``field``,
        ``operator`` and ``value`` keys. No ordering is applied unless
        ``opts.sort_by`` is set.

        Raises:
            ValidationError: Unknown field or operator, or a ``between`` value
                that is not a pair
        """
        opts = opts or RepositoryOptions()
        clauses = [self._filter_clause(criterion) for criterion in filters]
        query = self.build_query(opts=opts)
        if clauses:
            query = query.where(*clauses)
        return await self._all(self._apply_order(query, opts, default_to_pk=False), opts)

    @trace_database()
    async def list(self, opts: RepositoryOptions | None = None) -> list[ModelType]:
        """Return every visible row ordered by ``sort_by`` (primary key by default)."""
        opts = opts or RepositoryOptions()
        query = self._apply_order(self.build_query(opts=opts), opts, default_to_pk=True)
        return await self._all(query, opts)

    @trace_database()
    async def paginate(
        self, opts: PaginateOptions | None = None, base_url: str = "/"
    ) -> PaginatedResult[ModelType]:
        """Return one page of rows ordered like ``list``.

        Pages are 1-indexed. ``page``/``per_page`` of None or 0 use
        ``DEFAULT_PAGE``/``DEFAULT_PER_PAGE``.

        Raises:
            ValidationError: Negative page or per_page, or invalid sorting

        Example:
            page = await repo.paginate(PaginateOptions(page=2, per_page=25), base_url="/users")
            page.meta()["next_page_url"]  # "/users?page=3" or None
        """
        opts = opts or PaginateOptions()
        page = self._page_number(getattr(opts, "page", None), DEFAULT_PAGE, "page")
        per_page = self._page_number(getattr(opts, "per_page", None), DEFAULT_PER_PAGE, "per_page")

        query = self._apply_order(self.build_query(opts=opts), opts, default_to_pk=True)
        count_query = self._count_statement(opts)

        async with self._session_scope(opts) as session:
            total = (await session.execute(count_query)).scalar() or 0
            result = await session.execute(query.limit(per_page).offset((page - 1) * per_page))
            items = list(result.scalars().all())

        self._logger.debug(
            "Paginated entities",
            model=self.model.__name__,
            page=page,
            per_page=per_page,
            count=len(items),
            total=total,
        )
        return PaginatedResult(
            items=items,
            total=total,
            per_page=per_page,
            current_page=page,
            base_url=base_url,
        )

    @trace_database()
    async def first(self, opts: RepositoryOptions | None = None) -> ModelType | None:
        """Return the first visible row, ordered only when ``sort_by`` is set."""
        opts = opts or RepositoryOptions()
        query = self._apply_order(self.build_query(opts=opts), opts, default_to_pk=False)
        async with self._session_scope(opts) as session:
            result = await session.execute(query.limit(1))
            return result.scalars().first()

    @trace_database()
    async def find_and_lock(
        self, field: str, value: Any, opts: RepositoryOptions | None = None
    ) -> ModelType | None:
        """``find_by`` with ``FOR UPDATE``; meant for use inside ``opts.transaction``."""
        return await self.find_by(field, value, replace(opts or RepositoryOptions(), lock_for_update=True))

    @trace_database()
    async def chunk(
        self,
        chunk_size: int,
        callback: Callable[[list[ModelType]], Awaitable[Any] | Any],
        opts: RepositoryOptions | None = None,
    ) -> None:
        """Feed rows to ``callback`` in pages of ``chunk_size``.

        Pages are fetched by offset in ``sort_by`` (or primary key) order.
        The callback may be sync or async; it finishes before the next page
        is fetched, and may write through the repository. Iteration stops on
        an empty or short page.

        Example:
            async def export(users: list[User]) -> None:
                await writer.write_rows(users)

            await repo.chunk(500, export)
        """
        opts = opts or RepositoryOptions()
        if chunk_size is None or chunk_size < 1:
            raise ValidationError(translate("errors.invalid_chunk_size", "Chunk size must be a positive integer"))

        query = self._apply_order(self.build_query(opts=opts), opts, default_to_pk=True)
        offset = 0
        while True:
            # Without opts.transaction each page gets its own session, closed before the callback runs
            async with self._session_scope(opts) as session:
                result = await session.execute(query.limit(chunk_size).offset(offset))
                rows = list(result.scalars().all())
            if not rows:
                break

            outcome = callback(rows)
            if inspect.isawaitable(outcome):
                await outcome

            if len(rows) < chunk_size:
                break
            offset += chunk_size

    # ========================================================================
    # AGGREGATES
    # ========================================================================

    @trace_database()
    async def count(self, opts: RepositoryOptions | None = None) -> int:
        """Number of visible rows matching ``opts``."""
        opts = opts or RepositoryOptions()
        async with self._session_scope(opts) as session:
            total = (await session.execute(self._count_statement(opts))).scalar()
        return int(total or 0)

    async def exists(self, opts: RepositoryOptions | None = None) -> bool:
        return await self.count(opts) > 0

    async def sum(self, column: str, opts: RepositoryOptions | None = None) -> Any:
        """Sum of ``column`` over matching rows; 0 when none match."""
        return await self._aggregate(func.sum, column, opts)

    async def avg(self, column: str, opts: RepositoryOptions | None = None) -> Any:
        """Average of ``column`` over matching rows; 0 when none match."""
        return await self._aggregate(func.avg, column, opts)

    async def min(self, column: str, opts: RepositoryOptions | None = None) -> Any:
        return await self._aggregate(func.min, column, opts)

    async def max(self, column: str, opts: RepositoryOptions | None = None) -> Any:
        return await self._aggregate(func.max, column, opts)

    @trace_database("aggregate")
    async def _aggregate(
        self, fn: Callable[[Any], Any], column: str, opts: RepositoryOptions | None
    ) -> Any:
        opts = opts or RepositoryOptions()
        attr = self._resolve(column)
        subquery = self._aggregate_base(opts).subquery()
        statement = select(fn(subquery.c[self.schema.column_keys[attr]]))
        async with self._session_scope(opts) as session:
            value = (await session.execute(statement)).scalar()
        return value if value is not None else 0

    # ========================================================================
    # FIND-OR-WRITE OPERATIONS
    # ========================================================================
    # Inside a caller transaction these are a plain read followed by a write.
    # Without one they run in an owned transaction and insert inside a
    # SAVEPOINT; a unique violation there means a concurrent writer won, so
    # the row is read again instead of failing.

    @trace_database()
    async def first_or_create(
        self,
        search: Mapping[str, Any],
        payload: Mapping[str, Any] | None = None,
        opts: RepositoryOptions | None = None,
    ) -> ModelType:
        """Return the first row matching ``search``, creating it from ``search | payload`` if absent."""
        opts = opts or RepositoryOptions()
        if opts.transaction is not None:
            return await self._first_or_create_in_transaction(search, payload or {}, opts)
        return await self._first_or_create_atomic(search, payload or {}, opts)

    async def _first_or_create_in_transaction(
        self, search: Mapping[str, Any], payload: Mapping[str, Any], opts: RepositoryOptions
    ) -> ModelType:
        existing = await self._find_matching(opts.transaction, search, opts)
        if existing is not None:
            return existing
        return await self.create({**search, **payload}, opts)

    async def _first_or_create_atomic(
        self, search: Mapping[str, Any], payload: Mapping[str, Any], opts: RepositoryOptions
    ) -> ModelType:
        values = self._payload({**search, **payload})
        created = False

        async with self.database.session() as session, session.begin():
            instance = await self._find_matching(session, search, opts)
            if instance is None:
                try:
                    instance = await self._insert_in_savepoint(session, values)
                    created = True
                except IntegrityError:
                    instance = await self._find_matching(session, search, opts)
                    if instance is None:
                        raise
                    self._logger.debug("Concurrent insert detected, using existing row", model=self.model.__name__)

        if created:
            await self._clear_cache()
        return instance

    @trace_database()
    async def update_or_create(
        self,
        search: Mapping[str, Any],
        payload: Mapping[str, Any],
        opts: RepositoryOptions | None = None,
    ) -> ModelType:
        """Update the row matching ``search`` with ``payload``, or create it from both."""
        opts = opts or RepositoryOptions()
        if opts.transaction is not None:
            return await self._update_or_create_in_transaction(search, payload, opts)
        return await self._update_or_create_atomic(search, payload, opts)

    async def _update_or_create_in_transaction(
        self, search: Mapping[str, Any], payload: Mapping[str, Any], opts: RepositoryOptions
    ) -> ModelType:
        session = opts.transaction
        existing = await self._find_matching(session, search, opts)
        if existing is None:
            return await self.create({**search, **payload}, opts)

        self._merge(existing, self._payload(payload))
        await session.flush()
        await self._clear_cache()
        return existing

    async def _update_or_create_atomic(
        self, search: Mapping[str, Any], payload: Mapping[str, Any], opts: RepositoryOptions
    ) -> ModelType:
        changes = self._payload(payload)
        values = self._payload({**search, **payload})

        async with self.database.session() as session, session.begin():
            instance = await self._find_matching(session, search, opts, lock=True)
            if instance is None:
                try:
                    instance = await self._insert_in_savepoint(session, values)
                except IntegrityError:
                    instance = await self._find_matching(session, search, opts, lock=True)
                    if instance is None:
                        raise
                    self._merge(instance, changes)
                    await session.flush()
            else:
                self._merge(instance, changes)
                await session.flush()

        await self._clear_cache()
        return instance

    async def _find_matching(
        self,
        session: AsyncSession,
        search: Mapping[str, Any],
        opts: RepositoryOptions,
        lock: bool = False,
    ) -> ModelType | None:
        query = self.build_query(opts=opts).where(*self._equality_clauses(search))
        if lock:
            query = query.with_for_update()
        result = await session.execute(query.limit(1))
        return result.scalars().first()

    async def _insert_in_savepoint(self, session: AsyncSession, values: dict[str, Any]) -> ModelType:
        async with session.begin_nested():
            instance = self.model(**values)
            session.add(instance)
            await session.flush()
        return instance

    # ========================================================================
    # UPDATE AND DELETE OPERATIONS
    # ========================================================================

    @trace_database()
    async def update(
        self,
        field: str,
        value: Any,
        payload: Mapping[str, Any],
        opts: RepositoryOptions | None = None,
    ) -> ModelType | None:
        """Load the first row where ``field == value``, merge ``payload`` and save it.

        The row is always read from the database, never from the cache.

        Returns:
            The updated instance, or None when no visible row matches
        """
        opts = opts or RepositoryOptions()
        changes = self._payload(payload)
        query = self._apply_order(self.build_query(field, value, opts), opts, default_to_pk=False)

        async with self._session_scope(opts, write=True) as session:
            result = await session.execute(query.limit(1))
            instance = result.scalars().first()
            if instance is None:
                self._logger.debug("Entity not found for update", model=self.model.__name__, field=field)
                return None
            self._merge(instance, changes)
            await session.flush()

        await self._clear_cache()
        self._logger.info(
            "Entity updated successfully",
            model=self.model.__name__,
            entity_id=getattr(instance, self.schema.primary_key, None),
            fields=list(changes),
        )
        return instance

    @trace_database()
    async def update_many(
        self,
        criteria: Mapping[str, Any],
        payload: Mapping[str, Any],
        opts: RepositoryOptions | None = None,
    ) -> int:
        """Bulk UPDATE visible rows matching every ``criteria`` item; returns the row count.

        Query modifiers and scopes narrow the affected rows as they do for reads.
        """
        opts = opts or RepositoryOptions()
        changes = self._payload(payload)
        statement = (
            update(self.model)
            .where(self._bulk_target(opts, self._equality_clauses(criteria)))
            .values(**changes)
            .execution_options(synchronize_session=False)
        )

        async with self._session_scope(opts, write=True) as session:
            result = await session.execute(statement)
            count = result.rowcount

        await self._clear_cache()
        self._logger.info("Entities updated", model=self.model.__name__, count=count)
        return count

    @trace_database()
    async def destroy(self, field: str, value: Any, opts: RepositoryOptions | None = None) -> int:
        """Hard DELETE visible rows where ``field == value``; returns the row count.

        Query modifiers and scopes narrow the deleted rows as they do for reads.
        """
        opts = opts or RepositoryOptions()
        statement = (
            delete(self.model)
            .where(self._bulk_target(opts, [self._column(field) == value]))
            .execution_options(synchronize_session=False)
        )

        async with self._session_scope(opts, write=True) as session:
            result = await session.execute(statement)
            count = result.rowcount

        await self._clear_cache()
        self._logger.info("Entities deleted", model=self.model.__name__, field=field, count=count)
        return count

    async def soft_delete(self, field: str, value: Any, opts: RepositoryOptions | None = None) -> int:
        """Stamp the soft-delete column of the first visible match; returns 1 or 0."""
        soft_field = self._soft_delete_field()
        instance = await self.update(field, value, {soft_field: datetime.now(timezone.utc)}, opts)
        return 1 if instance is not None else 0

    async def restore(self, field: str, value: Any, opts: RepositoryOptions | None = None) -> int:
        """Clear the soft-delete column of the first trashed match; returns 1 or 0."""
        soft_field = self._soft_delete_field()
        trashed = replace(opts or RepositoryOptions(), only_trashed=True)
        instance = await self.update(field, value, {soft_field: None}, trashed)
        return 1 if instance is not None else 0

    # ========================================================================
    # RAW SQL
    # ========================================================================

    @trace_database()
    async def raw(self, sql: str, bindings: Sequence[Any] | Mapping[str, Any] | None = None) -> Any:
        """Run literal SQL through the database given at construction.

        Raises:
            ConfigurationError: If the repository was built without a database
        """
        if self._database is None:
            raise ConfigurationError(translate("errors.database_not_provided", "Database instance not provided"))
        return await self._database.raw_query(sql, bindings)

    # ========================================================================
    # QUERY CONSTRUCTION
    # ========================================================================

    def build_query(
        self,
        field: str | None = None,
        value: Any = None,
        opts: RepositoryOptions | None = None,
    ) -> Select[Any]:
        """Build the ``select()`` every read starts from.

        Applied in order: equality on ``field`` (when given), soft-delete
        visibility, column projection, relationship preloads, row locking,
        sort validation, ``modify_query`` modifiers, then named scopes.
        Ordering itself is added by the calling operation.
        """
        opts = opts or RepositoryOptions()
        query = select(self.model)

        if field is not None:
            query = query.where(self._column(field) == value)

        query = query.where(*self._visibility_clauses(opts))

        if opts.select:
            query = query.options(load_only(*[self._column(name) for name in opts.select]))

        for loader in self._preload_options(opts):
            query = query.options(loader)

        if opts.lock_for_update:
            query = query.with_for_update()

        if opts.sort_by is not None:
            self.validate_sort_by(opts.sort_by)
        if opts.direction is not None:
            self.validate_direction(opts.direction)

        return self._apply_extensions(query, opts)

    def _apply_extensions(self, query: Select[Any], opts: RepositoryOptions) -> Select[Any]:
        modifiers = opts.modify_query
        if callable(modifiers):
            modifiers = [modifiers]
        for modifier in modifiers:
            query = modifier(query)

        for name in [opts.scopes] if isinstance(opts.scopes, str) else opts.scopes:
            scope = self._scopes.get(name)
            if scope is None:
                raise ConfigurationError(
                    translate(
                        "errors.unknown_scope",
                        "Unknown scope: {scope}. Must be one of: {available}",
                        scope=name,
                        available=", ".join(self._scopes) or "-",
                    )
                )
            query = scope(query)
        return query

    def _aggregate_base(self, opts: RepositoryOptions) -> Select[Any]:
        # Projection, preloads and locks do not apply inside an aggregate subquery
        base = replace(opts, select=None, preload=None, lock_for_update=False)
        return self.build_query(opts=base).order_by(None)

    def _count_statement(self, opts: RepositoryOptions) -> Select[Any]:
        return select(func.count()).select_from(self._aggregate_base(opts).subquery())

    def _bulk_target(
        self, opts: RepositoryOptions, clauses: Sequence[ColumnElement[bool]]
    ) -> ColumnElement[bool]:
        """Primary key IN the rows ``build_query(opts=opts)`` selects, narrowed by ``clauses``."""
        pk = getattr(self.model, self.schema.primary_key)
        selected = self._aggregate_base(opts).where(*clauses).with_only_columns(pk).correlate(None)
        return pk.in_(selected)

    def _apply_order(self, query: Select[Any], opts: RepositoryOptions, default_to_pk: bool) -> Select[Any]:
        if opts.sort_by is not None:
            attr = self.validate_sort_by(opts.sort_by)
        elif default_to_pk:
            attr = self.schema.primary_key
        else:
            return query
        column = getattr(self.model, attr)
        return query.order_by(column.desc() if opts.direction == ORDER_DESC else column.asc())

    def _visibility_clauses(self, opts: RepositoryOptions) -> list[ColumnElement[bool]]:
        soft_field = self.schema.soft_delete_field
        if soft_field is None:
            return []
        column = getattr(self.model, soft_field)
        if opts.only_trashed:
            return [column.is_not(None)]
        if opts.with_trashed:
            return []
        return [column.is_(None)]

    def _preload_options(self, opts: RepositoryOptions) -> list[Any]:
        if not opts.preload:
            return []
        if isinstance(opts.preload, Mapping):
            requested = list(opts.preload.items())
        else:
            requested = [(name, None) for name in opts.preload]

        loaders = []
        for name, refine in requested:
            if name not in self.schema.relationships:
                raise ValidationError(
                    translate(
                        "errors.unknown_field",
                        "Unknown field: {field}. Must be one of: {available}",
                        field=name,
                        available=", ".join(self.schema.relationships),
                    ),
                    allowed=self.schema.relationships,
                )
            loader = selectinload(getattr(self.model, name))
            loaders.append(refine(loader) if refine is not None else loader)
        return loaders

    def _filter_clause(self, criterion: FilterCriteria | Mapping[str, Any]) -> ColumnElement[bool]:
        if isinstance(criterion, Mapping):
            field = criterion.get("field")
            operator = criterion.get("operator", FilterOperator.EQ)
            value = criterion.get("value")
        else:
            field, operator, value = criterion.field, criterion.operator, criterion.value

        try:
            op = FilterOperator(operator)
        except ValueError:
            allowed = [member.value for member in FilterOperator]
            raise ValidationError(
                translate(
                    "errors.invalid_filter_operator",
                    "Invalid filter operator: {operator}. Must be one of: {available}",
                    operator=operator,
                    available=", ".join(allowed),
                ),
                allowed=allowed,
            ) from None

        column = self._column(field)

        if op in (FilterOperator.BETWEEN, FilterOperator.NOT_BETWEEN):
            if isinstance(value, (str, bytes)) or not isinstance(value, Sequence) or len(value) != 2:
                raise ValidationError(
                    translate(
                        "errors.invalid_between_value",
                        "Operator {operator} on {field} expects a pair of values",
                        operator=op.value,
                        field=field,
                    )
                )
            clause = column.between(value[0], value[1])
            return clause if op is FilterOperator.BETWEEN else not_(clause)

        if op is FilterOperator.IN:
            return column.in_(list(value))
        if op is FilterOperator.NIN:
            return column.not_in(list(value))
        if op is FilterOperator.LIKE:
            return column.like(value)

        comparisons: dict[FilterOperator, Callable[[Any, Any], ColumnElement[bool]]] = {
            FilterOperator.EQ: lambda c, v: c == v,
            FilterOperator.NEQ: lambda c, v: c != v,
            FilterOperator.GT: lambda c, v: c > v,
            FilterOperator.GTE: lambda c, v: c >= v,
            FilterOperator.LT: lambda c, v: c < v,
            FilterOperator.LTE: lambda c, v: c <= v,
        }
        return comparisons[op](column, value)

    def _equality_clauses(self, criteria: Mapping[str, Any]) -> list[ColumnElement[bool]]:
        return [self._column(name) == value for name, value in criteria.items()]

    # ========================================================================
    # VALIDATION HELPERS
    # ========================================================================

    def validate_sort_by(self, sort_by: str) -> str:
        """Resolve ``sort_by`` to an attribute name or raise ``ValidationError``.

        Attribute names, their camelCase form and column names are accepted.
        """
        attr = self.schema.resolve(sort_by)
        if attr is None:
            available = self.schema.available
            raise ValidationError(
                translate(
                    "errors.invalid_sort_key",
                    "Invalid sort key: {key}. Must be one of: {available}",
                    key=sort_by,
                    available=", ".join(available),
                ),
                allowed=available,
            )
        return attr

    def validate_direction(self, direction: str) -> None:
        if direction not in (ORDER_ASC, ORDER_DESC):
            raise ValidationError(
                translate(
                    "errors.invalid_sort_direction",
                    'Invalid direction. Must be "{asc}" or "{desc}".',
                    asc=ORDER_ASC,
                    desc=ORDER_DESC,
                ),
                allowed=[ORDER_ASC, ORDER_DESC],
            )

    def _resolve(self, name: str) -> str:
        attr = self.schema.resolve(name)
        if attr is None:
            available = self.schema.available
            raise ValidationError(
                translate(
                    "errors.unknown_field",
                    "Unknown field: {field}. Must be one of: {available}",
                    field=name,
                    available=", ".join(available),
                ),
                allowed=available,
            )
        return attr

    def _column(self, name: str) -> Any:
        return getattr(self.model, self._resolve(name))

    def _payload(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Map payload keys to attribute names; relationship names pass through."""
        values: dict[str, Any] = {}
        for key, value in payload.items():
            if key in self.schema.relationships:
                values[key] = value
            else:
                values[self._resolve(key)] = value
        return values

    @staticmethod
    def _merge(instance: Any, changes: Mapping[str, Any]) -> None:
        for key, value in changes.items():
            setattr(instance, key, value)

    def _page_number(self, value: int | None, default: int, name: str) -> int:
        if value is None or value == 0:
            return default
        if not isinstance(value, int) or value < 0:
            raise ValidationError(
                translate("errors.invalid_pagination", "{name} must be a positive integer", name=name)
            )
        return value

    def _soft_delete_field(self) -> str:
        if self.schema.soft_delete_field is None:
            raise ConfigurationError(
                translate(
                    "errors.soft_delete_unsupported",
                    "{model} does not support soft deletes",
                    model=self.model.__name__,
                )
            )
        return self.schema.soft_delete_field

    # ========================================================================
    # SESSIONS AND CACHE
    # ========================================================================

    @asynccontextmanager
    async def _session_scope(self, opts: RepositoryOptions, write: bool = False) -> AsyncIterator[AsyncSession]:
        """Yield the caller's transaction, or a fresh session.

        A fresh session used for writes is wrapped in a transaction that
        commits on exit and rolls back on error.
        """
        if opts.transaction is not None:
            yield opts.transaction
            return

        async with self.database.session() as session:
            if write:
                async with session.begin():
                    yield session
            else:
                yield session

    async def _all(self, query: Select[Any], opts: RepositoryOptions) -> list[ModelType]:
        async with self._session_scope(opts) as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    def _cache_key(self, key: str) -> str:
        return build_key(self.model.__name__, key)

    async def _clear_cache(self) -> None:
        await self.cache.clear()
        self._logger.debug("Cache cleared", model=self.model.__name__)
