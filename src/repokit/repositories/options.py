"""Option and result types shared by every repository.

``RepositoryOptions`` is the per-call option bag the facade understands;
``PaginateOptions`` adds page selection. Both are frozen so a caller can keep
one instance around and derive variants with ``dataclasses.replace``.
"""

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")

QueryModifier = Callable[[Select[Any]], Select[Any]]
"""A function that receives a ``select()`` and returns a refined one."""

PreloadRefiner = Callable[[Any], Any]
"""Receives a relationship loader option (``selectinload(...)``) and returns it refined."""


@dataclass(frozen=True)
class CacheOptions:
    """Cache a lookup under ``key`` for ``ttl`` seconds (backend default when None)."""

    key: str
    ttl: int | None = None


@dataclass(frozen=True)
class RepositoryOptions:
    """Per-call options understood by ``BaseRepository``.

    Attributes:
        transaction: Session to run in; the repository never commits it
        with_trashed: Include soft-deleted rows
        only_trashed: Only soft-deleted rows (wins over ``with_trashed``)
        select: Attributes to load; the primary key is always loaded
        preload: Relationship names, or a mapping of name to loader refiner
        cache: Cache key and TTL for ``find_by``
        lock_for_update: Add ``FOR UPDATE`` to the query
        sort_by: Attribute to order by (attribute, camelCase or column name)
        direction: "asc" or "desc"
        modify_query: Modifiers applied in order after the structural options
        scopes: Names of registered scopes applied after ``modify_query``
    """

    transaction: AsyncSession | None = None
    with_trashed: bool = False
    only_trashed: bool = False
    select: Sequence[str] | None = None
    preload: Sequence[str] | Mapping[str, PreloadRefiner | None] | None = None
    cache: CacheOptions | None = None
    lock_for_update: bool = False
    sort_by: str | None = None
    direction: str | None = None
    modify_query: Sequence[QueryModifier] = ()
    scopes: Sequence[str] = ()


@dataclass(frozen=True)
class PaginateOptions(RepositoryOptions):
    """``RepositoryOptions`` plus 1-indexed page selection.

    ``None`` or 0 fall back to the repository defaults; negatives are rejected.
    """

    page: int | None = None
    per_page: int | None = None


class FilterOperator(str, Enum):
    """Comparison operators accepted by ``find_where``."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    IN = "in"
    NIN = "nin"
    BETWEEN = "between"
    NOT_BETWEEN = "notBetween"

    @classmethod
    def _missing_(cls, value: object) -> "FilterOperator | None":
        if value == "not_between":
            return cls.NOT_BETWEEN
        return None


@dataclass(frozen=True)
class FilterCriteria:
    """One ``field <operator> value`` predicate for ``find_where``.

    ``between``/``notBetween`` take a two item sequence; ``in``/``nin`` any
    iterable of values.
    """

    field: str
    operator: FilterOperator | str
    value: Any = None


@dataclass(frozen=True)
class BatchError:
    """Failure of one slice: its starting offset in the input and the error text."""

    index: int
    message: str


@dataclass
class BatchResult:
    """Outcome of ``create_in_batches``."""

    success: int = 0
    failed: int = 0
    errors: list[BatchError] = field(default_factory=list)


@dataclass
class PaginatedResult(Generic[T]):
    """One page of results plus navigation metadata.

    Example:
        page = await repo.paginate(PaginateOptions(page=2, per_page=20))
        page.items, page.total, page.last_page, page.next_page_url
    """

    items: list[T]
    total: int
    per_page: int
    current_page: int
    base_url: str = "/"
    first_page: int = 1

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def has_next(self) -> bool:
        return self.current_page < self.last_page

    @property
    def has_prev(self) -> bool:
        return self.current_page > self.first_page

    @property
    def is_empty(self) -> bool:
        return not self.items

    def page_url(self, page: int) -> str:
        return f"{self.base_url}?page={page}"

    @property
    def next_page_url(self) -> str | None:
        return self.page_url(self.current_page + 1) if self.has_next else None

    @property
    def previous_page_url(self) -> str | None:
        return self.page_url(self.current_page - 1) if self.has_prev else None

    def meta(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "per_page": self.per_page,
            "current_page": self.current_page,
            "last_page": self.last_page,
            "first_page": self.first_page,
            "first_page_url": self.page_url(self.first_page),
            "last_page_url": self.page_url(self.last_page),
            "next_page_url": self.next_page_url,
            "previous_page_url": self.previous_page_url,
        }

    def to_dict(self, serialize: Callable[[T], Any] | None = None) -> dict[str, Any]:
        """Return ``{"meta": ..., "data": [...]}``, serializing items when asked."""
        data = [serialize(item) for item in self.items] if serialize else list(self.items)
        return {"meta": self.meta(), "data": data}
