"""Repository layer for database operations.

Repositories encapsulate database access behind ``BaseRepository`` and
per-entity wrappers, so services never build queries themselves.
"""

from repokit.repositories.base import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_PAGE,
    DEFAULT_PER_PAGE,
    ORDER_ASC,
    ORDER_DESC,
    BaseRepository,
    ConfigurationError,
    NotFoundError,
    RepositoryError,
    ValidationError,
)
from repokit.repositories.options import (
    BatchError,
    BatchResult,
    CacheOptions,
    FilterCriteria,
    FilterOperator,
    PaginatedResult,
    PaginateOptions,
    RepositoryOptions,
)
from repokit.repositories.permissions import PermissionRepository
from repokit.repositories.roles import RoleRepository
from repokit.repositories.schema import ModelSchema, model_schema
from repokit.repositories.users import UserRepository

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_PAGE",
    "DEFAULT_PER_PAGE",
    "ORDER_ASC",
    "ORDER_DESC",
    "BaseRepository",
    "BatchError",
    "BatchResult",
    "CacheOptions",
    "ConfigurationError",
    "FilterCriteria",
    "FilterOperator",
    "ModelSchema",
    "NotFoundError",
    "PaginatedResult",
    "PaginateOptions",
    "PermissionRepository",
    "RepositoryError",
    "RepositoryOptions",
    "RoleRepository",
    "UserRepository",
    "ValidationError",
    "model_schema",
]
