"""Model introspection for repositories.

``ModelSchema`` captures what a repository needs to know about a mapped class:
its primary key, columns, relationships, soft-delete column and the names
callers may use for each attribute.
"""

import functools
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import inspect as sa_inspect

DEFAULT_SOFT_DELETE_FIELD = "deleted_at"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def camel_case(name: str) -> str:
    """``full_name`` -> ``fullName``."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def snake_case(name: str) -> str:
    """``fullName`` -> ``full_name``."""
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


@dataclass(frozen=True)
class ModelSchema:
    """Attribute layout of a mapped model.

    Attributes:
        model: The mapped class
        primary_key: Attribute name of the (first) primary key column
        columns: Column attribute names in mapper order
        relationships: Relationship attribute names
        soft_delete_field: Soft-delete column attribute, or None
        aliases: Accepted name -> attribute name
        column_keys: Attribute name -> key of its column in a ``subquery().c``
    """

    model: type[Any]
    primary_key: str
    columns: tuple[str, ...]
    relationships: tuple[str, ...]
    soft_delete_field: str | None
    aliases: Mapping[str, str]
    column_keys: Mapping[str, str]

    @classmethod
    def from_model(cls, model: type[Any]) -> "ModelSchema":
        mapper = sa_inspect(model)
        columns = tuple(attr.key for attr in mapper.column_attrs)

        aliases: dict[str, str] = {}
        column_keys: dict[str, str] = {}
        for attr in mapper.column_attrs:
            aliases[attr.key] = attr.key
            column_keys[attr.key] = attr.columns[0].key
        for attr in mapper.column_attrs:
            aliases.setdefault(camel_case(attr.key), attr.key)
            aliases.setdefault(snake_case(attr.key), attr.key)
            aliases.setdefault(attr.columns[0].name, attr.key)

        soft_delete_field = getattr(model, "__soft_delete_field__", DEFAULT_SOFT_DELETE_FIELD)

        return cls(
            model=model,
            primary_key=mapper.get_property_by_column(mapper.primary_key[0]).key,
            columns=columns,
            relationships=tuple(rel.key for rel in mapper.relationships),
            soft_delete_field=soft_delete_field if soft_delete_field in columns else None,
            aliases=aliases,
            column_keys=column_keys,
        )

    def resolve(self, name: str) -> str | None:
        """Attribute name for ``name``, or None when the model has no such column."""
        return self.aliases.get(name)

    @property
    def available(self) -> list[str]:
        """Every accepted column name, for error messages."""
        return list(self.aliases)


@functools.lru_cache(maxsize=None)
def model_schema(model: type[Any]) -> ModelSchema:
    """Introspect ``model`` once and reuse the result."""
    return ModelSchema.from_model(model)
