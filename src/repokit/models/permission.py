"""Permission model, its resource/action enums and the role/permission table."""

from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import Column, Enum as SQLEnum, ForeignKey, String, Table, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repokit.models.base import Base, TimestampMixin, UUIDMixin, generate_repr

if TYPE_CHECKING:
    from repokit.models.role import Role


class PermissionResource(str, Enum):
    """Resources that permissions are granted on."""

    USERS = "users"
    ROLES = "roles"
    PERMISSIONS = "permissions"
    FILES = "files"


class PermissionAction(str, Enum):
    """Actions a permission allows on its resource."""

    LIST = "list"
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Permission(Base, UUIDMixin, TimestampMixin):
    """Permission to perform one action on one resource.

    Attributes:
        id: Primary key UUID
        name: Display name, defaults to "<resource>.<action>"
        description: Optional description
        resource: Resource the permission applies to
        action: Action allowed on the resource
        roles: Roles granting this permission
    """

    __tablename__ = "permissions"

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    resource: Mapped[PermissionResource] = mapped_column(
        SQLEnum(PermissionResource, native_enum=False, values_callable=_enum_values, length=50),
        nullable=False,
    )
    action: Mapped[PermissionAction] = mapped_column(
        SQLEnum(PermissionAction, native_enum=False, values_callable=_enum_values, length=50),
        nullable=False,
    )

    # Relationships
    roles: Mapped[list["Role"]] = relationship(
        "Role",
        secondary=role_permissions,
        back_populates="permissions",
    )

    __table_args__ = (
        UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    __repr__ = generate_repr("id", "resource", "action")
