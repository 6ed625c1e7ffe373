"""Role model and the user/role association table."""

from typing import TYPE_CHECKING

from sqlalchemy import Column, ForeignKey, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repokit.models.base import Base, TimestampMixin, UUIDMixin, generate_repr
from repokit.models.permission import role_permissions

if TYPE_CHECKING:
    from repokit.models.permission import Permission
    from repokit.models.user import User

user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base, UUIDMixin, TimestampMixin):
    """A named set of permissions.

    Attributes:
        id: Primary key UUID
        name: Human readable name
        slug: Unique machine name (e.g., "admin")
        description: Optional description
        users: Users holding the role
        permissions: Permissions granted by the role
    """

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    users: Mapped[list["User"]] = relationship(
        "User",
        secondary=user_roles,
        back_populates="roles",
    )
    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_permissions,
        back_populates="roles",
    )

    __repr__ = generate_repr("id", "slug")
