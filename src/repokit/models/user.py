"""User model."""

from typing import TYPE_CHECKING

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repokit.models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDMixin, generate_repr
from repokit.models.role import user_roles

if TYPE_CHECKING:
    from repokit.models.role import Role


class User(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """Represents an application user.

    Attributes:
        id: Primary key UUID
        full_name: Display name
        email: Unique login email
        status: Account status ("active", "inactive", ...)
        age: Age in years, if known
        password_hash: Hashed password; never serialized
        created_at: Record creation timestamp
        updated_at: Record last update timestamp
        deleted_at: Soft delete timestamp
        roles: Roles granted to the user
    """

    __tablename__ = "users"

    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Relationships
    roles: Mapped[list["Role"]] = relationship(
        "Role",
        secondary=user_roles,
        back_populates="users",
    )

    __table_args__ = (
        Index("idx_users_status", "status"),
    )

    __repr__ = generate_repr("id", "email", "status")
