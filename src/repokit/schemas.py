"""Pydantic request and response models for the HTTP API."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from repokit.models.permission import PermissionAction, PermissionResource


class RoleSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    slug: str


class UserRead(BaseModel):
    """User as returned by the API; the password hash is never exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    full_name: str | None
    email: str
    status: str
    age: int | None
    created_at: datetime
    roles: list[RoleSummary] = Field(default_factory=list)


class PaginationMeta(BaseModel):
    total: int
    per_page: int
    current_page: int
    last_page: int
    first_page: int
    first_page_url: str
    last_page_url: str
    next_page_url: str | None
    previous_page_url: str | None


class UserPage(BaseModel):
    meta: PaginationMeta
    data: list[UserRead]


class PermissionCreate(BaseModel):
    resource: PermissionResource
    action: PermissionAction
    name: str | None = Field(default=None, max_length=150)
    description: str | None = None


class PermissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str | None
    resource: PermissionResource
    action: PermissionAction


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
