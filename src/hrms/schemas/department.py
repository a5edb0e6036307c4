"""Pydantic schemas for department endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, examples=["Engineering"])
    branch_name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    manager_id: str | None = None


class DepartmentUpdate(BaseModel):
    """Partial update. tenant_id is not a field here and cannot be changed."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    branch_name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    manager_id: str | None = None
    is_active: bool | None = None


class DepartmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    name: str
    branch_name: str | None = None
    description: str | None = None
    manager_id: str | None = None
    is_active: bool
    created_at: datetime | None = None
