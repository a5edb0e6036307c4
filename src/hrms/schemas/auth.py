"""Pydantic schemas for authentication API endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class UserResponse(BaseModel):
    """Response schema for current user info."""

    id: str
    email: str
    name: str | None = None
    role: str
    employee_id: str | None = None
    tenant_id: str
    tenant_slug: str
