"""Pydantic schemas for tenant API endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class ProvisionRequest(BaseModel):
    """Signup form: everything needed to provision a tenant.

    Payment fields are accepted so the signup form can post them, but they
    are not validated or processed.
    """

    company_name: str = Field(..., min_length=1, max_length=255, examples=["Acme Corp"])
    domain: str = Field(
        ...,
        min_length=1,
        max_length=63,
        pattern=r"^[A-Za-z0-9-]+$",
        description="Domain label; the tenant is reachable at <label>.<base domain>",
        examples=["acme"],
    )
    plan: str = Field(..., min_length=1, max_length=50, description="Subscription plan slug", examples=["free"])
    admin_email: EmailStr
    admin_name: str = Field(..., min_length=1, max_length=255)

    payment_type: str | None = Field(default=None, max_length=20, examples=["monthly", "yearly"])
    card_number: str | None = None
    card_expiry: str | None = None
    card_cvc: str | None = None
    cardholder_name: str | None = None


class DomainResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    domain: str


class TenantResponse(BaseModel):
    """Response schema for tenant data."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    company_name: str
    isolation_mode: str
    database_name: str | None = None
    subscription_status: str
    trial_ends_at: datetime | None = None
    subscription_ends_at: datetime | None = None
    onboarding_completed: bool
    is_demo: bool = False
    domains: list[DomainResponse] = []
    created_at: datetime | None = None
