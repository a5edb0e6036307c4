"""Pydantic schemas for the onboarding wizard."""

from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field, model_validator


class CompleteOnboardingRequest(BaseModel):
    """Final submission of the onboarding wizard."""

    # Company details
    company_name: str = Field(..., min_length=1, max_length=255)
    address: str | None = Field(default=None, max_length=255)
    address_line_2: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=255)
    state: str | None = Field(default=None, max_length=255)
    country: str | None = Field(default=None, max_length=255)
    postal_code: str | None = Field(default=None, max_length=20)
    company_phone: str | None = Field(default=None, max_length=20)
    company_email: EmailStr | None = None
    fiscal_year_start: str | None = Field(default=None, max_length=5)
    currency: str | None = Field(default=None, max_length=3)
    timezone: str | None = Field(default=None, max_length=50)

    # Admin details
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    personal_email: EmailStr
    work_email: EmailStr | None = None
    language: str | None = Field(default=None, max_length=10)
    password: str = Field(..., min_length=8)
    password_confirmation: str

    # Working hours, keyed by weekday name
    working_hours: dict[str, dict] | None = None

    # First department
    branch_name: str | None = Field(default=None, max_length=255)
    department_name: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _passwords_match(self) -> CompleteOnboardingRequest:
        if self.password != self.password_confirmation:
            raise ValueError("Password confirmation does not match")
        return self


class OnboardingStatus(BaseModel):
    tenant_id: str
    company_name: str
    onboarding_completed: bool
    admin_email: str | None = None
    plan: str | None = None
