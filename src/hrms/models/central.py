"""Central registry models -- tables that exist once in the central database.

SubscriptionPlan, Tenant and DomainAlias are used for tenant resolution
and provisioning and are never tenant-scoped.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.hrms.core.database import CentralBase


class IsolationMode(str, Enum):
    shared = "shared"
    dedicated = "dedicated"


class SubscriptionStatus(str, Enum):
    trial = "trial"
    active = "active"
    suspended = "suspended"
    cancelled = "cancelled"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SubscriptionPlan(CentralBase):
    """Subscription plan. Decides a new tenant's isolation mode and trial."""

    __tablename__ = "subscription_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_monthly: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    price_yearly: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    max_users: Mapped[int] = mapped_column(Integer, default=-1)
    max_job_posts: Mapped[int] = mapped_column(Integer, default=-1)
    has_onboarding_framework: Mapped[bool] = mapped_column(Boolean, default=False)
    has_ai_features: Mapped[bool] = mapped_column(Boolean, default=False)
    has_api_access: Mapped[bool] = mapped_column(Boolean, default=False)
    has_payroll: Mapped[bool] = mapped_column(Boolean, default=False)
    has_subdomain: Mapped[bool] = mapped_column(Boolean, default=False)
    has_custom_domain: Mapped[bool] = mapped_column(Boolean, default=False)
    isolation_mode: Mapped[str] = mapped_column(String(20), default=IsolationMode.shared.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    features: Mapped[list | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def is_free(self) -> bool:
        return Decimal(self.price_monthly or 0) == 0 and Decimal(self.price_yearly or 0) == 0

    @property
    def uses_dedicated_database(self) -> bool:
        return self.isolation_mode == IsolationMode.dedicated.value

    @property
    def has_unlimited_users(self) -> bool:
        return self.max_users == -1

    @property
    def yearly_savings(self) -> Decimal:
        if not self.price_monthly:
            return Decimal("0.00")
        return Decimal(self.price_monthly) * 12 - Decimal(self.price_yearly or 0)

    @property
    def yearly_savings_percentage(self) -> float:
        if not self.price_monthly:
            return 0.0
        return float(self.yearly_savings / (Decimal(self.price_monthly) * 12) * 100)

    def has_feature(self, feature: str) -> bool:
        """Check a has_<feature> flag first, then the free-form features list."""
        flag = getattr(self, f"has_{feature}", None)
        if isinstance(flag, bool):
            return flag
        return feature in (self.features or [])


class Tenant(CentralBase):
    """Registered tenant.

    isolation_mode is fixed at creation. Dedicated tenants always carry a
    database_name naming their own database.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slug: Mapped[str] = mapped_column(String(63), unique=True, nullable=False)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    plan_id: Mapped[int | None] = mapped_column(ForeignKey("subscription_plans.id"), nullable=True)
    subscription_status: Mapped[str] = mapped_column(String(20), default=SubscriptionStatus.trial.value)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    isolation_mode: Mapped[str] = mapped_column(String(20), default=IsolationMode.shared.value)
    database_name: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)
    is_demo: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=utcnow, nullable=True)

    plan: Mapped[SubscriptionPlan | None] = relationship(lazy="selectin")
    domains: Mapped[list[DomainAlias]] = relationship(
        back_populates="tenant",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="DomainAlias.id",
    )

    @property
    def primary_domain(self) -> str | None:
        return self.domains[0].domain if self.domains else None

    @property
    def is_dedicated(self) -> bool:
        return self.isolation_mode == IsolationMode.dedicated.value

    def is_on_trial(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        trial_ends_at = _aware(self.trial_ends_at)
        return (
            self.subscription_status == SubscriptionStatus.trial.value
            and trial_ends_at is not None
            and trial_ends_at > now
        )

    def is_subscription_active(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        ends_at = _aware(self.subscription_ends_at)
        return self.subscription_status == SubscriptionStatus.active.value and (
            ends_at is None or ends_at > now
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        if self.subscription_status == SubscriptionStatus.trial.value:
            trial_ends_at = _aware(self.trial_ends_at)
            return trial_ends_at is not None and trial_ends_at <= now
        ends_at = _aware(self.subscription_ends_at)
        return ends_at is not None and ends_at <= now

    def days_remaining(self, now: datetime | None = None) -> int | None:
        """Whole days left in the trial or the current billing period."""
        now = now or utcnow()
        if self.subscription_status == SubscriptionStatus.trial.value:
            end = _aware(self.trial_ends_at)
        else:
            end = _aware(self.subscription_ends_at)
        if end is None:
            return None
        return max(0, (end - now).days)

    def renew_subscription(self, cycle_days: int = 30) -> None:
        self.subscription_ends_at = utcnow() + timedelta(days=cycle_days)
        self.subscription_status = SubscriptionStatus.active.value

    def suspend(self) -> None:
        self.subscription_status = SubscriptionStatus.suspended.value

    def cancel(self) -> None:
        self.subscription_status = SubscriptionStatus.cancelled.value

    def change_plan(self, plan: SubscriptionPlan) -> None:
        """Move to another plan. The isolation mode stays what it was at creation."""
        self.plan = plan
        self.plan_id = plan.id

    def has_feature(self, feature: str) -> bool:
        return self.plan is not None and self.plan.has_feature(feature)

    def can_add_users(self, current_count: int, count: int = 1) -> bool:
        if self.plan is None or self.plan.has_unlimited_users:
            return True
        return current_count + count <= self.plan.max_users


class DomainAlias(CentralBase):
    """Fully-qualified hostname mapped to exactly one tenant. Globally unique."""

    __tablename__ = "domains"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    tenant: Mapped[Tenant] = relationship(back_populates="domains")
