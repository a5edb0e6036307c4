"""Subscription plan catalogue.

Seeds the four default plans on startup (idempotent, keyed by slug) and
looks plans up for provisioning.
"""

from __future__ import annotations

from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.core.exceptions import PlanNotFoundError
from src.hrms.models.central import IsolationMode, SubscriptionPlan

logger = structlog.get_logger(__name__)

DEFAULT_PLANS: list[dict] = [
    {
        "name": "Free",
        "slug": "free",
        "description": "Perfect for small businesses getting started with HR management",
        "price_monthly": Decimal("0.00"),
        "price_yearly": Decimal("0.00"),
        "max_users": 15,
        "max_job_posts": 15,
        "isolation_mode": IsolationMode.shared.value,
        "features": [
            "Basic employee management",
            "Basic attendance tracking",
            "Standard reports",
            "Email support",
        ],
    },
    {
        "name": "Plus",
        "slug": "plus",
        "description": "Enhanced features for growing teams",
        "price_monthly": Decimal("49.99"),
        "price_yearly": Decimal("499.99"),
        "max_users": 50,
        "max_job_posts": 65,
        "has_onboarding_framework": True,
        "isolation_mode": IsolationMode.shared.value,
        "features": [
            "Full employee management",
            "Onboarding framework",
            "Advanced attendance & leave management",
            "Custom reports",
            "Priority email support",
        ],
    },
    {
        "name": "Pro",
        "slug": "pro",
        "description": "Advanced features with AI and dedicated infrastructure",
        "price_monthly": Decimal("149.99"),
        "price_yearly": Decimal("1499.99"),
        "max_users": 250,
        "max_job_posts": -1,
        "has_onboarding_framework": True,
        "has_ai_features": True,
        "has_api_access": True,
        "has_payroll": True,
        "has_subdomain": True,
        "isolation_mode": IsolationMode.dedicated.value,
        "features": [
            "All Plus features",
            "AI-powered CV vetting",
            "Full API access",
            "Payroll processing",
            "Unlimited job postings",
            "Priority support",
        ],
    },
    {
        # Custom pricing, negotiated outside the product
        "name": "Enterprise",
        "slug": "enterprise",
        "description": "Custom solutions for large organizations",
        "price_monthly": Decimal("0.00"),
        "price_yearly": Decimal("0.00"),
        "max_users": -1,
        "max_job_posts": -1,
        "has_onboarding_framework": True,
        "has_ai_features": True,
        "has_api_access": True,
        "has_payroll": True,
        "has_subdomain": True,
        "has_custom_domain": True,
        "isolation_mode": IsolationMode.dedicated.value,
        "features": [
            "All Pro features",
            "Custom domain support",
            "White-label branding",
            "SLA guarantees",
            "Unlimited everything",
        ],
    },
]


async def seed_default_plans(session: AsyncSession) -> int:
    """Insert any missing default plans. Returns how many were created."""
    existing = set((await session.execute(select(SubscriptionPlan.slug))).scalars().all())
    created = 0
    for spec in DEFAULT_PLANS:
        if spec["slug"] in existing:
            continue
        session.add(SubscriptionPlan(is_active=True, **spec))
        created += 1
    if created:
        await session.commit()
        logger.info("plans.seeded", created=created)
    return created


async def get_plan_by_slug(session: AsyncSession, slug: str) -> SubscriptionPlan:
    """Return an active plan.

    Raises:
        PlanNotFoundError: Unknown or inactive slug.
    """
    result = await session.execute(
        select(SubscriptionPlan).where(
            SubscriptionPlan.slug == slug,
            SubscriptionPlan.is_active == True,  # noqa: E712
        )
    )
    plan = result.scalar_one_or_none()
    if plan is None:
        raise PlanNotFoundError(slug)
    return plan


async def list_plans(session: AsyncSession) -> list[SubscriptionPlan]:
    result = await session.execute(
        select(SubscriptionPlan)
        .where(SubscriptionPlan.is_active == True)  # noqa: E712
        .order_by(SubscriptionPlan.id)
    )
    return list(result.scalars().all())
