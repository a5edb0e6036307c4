"""Tests for the plan catalogue and subscription state on tenants."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.hrms.core.exceptions import PlanNotFoundError
from src.hrms.models.central import Tenant, utcnow
from src.hrms.services.plans import get_plan_by_slug, list_plans, seed_default_plans


async def test_default_plans_seeded_once(central_session):
    assert await seed_default_plans(central_session) == 0
    plans = await list_plans(central_session)
    assert [p.slug for p in plans] == ["free", "plus", "pro", "enterprise"]


async def test_plan_isolation_modes(central_session):
    modes = {p.slug: p.isolation_mode for p in await list_plans(central_session)}
    assert modes == {"free": "shared", "plus": "shared", "pro": "dedicated", "enterprise": "dedicated"}


async def test_plan_pricing_flags(central_session):
    free = await get_plan_by_slug(central_session, "free")
    plus = await get_plan_by_slug(central_session, "plus")
    assert free.is_free
    assert not plus.is_free
    assert plus.yearly_savings > 0
    assert free.max_users == 15
    assert (await get_plan_by_slug(central_session, "enterprise")).has_unlimited_users


async def test_inactive_plan_is_not_found(central_session):
    plus = await get_plan_by_slug(central_session, "plus")
    plus.is_active = False
    await central_session.commit()

    with pytest.raises(PlanNotFoundError):
        await get_plan_by_slug(central_session, "plus")


async def test_feature_flags(central_session):
    pro = await get_plan_by_slug(central_session, "pro")
    assert pro.has_feature("payroll")
    assert pro.has_feature("Priority support")
    assert not pro.has_feature("custom_domain")


async def test_change_plan_keeps_isolation_mode(central_session):
    free = await get_plan_by_slug(central_session, "free")
    pro = await get_plan_by_slug(central_session, "pro")
    tenant = Tenant(slug="acme", company_name="Acme", plan=free, isolation_mode=free.isolation_mode)

    tenant.change_plan(pro)

    assert tenant.plan is pro
    assert tenant.isolation_mode == "shared"


async def test_user_seats_follow_the_plan(central_session):
    free = await get_plan_by_slug(central_session, "free")
    enterprise = await get_plan_by_slug(central_session, "enterprise")
    tenant = Tenant(slug="acme", company_name="Acme", plan=free, isolation_mode=free.isolation_mode)

    assert tenant.can_add_users(14)
    assert not tenant.can_add_users(15)
    assert not tenant.can_add_users(10, count=6)

    tenant.change_plan(enterprise)
    assert tenant.can_add_users(10_000)


def test_subscription_windows():
    now = utcnow()
    trial = Tenant(slug="t", company_name="T", subscription_status="trial", trial_ends_at=now + timedelta(days=5))
    assert trial.is_on_trial(now)
    assert not trial.is_expired(now)
    assert trial.days_remaining(now) == 5

    lapsed = Tenant(slug="l", company_name="L", subscription_status="trial", trial_ends_at=now - timedelta(days=1))
    assert not lapsed.is_on_trial(now)
    assert lapsed.is_expired(now)
    assert lapsed.days_remaining(now) == 0

    paid = Tenant(slug="p", company_name="P", subscription_status="active")
    assert paid.is_subscription_active(now)
    paid.renew_subscription(cycle_days=30)
    assert paid.days_remaining() in (29, 30)
    paid.suspend()
    assert not paid.is_subscription_active()
