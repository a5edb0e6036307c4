"""Tests for the tenant registry and hostname resolution."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from src.hrms.core.exceptions import DuplicateDomainError, TenantNotFoundError
from src.hrms.core.tenant import TenantContext, context_depth
from src.hrms.models.central import DomainAlias, SubscriptionStatus, Tenant
from src.hrms.services.tenant_registry import TenantRegistration, TenantRegistry, normalize_hostname


async def _count(session, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


# ── Hostname Normalization ──────────────────────────────────────────────────


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("ACME.hrms.test", "acme.hrms.test"),
        ("acme.hrms.test:8000", "acme.hrms.test"),
        ("acme.hrms.test.", "acme.hrms.test"),
        ("  Acme.HRMS.test:443 ", "acme.hrms.test"),
        ("[::1]:8000", "[::1]"),
        ("localhost", "localhost"),
    ],
)
def test_normalize_hostname(raw, expected):
    assert normalize_hostname(raw) == expected


# ── Resolution ──────────────────────────────────────────────────────────────


async def test_resolve_is_case_insensitive_and_ignores_port(acme):
    registry = TenantRegistry()
    for host in ("acme.hrms.test", "ACME.HRMS.TEST", "acme.hrms.test:8000"):
        tenant = await registry.resolve_by_domain(host)
        assert tenant.id == acme.id
    assert context_depth() == 0


async def test_resolve_does_not_infer_subdomains(acme):
    registry = TenantRegistry()
    for host in ("www.acme.hrms.test", "acme.hrms", "acme", "hrms.test"):
        with pytest.raises(TenantNotFoundError):
            await registry.resolve_by_domain(host)


async def test_tenant_with_several_aliases(database, register_tenant):
    tenant = await register_tenant("multi", domains=["multi.hrms.test", "hr.multi.com"])
    registry = TenantRegistry()
    assert (await registry.resolve_by_domain("HR.Multi.com")).id == tenant.id
    assert (await registry.resolve_by_domain("multi.hrms.test")).id == tenant.id
    assert tenant.primary_domain == "multi.hrms.test"


async def test_resolve_context_returns_snapshot(acme):
    ctx = await TenantRegistry().resolve_context("acme.hrms.test")
    assert ctx == TenantContext.from_tenant(acme)
    assert ctx.isolation_mode == "shared"
    assert ctx.onboarding_completed is False


async def test_resolve_context_unknown_host(database):
    with pytest.raises(TenantNotFoundError):
        await TenantRegistry().resolve_context("nope.hrms.test")


# ── Registration ────────────────────────────────────────────────────────────


async def test_duplicate_domain_is_rejected_without_partial_rows(acme, central_session, register_tenant):
    tenants_before = await _count(central_session, Tenant)

    with pytest.raises(DuplicateDomainError) as exc_info:
        await register_tenant("acme2", domains=["new.hrms.test", "ACME.hrms.test"])

    assert exc_info.value.domain == "acme.hrms.test"
    assert exc_info.value.status_code == 409
    assert await _count(central_session, Tenant) == tenants_before
    assert await central_session.scalar(
        select(DomainAlias.id).where(DomainAlias.domain == "new.hrms.test")
    ) is None


async def test_duplicate_domain_within_one_registration(database, register_tenant):
    with pytest.raises(DuplicateDomainError):
        await register_tenant("twice", domains=["twice.hrms.test", "Twice.hrms.test:80"])


async def test_registration_needs_a_domain(database, register_tenant):
    with pytest.raises(ValueError):
        await register_tenant("nodomain", domains=[])


async def test_dedicated_tenant_gets_database_name(database, register_tenant):
    tenant = await register_tenant("gamma", isolation_mode="dedicated")
    assert tenant.is_dedicated
    assert tenant.database_name
    assert tenant.id.replace("-", "_") in tenant.database_name


async def test_shared_tenant_has_no_database_name(acme):
    assert acme.database_name is None
    assert acme.subscription_status == SubscriptionStatus.trial.value


async def test_domain_exists_and_find_by_id(acme):
    registry = TenantRegistry()
    assert await registry.domain_exists("Acme.hrms.test")
    assert not await registry.domain_exists("other.hrms.test")
    assert (await registry.find_by_id(acme.id)).slug == "acme"
    with pytest.raises(TenantNotFoundError):
        await registry.find_by_id("missing")


async def test_create_inside_caller_transaction_is_rolled_back_with_it(database, central_session):
    registry = TenantRegistry()
    registration = TenantRegistration(company_name="Joined", slug="joined", domains=["joined.hrms.test"])
    await registry.create(registration, session=central_session)
    await central_session.rollback()

    assert not await registry.domain_exists("joined.hrms.test")


# ── Updates ─────────────────────────────────────────────────────────────────


async def test_update_status(acme):
    registry = TenantRegistry()
    updated = await registry.update_status(acme.id, "suspended")
    assert updated.subscription_status == "suspended"
    assert (await registry.find_by_id(acme.id)).subscription_status == "suspended"

    with pytest.raises(ValueError):
        await registry.update_status(acme.id, "frozen")


async def test_mark_onboarding_completed(acme):
    registry = TenantRegistry()
    await registry.mark_onboarding_completed(acme.id, company_name="Acme Corporation")

    reloaded = await registry.find_by_id(acme.id)
    assert reloaded.onboarding_completed is True
    assert reloaded.company_name == "Acme Corporation"


# ── Resolution Cache ────────────────────────────────────────────────────────


async def test_cache_miss_populates_cache(acme):
    redis = AsyncMock()
    redis.get.return_value = None

    ctx = await TenantRegistry(redis_client=redis).resolve_context("Acme.hrms.test:8000")

    assert ctx.tenant_id == acme.id
    redis.get.assert_awaited_once_with("tenant:domain:acme.hrms.test")
    key, payload = redis.set.await_args.args
    assert key == "tenant:domain:acme.hrms.test"
    assert json.loads(payload)["tenant_id"] == acme.id


async def test_cache_hit_skips_database(database):
    cached = TenantContext(tenant_id="cached-id", slug="cached", company_name="Cached")
    redis = AsyncMock()
    redis.get.return_value = json.dumps(cached.to_dict())

    ctx = await TenantRegistry(redis_client=redis).resolve_context("cached.hrms.test")

    assert ctx == cached
    redis.set.assert_not_awaited()


async def test_cache_failure_falls_back_to_database(acme):
    redis = AsyncMock()
    redis.get.side_effect = ConnectionError("redis down")
    redis.set.side_effect = ConnectionError("redis down")

    ctx = await TenantRegistry(redis_client=redis).resolve_context("acme.hrms.test")
    assert ctx.tenant_id == acme.id


async def test_status_change_invalidates_cached_domains(acme):
    redis = AsyncMock()
    await TenantRegistry(redis_client=redis).update_status(acme.id, SubscriptionStatus.cancelled)
    redis.delete.assert_awaited_once_with("tenant:domain:acme.hrms.test")
