"""Tenant registry -- the authoritative store of tenants and their domains.

Lives entirely in the central database and never activates a tenant
context. Resolution is an exact, case-insensitive match of a normalized
hostname against the domain alias table; there is no subdomain or wildcard
inference here.

Domain lookups used by the request middleware are cached in Redis under
``tenant:domain:<host>``. The cache is best-effort: failures are logged and
the database answers instead. Registry writes that change cached fields
invalidate the tenant's keys.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime

import redis.asyncio as aioredis
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.config import get_settings
from src.hrms.core.connections import default_database_name
from src.hrms.core.database import get_engine
from src.hrms.core.exceptions import DuplicateDomainError, TenantNotFoundError
from src.hrms.core.monitoring import tenant_resolutions_total
from src.hrms.core.redis import domain_cache_key
from src.hrms.core.tenant import TenantContext
from src.hrms.models.central import (
    DomainAlias,
    IsolationMode,
    SubscriptionPlan,
    SubscriptionStatus,
    Tenant,
)

logger = structlog.get_logger(__name__)


def normalize_hostname(host: str) -> str:
    """Lower-case a Host header value and strip port and trailing dot."""
    host = host.strip().lower()
    if host.startswith("["):
        # IPv6 literal, e.g. [::1]:8000
        end = host.find("]")
        host = host[: end + 1] if end != -1 else host
    elif ":" in host:
        host = host.rsplit(":", 1)[0]
    return host.rstrip(".")


@dataclass
class TenantRegistration:
    """Everything needed to register a tenant and its domain aliases."""

    company_name: str
    slug: str
    domains: list[str]
    plan: SubscriptionPlan | None = None
    isolation_mode: str = IsolationMode.shared.value
    database_name: str | None = None
    subscription_status: str = SubscriptionStatus.trial.value
    trial_ends_at: datetime | None = None
    subscription_ends_at: datetime | None = None
    subscription_type: str | None = None
    is_demo: bool = False
    tenant_id: str = field(default_factory=lambda: str(uuid.uuid4()))


def _default_session_factory() -> AsyncSession:
    return AsyncSession(get_engine(), expire_on_commit=False)


class TenantRegistry:
    """Create, look up and update tenants.

    Args:
        session_factory: Callable returning a new AsyncSession on the
            central database. Defaults to the central engine.
        redis_client: Optional Redis client for the domain resolution cache.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        redis_client: aioredis.Redis | None = None,
    ) -> None:
        self._session_factory = session_factory or _default_session_factory
        self._redis = redis_client

    @asynccontextmanager
    async def _session(self, session: AsyncSession | None) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._session_factory() as owned:
            yield owned

    # ── Registration ────────────────────────────────────────────────────

    async def create(self, registration: TenantRegistration, session: AsyncSession | None = None) -> Tenant:
        """Persist a tenant and its domain aliases as one unit.

        When `session` is given the registry joins the caller's transaction
        and only flushes; otherwise it commits its own.

        Raises:
            DuplicateDomainError: An alias is already registered anywhere, or
                appears twice in the registration.
        """
        domains = [normalize_hostname(d) for d in registration.domains]
        if not domains:
            raise ValueError("A tenant needs at least one domain alias")
        seen: set[str] = set()
        for domain in domains:
            if domain in seen:
                raise DuplicateDomainError(domain)
            seen.add(domain)

        owns_session = session is None
        async with self._session(session) as db:
            taken = (
                await db.execute(select(DomainAlias.domain).where(DomainAlias.domain.in_(domains)))
            ).scalars().first()
            if taken is not None:
                logger.info("registry.domain_taken", domain=taken)
                raise DuplicateDomainError(taken)

            database_name = registration.database_name
            if registration.isolation_mode == IsolationMode.dedicated.value and not database_name:
                database_name = default_database_name(registration.tenant_id)

            tenant = Tenant(
                id=registration.tenant_id,
                slug=registration.slug,
                company_name=registration.company_name,
                plan=registration.plan,
                subscription_status=registration.subscription_status,
                trial_ends_at=registration.trial_ends_at,
                subscription_ends_at=registration.subscription_ends_at,
                subscription_type=registration.subscription_type,
                onboarding_completed=False,
                isolation_mode=registration.isolation_mode,
                database_name=database_name,
                is_demo=registration.is_demo,
            )
            tenant.domains = [DomainAlias(domain=d) for d in domains]
            db.add(tenant)

            try:
                await db.flush()
                if owns_session:
                    await db.commit()
            except IntegrityError as exc:
                # Lost a race against a concurrent registration of the same alias
                if owns_session:
                    await db.rollback()
                logger.warning("registry.create_conflict", domains=domains, error=str(exc.orig))
                raise DuplicateDomainError(domains[0]) from exc

        logger.info(
            "registry.tenant_created",
            tenant_id=tenant.id,
            slug=tenant.slug,
            isolation_mode=tenant.isolation_mode,
            domains=domains,
        )
        return tenant

    # ── Lookups ─────────────────────────────────────────────────────────

    async def resolve_by_domain(self, hostname: str, session: AsyncSession | None = None) -> Tenant:
        """Exact lookup of a hostname in the alias table.

        Raises:
            TenantNotFoundError: No alias matches.
        """
        host = normalize_hostname(hostname)
        async with self._session(session) as db:
            result = await db.execute(
                select(Tenant).join(DomainAlias, DomainAlias.tenant_id == Tenant.id).where(DomainAlias.domain == host)
            )
            tenant = result.scalar_one_or_none()
        if tenant is None:
            raise TenantNotFoundError(host)
        return tenant

    async def resolve_context(self, hostname: str) -> TenantContext:
        """Resolve a hostname to a TenantContext snapshot, using the cache.

        Raises:
            TenantNotFoundError: No alias matches.
        """
        host = normalize_hostname(hostname)
        key = domain_cache_key(host)

        if self._redis is not None:
            try:
                cached = await self._redis.get(key)
                if cached:
                    tenant_resolutions_total.labels(outcome="cache_hit").inc()
                    return TenantContext(**json.loads(cached))
            except Exception as e:
                logger.warning("registry.cache_get_failed", host=host, error=str(e))

        try:
            tenant = await self.resolve_by_domain(host)
        except TenantNotFoundError:
            tenant_resolutions_total.labels(outcome="not_found").inc()
            raise
        tenant_resolutions_total.labels(outcome="db").inc()
        ctx = TenantContext.from_tenant(tenant)

        if self._redis is not None:
            try:
                await self._redis.set(key, json.dumps(ctx.to_dict()), ex=get_settings().TENANT_CACHE_TTL)
            except Exception as e:
                logger.warning("registry.cache_set_failed", host=host, error=str(e))

        return ctx

    async def find_by_id(self, tenant_id: str, session: AsyncSession | None = None) -> Tenant:
        async with self._session(session) as db:
            tenant = await db.get(Tenant, str(tenant_id))
        if tenant is None:
            raise TenantNotFoundError(str(tenant_id))
        return tenant

    async def domain_exists(self, domain: str, session: AsyncSession | None = None) -> bool:
        async with self._session(session) as db:
            found = await db.scalar(
                select(DomainAlias.id).where(DomainAlias.domain == normalize_hostname(domain))
            )
        return found is not None

    async def list_tenants(self, session: AsyncSession | None = None) -> list[Tenant]:
        async with self._session(session) as db:
            result = await db.execute(select(Tenant).order_by(Tenant.created_at))
            return list(result.scalars().all())

    # ── Updates ─────────────────────────────────────────────────────────

    async def update_status(self, tenant_id: str, status: SubscriptionStatus | str) -> Tenant:
        """Set the subscription status of a tenant."""
        value = SubscriptionStatus(status).value
        async with self._session(None) as db:
            tenant = await db.get(Tenant, str(tenant_id))
            if tenant is None:
                raise TenantNotFoundError(str(tenant_id))
            tenant.subscription_status = value
            await db.commit()
        await self.invalidate(tenant)
        logger.info("registry.status_updated", tenant_id=tenant.id, status=value)
        return tenant

    async def mark_onboarding_completed(
        self,
        tenant_id: str,
        company_name: str | None = None,
        session: AsyncSession | None = None,
    ) -> Tenant:
        """Flag onboarding as done (and optionally rename the company)."""
        owns_session = session is None
        async with self._session(session) as db:
            tenant = await db.get(Tenant, str(tenant_id))
            if tenant is None:
                raise TenantNotFoundError(str(tenant_id))
            tenant.onboarding_completed = True
            if company_name:
                tenant.company_name = company_name
            if owns_session:
                await db.commit()
            else:
                await db.flush()
        await self.invalidate(tenant)
        return tenant

    async def invalidate(self, tenant: Tenant) -> None:
        """Drop cached resolutions for every alias of a tenant."""
        if self._redis is None or not tenant.domains:
            return
        try:
            await self._redis.delete(*(domain_cache_key(d.domain) for d in tenant.domains))
        except Exception as e:
            logger.warning("registry.cache_invalidate_failed", tenant_id=tenant.id, error=str(e))
