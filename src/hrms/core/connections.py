"""Storage targets for dedicated-mode tenants.

Each dedicated tenant owns a database named by Tenant.database_name. The
TenantDatabaseManager keeps one AsyncEngine per tenant:

- created lazily on first activation (database created on PostgreSQL,
  tenant tables created everywhere)
- cached for reuse across requests
- validated with SELECT 1 before reuse, recreated when validation fails

Connection failures are retried with tenacity and surface as
ContextActivationError once attempts are exhausted.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.hrms.config import get_settings
from src.hrms.core.database import TenantScopedBase, build_engine, get_engine
from src.hrms.core.exceptions import ContextActivationError
from src.hrms.core.monitoring import dedicated_tenant_engines
from src.hrms.core.tenant import TenantContext

logger = structlog.get_logger(__name__)

_RETRYABLE = (OSError, SQLAlchemyError)


def default_database_name(tenant_id: str) -> str:
    """Database name for a dedicated tenant that was not given one explicitly."""
    settings = get_settings()
    safe_id = tenant_id.replace("-", "_")
    return f"{settings.TENANT_DATABASE_PREFIX}{safe_id}{settings.TENANT_DATABASE_SUFFIX}"


class TenantDatabaseManager:
    """Pool of engines for dedicated tenant databases, keyed by tenant id."""

    def __init__(self, url_template: str | None = None) -> None:
        self._url_template = url_template or get_settings().TENANT_DATABASE_URL_TEMPLATE
        self._engines: dict[str, AsyncEngine] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._engines)

    def database_url(self, database_name: str) -> str:
        return self._url_template.format(database=database_name)

    def _database_name(self, tenant) -> str:
        return tenant.database_name or default_database_name(tenant.tenant_id)

    async def connect(self, tenant) -> AsyncEngine:
        """Return a validated engine for a dedicated tenant.

        Raises:
            ContextActivationError: The database could not be reached or
                created within TENANT_CONNECT_ATTEMPTS attempts.
        """
        tenant = TenantContext.from_tenant(tenant)
        settings = get_settings()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, settings.TENANT_CONNECT_ATTEMPTS)),
                wait=wait_exponential(multiplier=settings.TENANT_CONNECT_BACKOFF, max=5),
                retry=retry_if_exception_type(_RETRYABLE),
                reraise=True,
            ):
                with attempt:
                    return await self._checkout(tenant)
        except _RETRYABLE as exc:
            logger.error(
                "tenancy.dedicated_connect_failed",
                tenant_id=tenant.tenant_id,
                database=self._database_name(tenant),
                error=str(exc),
            )
            raise ContextActivationError(tenant.tenant_id, str(exc)) from exc
        raise ContextActivationError(tenant.tenant_id)

    async def _checkout(self, tenant) -> AsyncEngine:
        engine = self._engines.get(tenant.tenant_id)
        if engine is not None:
            if await self._is_alive(engine):
                return engine
            logger.warning("tenancy.dedicated_engine_stale", tenant_id=tenant.tenant_id)
            await self._discard(tenant.tenant_id)

        async with self._lock:
            engine = self._engines.get(tenant.tenant_id)
            if engine is None:
                engine = await self._open(self._database_name(tenant))
                self._engines[tenant.tenant_id] = engine
                dedicated_tenant_engines.set(len(self._engines))
                logger.info("tenancy.dedicated_engine_created", tenant_id=tenant.tenant_id)
        return engine

    async def _open(self, database_name: str) -> AsyncEngine:
        await self.ensure_database(database_name)
        engine = build_engine(self.database_url(database_name))
        try:
            async with engine.begin() as conn:
                await conn.run_sync(TenantScopedBase.metadata.create_all)
        except BaseException:
            await engine.dispose()
            raise
        return engine

    async def _is_alive(self, engine: AsyncEngine) -> bool:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except _RETRYABLE:
            return False

    async def _discard(self, tenant_id: str) -> None:
        engine = self._engines.pop(tenant_id, None)
        dedicated_tenant_engines.set(len(self._engines))
        if engine is not None:
            await engine.dispose()

    # ── Database lifecycle ──────────────────────────────────────────────

    async def ensure_database(self, database_name: str) -> None:
        """Create the database if the server needs it created explicitly.

        SQLite creates the file on first connect, so only PostgreSQL does work here.
        """
        url = make_url(self.database_url(database_name))
        if url.get_backend_name() != "postgresql":
            return
        async with get_engine().connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            exists = await conn.scalar(
                text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": database_name}
            )
            if not exists:
                await conn.execute(text(f'CREATE DATABASE "{database_name}"'))
                logger.info("tenancy.database_created", database=database_name)

    async def drop_database(self, tenant) -> None:
        """Dispose the cached engine and drop the tenant's database."""
        tenant = TenantContext.from_tenant(tenant)
        database_name = self._database_name(tenant)
        await self._discard(tenant.tenant_id)

        url = make_url(self.database_url(database_name))
        backend = url.get_backend_name()
        if backend == "postgresql":
            async with get_engine().connect() as conn:
                conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
                await conn.execute(text(f'DROP DATABASE IF EXISTS "{database_name}"'))
        elif backend == "sqlite" and url.database and url.database != ":memory:":
            if os.path.exists(url.database):
                os.remove(url.database)
        logger.info("tenancy.database_dropped", tenant_id=tenant.tenant_id, database=database_name)

    @asynccontextmanager
    async def session_for(self, tenant) -> AsyncIterator[AsyncSession]:
        """Open a session on a tenant's storage target without activating it.

        Used by system-level call sites (signed login links) that must read a
        tenant's rows before its context exists.
        """
        tenant = TenantContext.from_tenant(tenant)
        engine = await self.connect(tenant) if tenant.is_dedicated else get_engine()
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    async def close(self) -> None:
        for tenant_id in list(self._engines):
            await self._discard(tenant_id)


# ── Module-level manager (lazy init) ───────────────────────────────────────

_manager: TenantDatabaseManager | None = None


def get_tenant_database_manager() -> TenantDatabaseManager:
    """Get or create the dedicated database manager singleton."""
    global _manager
    if _manager is None:
        _manager = TenantDatabaseManager()
    return _manager


async def close_tenant_databases() -> None:
    """Dispose of every cached dedicated engine."""
    global _manager
    if _manager:
        await _manager.close()
        _manager = None
