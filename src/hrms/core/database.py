"""Async SQLAlchemy engine and declarative bases for the two storage tiers.

Provides:
- CentralBase: registry tables that exist once (plans, tenants, domains)
- TenantScopedBase + TenantOwned: tenant-owned tables. They live in the
  central database for shared-mode tenants and are created inside every
  dedicated tenant database.
- get_central_session(): session on the central database (no tenant scoping)
- get_tenant_session(): session bound to the active tenant's storage target
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy import MetaData, String
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.hrms.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine, sizing the pool only for server databases."""
    settings = get_settings()
    kwargs: dict = {"echo": False, "pool_pre_ping": True}
    if make_url(url).get_backend_name() != "sqlite":
        kwargs.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW)
    return create_async_engine(url, **kwargs)


def get_engine() -> AsyncEngine:
    """Get or create the central async engine singleton."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().DATABASE_URL)
    return _engine


# ── Declarative Bases ───────────────────────────────────────────────────────

central_metadata = MetaData()
tenant_metadata = MetaData()


class CentralBase(DeclarativeBase):
    """Base class for registry models stored once in the central database."""

    metadata = central_metadata


class TenantScopedBase(DeclarativeBase):
    """Base class for tenant-owned models.

    Every model must also inherit TenantOwned; the session guards in
    core/isolation.py filter and stamp rows through that mixin.
    """

    metadata = tenant_metadata


class TenantOwned:
    """Mixin carrying the tenant identity column."""

    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)


# ── Session Factories ───────────────────────────────────────────────────────


async def get_central_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession on the central database (no tenant scoping)."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


async def get_tenant_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session bound to the active tenant's storage target.

    Shared-mode tenants get the central engine, dedicated-mode tenants
    their own engine. Raises NoActiveTenantError outside a tenant scope.
    """
    # Imported here to avoid circular imports
    from src.hrms.core.tenant import get_active_context

    active = get_active_context()
    async with AsyncSession(active.engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create central tables and the shared-mode tenant tables."""
    # Model modules register their tables on import
    from src.hrms.models import central, tenant  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(CentralBase.metadata.create_all)
        await conn.run_sync(TenantScopedBase.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
