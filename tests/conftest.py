"""Test fixtures for multi-tenant isolation tests.

Provides:
- Settings pointed at throwaway SQLite files (central + one per dedicated tenant)
- An initialized central database with the default plans
- Two shared tenants (acme, beta) registered through the registry
- A provisioning service with a notifier that records welcome messages
- A FastAPI app and async HTTP clients bound to a host
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.config import get_settings
from src.hrms.core import connections as connections_module
from src.hrms.core import database as database_module
from src.hrms.core import redis as redis_module
from src.hrms.core.connections import close_tenant_databases
from src.hrms.core.database import close_db, get_engine, init_db
from src.hrms.core.redis import close_redis
from src.hrms.core.tenant import get_active_context
from src.hrms.models.central import IsolationMode, Tenant
from src.hrms.services.notifications import WelcomeMessage
from src.hrms.services.plans import seed_default_plans
from src.hrms.services.tenant_provisioning import TenantProvisioningService
from src.hrms.services.tenant_registry import TenantRegistration, TenantRegistry


@pytest.fixture(autouse=True)
def settings_env(tmp_path, monkeypatch):
    """Point every test at its own SQLite files and fast bcrypt."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/central.db")
    monkeypatch.setenv("TENANT_DATABASE_URL_TEMPLATE", f"sqlite+aiosqlite:///{tmp_path}/{{database}}.db")
    monkeypatch.setenv("REDIS_URL", "")
    monkeypatch.setenv("TENANT_BASE_DOMAIN", "hrms.test")
    monkeypatch.setenv("CENTRAL_DOMAINS", "localhost,127.0.0.1")
    monkeypatch.setenv("TENANT_URL_SCHEME", "http")
    monkeypatch.setenv("TENANT_CONNECT_BACKOFF", "0")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    monkeypatch.setenv("JWT_SECRET_KEY", "test-secret-key")
    monkeypatch.setenv("UNIQUE_ADMIN_EMAIL_ACROSS_TENANTS", "false")
    get_settings.cache_clear()
    # Engines and pools are rebuilt from these settings on first use
    monkeypatch.setattr(database_module, "_engine", None)
    monkeypatch.setattr(connections_module, "_manager", None)
    monkeypatch.setattr(redis_module, "_redis_pool", None)
    yield tmp_path
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database(settings_env) -> AsyncGenerator[None, None]:
    """Create central tables and seed plans; dispose every engine afterwards."""
    await init_db()
    async with AsyncSession(get_engine(), expire_on_commit=False) as session:
        await seed_default_plans(session)
    yield
    await close_tenant_databases()
    await close_redis()
    await close_db()


@pytest_asyncio.fixture
async def central_session(database) -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSession(get_engine(), expire_on_commit=False) as session:
        yield session


@asynccontextmanager
async def _tenant_session() -> AsyncIterator[AsyncSession]:
    """Session on the storage target of the innermost active tenant."""
    async with AsyncSession(get_active_context().engine, expire_on_commit=False) as session:
        yield session


async def _register_tenant(slug: str, isolation_mode: str = IsolationMode.shared.value, **kwargs) -> Tenant:
    registration = TenantRegistration(
        company_name=kwargs.pop("company_name", slug.title()),
        slug=slug,
        domains=kwargs.pop("domains", [f"{slug}.hrms.test"]),
        isolation_mode=isolation_mode,
        **kwargs,
    )
    return await TenantRegistry().create(registration)


@pytest.fixture
def tenant_session(database):
    """Async context manager factory for sessions on the active tenant's storage."""
    return _tenant_session


@pytest.fixture
def register_tenant(database):
    """Register a tenant through the registry: register_tenant(slug, isolation_mode, **fields)."""
    return _register_tenant


@pytest_asyncio.fixture
async def acme(database) -> Tenant:
    return await _register_tenant("acme")


@pytest_asyncio.fixture
async def beta(database) -> Tenant:
    return await _register_tenant("beta")


class RecordingNotifier:
    """Collects welcome messages instead of sending them."""

    def __init__(self) -> None:
        self.messages: list[WelcomeMessage] = []

    async def send_welcome(self, message: WelcomeMessage) -> None:
        self.messages.append(message)

    def for_tenant(self, tenant_id: str) -> WelcomeMessage:
        return next(m for m in self.messages if m.tenant_id == tenant_id)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def provisioning(database, notifier) -> TenantProvisioningService:
    return TenantProvisioningService(notifier=notifier)


@pytest.fixture
def app(database):
    """FastAPI app; the lifespan is not run, `database` did the startup work."""
    from src.hrms.main import create_app

    return create_app()


@pytest.fixture
def client_for(app):
    """Factory for async clients whose requests carry a given Host."""

    def _client(host: str) -> AsyncClient:
        return AsyncClient(transport=ASGITransport(app=app), base_url=f"http://{host}")

    return _client


@pytest_asyncio.fixture
async def central_client(client_for) -> AsyncGenerator[AsyncClient, None]:
    async with client_for("localhost") as ac:
        yield ac
