"""Tenant-scoped data access.

TenantScopedRepository wraps one TenantOwned model and one AsyncSession.
Every read, update and delete is AND-combined with
``tenant_id == <active tenant>``; caller filters can narrow the result but
never widen it, so a filter naming another tenant simply matches nothing.

UnscopedRepository is the explicit "without tenancy" accessor for
system-level call sites (e.g. resolving a user from a signed cross-domain
login link before any tenant is active). It needs a reason string, logs
every use and counts it in Prometheus. TenantScopedRepository has no flag
that turns scoping off.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Generic, TypeVar

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession

from src.hrms.core.database import TenantOwned
from src.hrms.core.exceptions import TenantIsolationError
from src.hrms.core.isolation import BYPASS_OPTION
from src.hrms.core.monitoring import tenancy_bypass_total
from src.hrms.core.tenant import get_active_context, current_tenant_or_none

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=TenantOwned)


def _bound_engine(session: AsyncSession) -> AsyncEngine | None:
    bind = session.bind
    if isinstance(bind, AsyncConnection):
        return bind.engine
    return bind


class TenantScopedRepository(Generic[ModelT]):
    """CRUD for one tenant-owned model, always filtered to the active tenant.

    Args:
        model: A model class inheriting TenantOwned.
        session: AsyncSession bound to the active tenant's storage target
            (get_tenant_session() provides one).
    """

    def __init__(self, model: type[ModelT], session: AsyncSession) -> None:
        if not issubclass(model, TenantOwned):
            raise TypeError(f"{model.__name__} is not tenant-owned")
        self.model = model
        self.session = session

    # ── Scope helpers ───────────────────────────────────────────────────

    def _tenant_id(self) -> str:
        """Active tenant id; also checks the session points at its storage."""
        active = get_active_context()
        engine = _bound_engine(self.session)
        if engine is not None and engine.sync_engine is not active.engine.sync_engine:
            logger.error(
                "tenancy.storage_target_mismatch",
                model=self.model.__name__,
                tenant_id=active.tenant.tenant_id,
            )
            raise TenantIsolationError(
                f"Session is not bound to the storage target of tenant {active.tenant.tenant_id}"
            )
        return active.tenant.tenant_id

    def _where(self, tenant_id: str, criteria: Sequence[Any], filters: dict[str, Any]) -> list[Any]:
        clauses = [self.model.tenant_id == tenant_id, *criteria]
        for name, value in filters.items():
            column = getattr(self.model, name, None)
            if column is None:
                raise AttributeError(f"{self.model.__name__} has no attribute '{name}'")
            clauses.append(column == value)
        return clauses

    # ── CRUD ────────────────────────────────────────────────────────────

    async def create(self, **attrs: Any) -> ModelT:
        """Insert a row tagged with the active tenant.

        An explicit tenant_id is accepted only when it matches the active
        tenant, or when no tenant is active at all.

        Raises:
            NoActiveTenantError: No tenant active and no tenant_id given.
            TenantIsolationError: tenant_id names a different tenant.
        """
        explicit = attrs.get("tenant_id")
        if explicit is None or current_tenant_or_none() is not None:
            tenant_id = self._tenant_id()
            if explicit is not None and str(explicit) != tenant_id:
                raise TenantIsolationError(
                    f"Cannot create {self.model.__name__} for tenant {explicit} "
                    f"while tenant {tenant_id} is active"
                )
            attrs["tenant_id"] = tenant_id

        obj = self.model(**attrs)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def find(self, entity_id: Any) -> ModelT | None:
        tenant_id = self._tenant_id()
        stmt = select(self.model).where(*self._where(tenant_id, [self.model.id == entity_id], {}))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list(self, *criteria: Any, order_by: Any = None, **filters: Any) -> list[ModelT]:
        """List rows matching the filters, within the active tenant only."""
        tenant_id = self._tenant_id()
        stmt = select(self.model).where(*self._where(tenant_id, criteria, filters))
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def first(self, *criteria: Any, **filters: Any) -> ModelT | None:
        rows = await self.list(*criteria, **filters)
        return rows[0] if rows else None

    async def count(self, *criteria: Any, **filters: Any) -> int:
        tenant_id = self._tenant_id()
        stmt = select(func.count()).select_from(self.model).where(*self._where(tenant_id, criteria, filters))
        return int(await self.session.scalar(stmt) or 0)

    async def update(self, entity_id: Any, **attrs: Any) -> ModelT | None:
        """Update a row of the active tenant. Returns None if it is not visible.

        Raises:
            TenantIsolationError: attrs tries to change tenant_id.
        """
        obj = await self.find(entity_id)
        if obj is None:
            return None
        if "tenant_id" in attrs and attrs.pop("tenant_id") != obj.tenant_id:
            raise TenantIsolationError(f"tenant_id of {self.model.__name__} is immutable")
        for name, value in attrs.items():
            if not hasattr(self.model, name):
                raise AttributeError(f"{self.model.__name__} has no attribute '{name}'")
            setattr(obj, name, value)
        await self.session.flush()
        return obj

    async def delete(self, entity_id: Any) -> bool:
        obj = await self.find(entity_id)
        if obj is None:
            return False
        await self.session.delete(obj)
        await self.session.flush()
        return True


class UnscopedRepository(Generic[ModelT]):
    """Read access to a tenant-owned model across all tenants.

    For named system-level call sites only. Each query is logged with the
    call site's reason and counted in tenancy_bypass_total.

    Args:
        model: A model class inheriting TenantOwned.
        session: Any AsyncSession.
        reason: Short identifier of the call site, e.g. "signed-login-link".
    """

    def __init__(self, model: type[ModelT], session: AsyncSession, *, reason: str) -> None:
        if not reason or not reason.strip():
            raise ValueError("UnscopedRepository requires a reason naming the call site")
        self.model = model
        self.session = session
        self.reason = reason

    def _audit(self, operation: str, **details: Any) -> None:
        tenancy_bypass_total.labels(model=self.model.__name__, reason=self.reason).inc()
        active = current_tenant_or_none()
        logger.warning(
            "tenancy.bypass",
            model=self.model.__name__,
            operation=operation,
            reason=self.reason,
            active_tenant=active.tenant_id if active else None,
            **details,
        )

    async def find(self, entity_id: Any) -> ModelT | None:
        self._audit("find", entity_id=str(entity_id))
        stmt = (
            select(self.model)
            .where(self.model.id == entity_id)
            .execution_options(**{BYPASS_OPTION: self.reason})
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list(self, *criteria: Any, **filters: Any) -> list[ModelT]:
        self._audit("list", filters=sorted(filters))
        stmt = select(self.model).where(*criteria).execution_options(**{BYPASS_OPTION: self.reason})
        for name, value in filters.items():
            stmt = stmt.where(getattr(self.model, name) == value)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
