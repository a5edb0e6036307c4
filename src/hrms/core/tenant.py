"""Tenant context propagation via Python contextvars.

This module is the foundation of multi-tenant isolation. The active tenant
is held in a ContextVar, so it is local to the current asyncio task (or
thread). Child tasks start with a copy of their parent's context and can
never write back into it, which keeps concurrent requests for different
tenants from observing each other.

The ContextVar holds an immutable tuple used as a stack of ActiveContext
frames:

- activate(tenant) pushes a frame (nested activation is allowed)
- end() pops one frame, restoring the previous tenant or Inactive
- end() on an empty stack is a no-op

tenant_scope() wraps both in try/finally and is what request handling,
provisioning and background jobs should use.
"""

from __future__ import annotations

import contextvars
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from src.hrms.core.exceptions import NoActiveTenantError
from src.hrms.core.monitoring import tenant_context_activations_total

logger = structlog.get_logger(__name__)

# ── Tenant Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TenantContext:
    """Immutable snapshot of the tenant attributes needed while a scope is active."""

    tenant_id: str
    slug: str
    company_name: str
    isolation_mode: str = "shared"
    database_name: str | None = None
    subscription_status: str = "trial"
    onboarding_completed: bool = False
    is_demo: bool = False

    @property
    def is_dedicated(self) -> bool:
        return self.isolation_mode == "dedicated"

    @classmethod
    def from_tenant(cls, tenant: Any) -> TenantContext:
        """Build a snapshot from a Tenant row (or anything shaped like one)."""
        if isinstance(tenant, TenantContext):
            return tenant
        return cls(
            tenant_id=str(tenant.id),
            slug=tenant.slug,
            company_name=tenant.company_name,
            isolation_mode=tenant.isolation_mode,
            database_name=tenant.database_name,
            subscription_status=tenant.subscription_status,
            onboarding_completed=bool(tenant.onboarding_completed),
            is_demo=bool(tenant.is_demo),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ActiveContext:
    """One frame of the context stack: the tenant and its storage target."""

    tenant: TenantContext
    engine: AsyncEngine


_context_stack: contextvars.ContextVar[tuple[ActiveContext, ...]] = contextvars.ContextVar(
    "tenant_context_stack", default=()
)


def get_active_context() -> ActiveContext:
    """Get the innermost active frame.

    Raises NoActiveTenantError if no tenant context has been activated in
    this execution unit.
    """
    stack = _context_stack.get()
    if not stack:
        raise NoActiveTenantError("No tenant context set -- operation is not tenant-scoped")
    return stack[-1]


def get_current_tenant() -> TenantContext:
    """Get the tenant bound to the current execution unit."""
    return get_active_context().tenant


def current_tenant_or_none() -> TenantContext | None:
    stack = _context_stack.get()
    return stack[-1].tenant if stack else None


def context_depth() -> int:
    """Number of nested activations in the current execution unit."""
    return len(_context_stack.get())


# ── Activation ──────────────────────────────────────────────────────────────


async def resolve_storage_target(tenant: TenantContext) -> AsyncEngine:
    """Return the engine holding the tenant's rows.

    Raises ContextActivationError when a dedicated database is unreachable.
    """
    # Imported here to avoid circular imports
    from src.hrms.core.connections import get_tenant_database_manager
    from src.hrms.core.database import get_engine

    if tenant.is_dedicated:
        return await get_tenant_database_manager().connect(tenant)
    return get_engine()


async def activate(tenant: Any) -> ActiveContext:
    """Bind a tenant to the current execution unit.

    The storage target is resolved before the stack changes, so a failed
    activation leaves the previous state untouched.
    """
    ctx = TenantContext.from_tenant(tenant)
    try:
        engine = await resolve_storage_target(ctx)
    except Exception:
        tenant_context_activations_total.labels(isolation_mode=ctx.isolation_mode, outcome="error").inc()
        raise

    frame = ActiveContext(tenant=ctx, engine=engine)
    _context_stack.set(_context_stack.get() + (frame,))
    tenant_context_activations_total.labels(isolation_mode=ctx.isolation_mode, outcome="ok").inc()
    logger.debug("tenancy.activated", tenant_id=ctx.tenant_id, depth=context_depth())
    return frame


def end() -> TenantContext | None:
    """Pop one activation level. Returns the tenant that was ended, if any."""
    stack = _context_stack.get()
    if not stack:
        return None
    _context_stack.set(stack[:-1])
    logger.debug("tenancy.ended", tenant_id=stack[-1].tenant.tenant_id, depth=len(stack) - 1)
    return stack[-1].tenant


def _unwind(depth: int) -> None:
    """Truncate the stack back to `depth`, dropping activations leaked by the block."""
    stack = _context_stack.get()
    if len(stack) > depth + 1:
        logger.warning(
            "tenancy.unbalanced_activation",
            leaked=[f.tenant.tenant_id for f in stack[depth + 1:]],
        )
    _context_stack.set(stack[:depth])


@asynccontextmanager
async def tenant_scope(tenant: Any) -> AsyncIterator[TenantContext]:
    """Run a block as `tenant`; the context is ended even on error or cancellation."""
    depth = context_depth()
    frame = await activate(tenant)
    try:
        yield frame.tenant
    finally:
        _unwind(depth)
