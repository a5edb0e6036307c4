"""Tests for tenant context propagation.

Covers:
- Inactive state and the idempotent end()
- Nested activation as a stack
- Cleanup on errors and on task cancellation
- Isolation between concurrent tasks and reused workers
- Dedicated activation failures leaving the context untouched
"""

from __future__ import annotations

import asyncio
import contextvars

import pytest

from src.hrms.config import get_settings
from src.hrms.core import tenant as tenant_context
from src.hrms.core.connections import close_tenant_databases
from src.hrms.core.database import get_engine
from src.hrms.core.exceptions import ContextActivationError, NoActiveTenantError
from src.hrms.core.tenant import (
    TenantContext,
    activate,
    context_depth,
    current_tenant_or_none,
    end,
    get_current_tenant,
    tenant_scope,
)

ALPHA = TenantContext(tenant_id="tenant-alpha", slug="alpha", company_name="Alpha")
BETA = TenantContext(tenant_id="tenant-beta", slug="beta", company_name="Beta")


@pytest.fixture(autouse=True)
def clean_context():
    """Every test starts and must end with no active tenant."""
    assert context_depth() == 0
    yield
    while end() is not None:
        pass


# ── Inactive / End ──────────────────────────────────────────────────────────


def test_inactive_context_raises():
    with pytest.raises(NoActiveTenantError):
        get_current_tenant()
    assert current_tenant_or_none() is None


def test_no_active_tenant_error_is_runtime_error():
    with pytest.raises(RuntimeError):
        get_current_tenant()


def test_end_when_inactive_is_noop():
    assert end() is None
    assert end() is None
    assert context_depth() == 0


# ── Activation Stack ────────────────────────────────────────────────────────


async def test_activate_binds_tenant_and_shared_storage():
    frame = await activate(ALPHA)
    assert get_current_tenant() == ALPHA
    assert frame.engine is get_engine()
    assert end() == ALPHA
    assert current_tenant_or_none() is None


async def test_nested_activation_restores_previous_tenant():
    await activate(ALPHA)
    await activate(BETA)
    assert get_current_tenant().tenant_id == "tenant-beta"
    assert context_depth() == 2

    end()
    assert get_current_tenant().tenant_id == "tenant-alpha"
    end()
    assert current_tenant_or_none() is None


async def test_scope_ends_on_exception():
    with pytest.raises(ValueError):
        async with tenant_scope(ALPHA):
            assert get_current_tenant() == ALPHA
            raise ValueError("handler failed")
    assert current_tenant_or_none() is None


async def test_nested_scopes_unwind_in_order():
    async with tenant_scope(ALPHA):
        async with tenant_scope(BETA):
            assert get_current_tenant() == BETA
        assert get_current_tenant() == ALPHA
    assert context_depth() == 0


async def test_scope_drops_activations_leaked_by_the_block():
    async with tenant_scope(ALPHA):
        await activate(BETA)  # never ended by the block
    assert context_depth() == 0


async def test_scope_ends_on_task_cancellation():
    entered = asyncio.Event()
    ctx = contextvars.copy_context()

    async def handler():
        async with tenant_scope(ALPHA):
            entered.set()
            await asyncio.Event().wait()

    task = asyncio.create_task(handler(), context=ctx)
    await entered.wait()
    assert ctx.run(tenant_context.current_tenant_or_none) == ALPHA

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert ctx.run(tenant_context.context_depth) == 0


# ── Concurrency ─────────────────────────────────────────────────────────────


async def test_interleaved_tasks_see_only_their_own_tenant():
    observed: dict[str, list[str]] = {"alpha": [], "beta": []}
    turn = {"alpha": asyncio.Event(), "beta": asyncio.Event()}

    async def request(ctx: TenantContext, me: str, other: str):
        async with tenant_scope(ctx):
            for _ in range(3):
                await asyncio.sleep(0)
                observed[me].append(get_current_tenant().tenant_id)
                turn[other].set()
                await asyncio.wait_for(turn[me].wait(), timeout=1)
                turn[me].clear()
        turn[other].set()

    await asyncio.gather(request(ALPHA, "alpha", "beta"), request(BETA, "beta", "alpha"))

    assert observed["alpha"] == ["tenant-alpha"] * 3
    assert observed["beta"] == ["tenant-beta"] * 3
    assert current_tenant_or_none() is None


async def test_child_task_inherits_but_cannot_overwrite_parent_context():
    async with tenant_scope(ALPHA):

        async def child():
            assert get_current_tenant() == ALPHA
            await activate(BETA)
            return get_current_tenant()

        assert await asyncio.create_task(child()) == BETA
        assert get_current_tenant() == ALPHA


async def test_reused_worker_does_not_leak_previous_tenant():
    """A long-lived worker handles jobs for different tenants in one task."""
    queue: asyncio.Queue = asyncio.Queue()
    seen: list[tuple[str | None, str | None]] = []

    async def worker():
        while True:
            ctx, fail = await queue.get()
            before = current_tenant_or_none()
            try:
                async with tenant_scope(ctx):
                    if fail:
                        raise RuntimeError("job failed")
            except RuntimeError:
                pass
            seen.append((before.tenant_id if before else None, ctx.tenant_id))
            queue.task_done()

    task = asyncio.create_task(worker())
    for job in [(ALPHA, True), (BETA, False), (ALPHA, False)]:
        queue.put_nowait(job)
    await queue.join()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert seen == [(None, "tenant-alpha"), (None, "tenant-beta"), (None, "tenant-alpha")]


# ── Dedicated Storage ───────────────────────────────────────────────────────


async def test_dedicated_activation_uses_its_own_engine(settings_env):
    dedicated = TenantContext(
        tenant_id="tenant-gamma",
        slug="gamma",
        company_name="Gamma",
        isolation_mode="dedicated",
        database_name="tenant_gamma",
    )
    try:
        async with tenant_scope(dedicated):
            engine = tenant_context.get_active_context().engine
            assert engine is not get_engine()
            assert engine.url.database.endswith("tenant_gamma.db")

        # Second activation reuses the cached, validated engine
        async with tenant_scope(dedicated):
            assert tenant_context.get_active_context().engine is engine
        assert (settings_env / "tenant_gamma.db").exists()
    finally:
        await close_tenant_databases()


async def test_failed_dedicated_activation_leaves_state_unchanged(monkeypatch, tmp_path):
    monkeypatch.setenv(
        "TENANT_DATABASE_URL_TEMPLATE",
        f"sqlite+aiosqlite:///{tmp_path}/missing-dir/{{database}}.db",
    )
    get_settings.cache_clear()
    await close_tenant_databases()

    unreachable = TenantContext(
        tenant_id="tenant-down",
        slug="down",
        company_name="Down",
        isolation_mode="dedicated",
        database_name="tenant_down",
    )
    try:
        await activate(ALPHA)
        with pytest.raises(ContextActivationError) as exc_info:
            await activate(unreachable)
        assert exc_info.value.status_code == 503
        assert get_current_tenant() == ALPHA
        assert context_depth() == 1
    finally:
        await close_tenant_databases()
