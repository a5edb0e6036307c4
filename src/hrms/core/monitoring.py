"""Prometheus metrics, Sentry integration, and provisioning tracking.

Metric families:
- http_*: request count and latency, labelled with the route template and
  the zone the request ran in ("central" or the tenant id)
- tenant_context_activations_total / tenant_resolutions_total: how often
  tenants are activated and how domain lookups were answered
- tenancy_bypass_total: every query made through UnscopedRepository
- tenant_provisioning_*: provisioning outcomes and duration
- dedicated_tenant_engines: engines cached by TenantDatabaseManager
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.hrms.core.exceptions import TenancyError

CENTRAL_ZONE = "central"

# ── HTTP ─────────────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by route template, status and zone",
    ["method", "route", "status_code", "zone"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route", "zone"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# ── Tenancy ──────────────────────────────────────────────────────────────────

tenant_context_activations_total = Counter(
    "tenant_context_activations_total",
    "Tenant context activations",
    ["isolation_mode", "outcome"],
)

tenant_resolutions_total = Counter(
    "tenant_resolutions_total",
    "Domain to tenant resolutions",
    ["outcome"],
)

tenancy_bypass_total = Counter(
    "tenancy_bypass_total",
    "Queries executed through the unscoped (without tenancy) accessor",
    ["model", "reason"],
)

dedicated_tenant_engines = Gauge(
    "dedicated_tenant_engines",
    "Cached engines for dedicated tenant databases",
)

# ── Provisioning ─────────────────────────────────────────────────────────────

tenant_provisioning_total = Counter(
    "tenant_provisioning_total",
    "Tenant provisioning attempts by outcome",
    ["isolation_mode", "outcome"],
)

tenant_provisioning_duration_seconds = Histogram(
    "tenant_provisioning_duration_seconds",
    "Tenant provisioning duration in seconds",
    ["isolation_mode"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and latency for every request except /metrics.

    Installed inside DomainTenancyMiddleware so the tenant context is visible.
    The route label is the matched path template (e.g.
    /api/v1/departments/{department_id}), so ids never become label values.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        # core.tenant imports this module for its counters
        from src.hrms.core.tenant import current_tenant_or_none

        tenant = current_tenant_or_none()
        zone = tenant.tenant_id if tenant else CENTRAL_ZONE

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        route = request.scope.get("route")
        route_label = getattr(route, "path", None) or "unmatched"

        http_requests_total.labels(request.method, route_label, str(response.status_code), zone).inc()
        http_request_duration_seconds.labels(request.method, route_label, zone).observe(elapsed)
        return response


@asynccontextmanager
async def track_provisioning(isolation_mode: str) -> AsyncGenerator[dict[str, Any], None]:
    """Time a provisioning run and count its outcome.

    Outcomes: "success", "rejected" for tenancy errors below 500 (duplicate
    domain, unknown plan, taken admin email) and "error" for everything else.
    The yielded dict is for the caller to note the tenant id once known.
    """
    tracker: dict[str, Any] = {"tenant_id": None}
    started = time.perf_counter()
    outcome = "success"
    try:
        yield tracker
    except TenancyError as exc:
        outcome = "rejected" if exc.status_code < 500 else "error"
        raise
    except BaseException:
        outcome = "error"
        raise
    finally:
        tenant_provisioning_total.labels(isolation_mode, outcome).inc()
        tenant_provisioning_duration_seconds.labels(isolation_mode).observe(time.perf_counter() - started)


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry; events raised inside a tenant scope carry tenant tags."""
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    def before_send(event: dict, hint: dict) -> dict:
        from src.hrms.core.tenant import current_tenant_or_none

        tenant = current_tenant_or_none()
        tags = event.setdefault("tags", {})
        if tenant is None:
            tags["tenant_zone"] = CENTRAL_ZONE
        else:
            tags.update(
                tenant_id=tenant.tenant_id,
                tenant_slug=tenant.slug,
                isolation_mode=tenant.isolation_mode,
            )
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        integrations=[StarletteIntegration(), FastApiIntegration()],
        before_send=before_send,
    )


def get_metrics_response() -> Response:
    """Prometheus text exposition of the default registry."""
    return Response(content=generate_latest(REGISTRY), media_type="text/plain; version=0.0.4; charset=utf-8")
