"""Domain-based tenant resolution middleware.

Resolves the tenant from the request's Host header:

1. Paths in SKIP_TENANT_PATHS and hosts in CENTRAL_DOMAINS run with no
   tenant context (the central zone).
2. Otherwise the normalized host is looked up in the registry (exact match,
   Redis-cached). A miss redirects to the central tenant-not-found page.
3. A hit runs the rest of the request inside tenant_scope(), which ends the
   context however the handler exits.
"""

from __future__ import annotations

from urllib.parse import urlencode

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.hrms.config import get_settings
from src.hrms.core.exceptions import ContextActivationError, TenantNotFoundError
from src.hrms.core.redis import get_redis_pool
from src.hrms.core.tenant import tenant_scope
from src.hrms.services.tenant_registry import TenantRegistry, normalize_hostname

logger = structlog.get_logger(__name__)

SKIP_TENANT_PATHS = (
    "/health",
    "/metrics",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/tenant-not-found",
)


def extract_subdomain(host: str) -> str | None:
    """Best-effort first label of a host, for the tenant-not-found page."""
    parts = host.split(".")
    if len(parts) >= 2 and parts[-1] == "localhost":
        return parts[0] if parts[0] != "localhost" else None
    return parts[0] if len(parts) > 2 else None


class DomainTenancyMiddleware(BaseHTTPMiddleware):
    """Activates the tenant owning the request's domain for the request's duration."""

    def __init__(self, app, registry: TenantRegistry | None = None):
        super().__init__(app)
        self._registry = registry

    @property
    def registry(self) -> TenantRegistry:
        if self._registry is None:
            self._registry = TenantRegistry(redis_client=get_redis_pool())
        return self._registry

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        host = normalize_hostname(request.headers.get("host") or request.url.hostname or "")
        if not host or host in get_settings().central_domains:
            return await call_next(request)

        try:
            tenant = await self.registry.resolve_context(host)
        except TenantNotFoundError:
            logger.info("tenancy.unknown_domain", host=host, path=path)
            return RedirectResponse(self._not_found_url(request, host), status_code=302)

        request.state.tenant_id = tenant.tenant_id
        try:
            async with tenant_scope(tenant):
                return await call_next(request)
        except ContextActivationError as exc:
            logger.error("tenancy.activation_failed", tenant_id=tenant.tenant_id, host=host)
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    def _not_found_url(self, request: Request, host: str) -> str:
        settings = get_settings()
        central = settings.central_domains[0] if settings.central_domains else "localhost"
        port = request.url.port
        netloc = f"{central}:{port}" if port else central

        params = {"domain": host}
        subdomain = extract_subdomain(host)
        if subdomain:
            params["subdomain"] = subdomain
        return f"{request.url.scheme}://{netloc}{settings.TENANT_NOT_FOUND_PATH}?{urlencode(params)}"
