"""Redirects tenants that have not finished onboarding away from the app."""

from __future__ import annotations

from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.hrms.core.tenant import current_tenant_or_none

ONBOARDING_PATH = "/onboarding"
ONBOARDING_GUARDED_PATHS = ("/dashboard", "/api/v1/departments")


def _is_guarded(path: str) -> bool:
    return any(path == guarded or path.startswith(guarded + "/") for guarded in ONBOARDING_GUARDED_PATHS)


class EnsureOnboardingCompletedMiddleware(BaseHTTPMiddleware):
    """Sends an active, non-demo tenant to /onboarding until it is completed.

    Must run inside DomainTenancyMiddleware so the tenant context is visible.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if _is_guarded(request.url.path):
            tenant = current_tenant_or_none()
            if tenant is not None and not tenant.is_demo and not tenant.onboarding_completed:
                return RedirectResponse(ONBOARDING_PATH, status_code=303)
        return await call_next(request)
