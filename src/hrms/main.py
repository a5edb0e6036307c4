"""HRMS application: lifespan, error mapping, middleware stack and routers.

Run with `uvicorn src.hrms.main:app`.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.hrms.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.hrms.api.middleware.onboarding import EnsureOnboardingCompletedMiddleware
from src.hrms.api.middleware.tenant import DomainTenancyMiddleware
from src.hrms.api.v1.router import router as v1_router
from src.hrms.config import get_settings
from src.hrms.core.connections import close_tenant_databases
from src.hrms.core.database import close_db, get_central_session, init_db
from src.hrms.core.exceptions import NoActiveTenantError, TenancyError, TenantIsolationError
from src.hrms.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.hrms.core.redis import close_redis
from src.hrms.services.plans import seed_default_plans

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    configure_structlog()
    await init_db()

    async for session in get_central_session():
        await seed_default_plans(session)

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    logger.info("app.started", environment=settings.ENVIRONMENT.value)
    yield

    await close_tenant_databases()
    await close_redis()
    await close_db()


async def tenancy_error_handler(request: Request, exc: TenancyError) -> JSONResponse:
    if isinstance(exc, (NoActiveTenantError, TenantIsolationError)):
        logger.error("tenancy.isolation_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def _cors_origins(raw: str) -> list[str]:
    if raw.strip() == "*":
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _install_middleware(app: FastAPI) -> None:
    """Outermost first: logging, CORS, domain tenancy, metrics, onboarding guard.

    Metrics and the onboarding guard run inside DomainTenancyMiddleware and
    so see the active tenant.
    """
    settings = get_settings()
    stack = [
        (LoggingMiddleware, {}),
        (
            CORSMiddleware,
            {
                "allow_origins": _cors_origins(settings.CORS_ALLOWED_ORIGINS),
                "allow_credentials": True,
                "allow_methods": ["*"],
                "allow_headers": ["*"],
            },
        ),
        (DomainTenancyMiddleware, {}),
        (MetricsMiddleware, {}),
        (EnsureOnboardingCompletedMiddleware, {}),
    ]
    # add_middleware wraps, so the last one added ends up outermost
    for middleware_class, options in reversed(stack):
        app.add_middleware(middleware_class, **options)


def create_app() -> FastAPI:
    app = FastAPI(
        title="HRMS API",
        version="0.1.0",
        description="Multi-tenant HR management backend",
        lifespan=lifespan,
    )
    app.add_exception_handler(TenancyError, tenancy_error_handler)
    _install_middleware(app)
    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return get_metrics_response()

    return app


app = create_app()
