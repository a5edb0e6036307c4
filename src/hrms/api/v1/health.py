"""Liveness and readiness checks, served on every host without tenant resolution."""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.hrms.config import get_settings
from src.hrms.core.database import get_engine
from src.hrms.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    return {"status": "ok", "environment": get_settings().ENVIRONMENT.value}


async def _check_central_database(checks: dict) -> None:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        checks.update(database="error", database_error=str(exc))
    else:
        checks["database"] = "ok"


async def _check_redis(checks: dict) -> None:
    redis = get_redis_pool()
    if redis is None:
        checks["redis"] = "disabled"
        return
    try:
        answered = await redis.ping()
    except Exception as exc:
        checks.update(redis="error", redis_error=str(exc))
        return
    checks["redis"] = "ok" if answered else "error"


@router.get("/health/ready")
async def readiness_check():
    """503 only when the central database is unreachable.

    Redis backs the domain resolution cache alone, so losing it reports
    "degraded" with a 200.
    """
    checks: dict = {}
    await _check_central_database(checks)
    await _check_redis(checks)

    if checks["database"] != "ok":
        state, code = "unavailable", status.HTTP_503_SERVICE_UNAVAILABLE
    elif checks["redis"] == "error":
        state, code = "degraded", status.HTTP_200_OK
    else:
        state, code = "ready", status.HTTP_200_OK
    return JSONResponse(status_code=code, content={"status": state, "checks": checks})
