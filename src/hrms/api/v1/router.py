"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.hrms.api.v1 import auth, central, dashboard, departments, health, onboarding, tenants

router = APIRouter()

router.include_router(health.router)
router.include_router(central.router)
router.include_router(tenants.router)
router.include_router(auth.router)
router.include_router(onboarding.router)
router.include_router(dashboard.router)
router.include_router(departments.router)
