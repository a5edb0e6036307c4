"""Tenant dashboard summary. Guarded by the onboarding middleware."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.api.deps import get_current_user, get_db, get_registry, require_tenant
from src.hrms.core.repository import TenantScopedRepository
from src.hrms.core.tenant import TenantContext
from src.hrms.models.tenant import Department, User
from src.hrms.services.tenant_registry import TenantRegistry

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard")
async def dashboard(
    tenant: TenantContext = Depends(require_tenant),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    registry: TenantRegistry = Depends(get_registry),
):
    record = await registry.find_by_id(tenant.tenant_id)
    return {
        "tenant_id": record.id,
        "company_name": record.company_name,
        "plan": record.plan.slug if record.plan else None,
        "isolation_mode": record.isolation_mode,
        "subscription_status": record.subscription_status,
        "on_trial": record.is_on_trial(),
        "days_remaining": record.days_remaining(),
        "users": await TenantScopedRepository(User, db).count(is_active=True),
        "departments": await TenantScopedRepository(Department, db).count(),
        "current_user": {"id": user.id, "name": user.name, "role": user.role},
    }
