"""Onboarding wizard endpoints (tenant domains only)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.api.deps import get_current_user, get_db, get_registry, require_tenant
from src.hrms.core.tenant import TenantContext
from src.hrms.models.tenant import User
from src.hrms.schemas.onboarding import CompleteOnboardingRequest, OnboardingStatus
from src.hrms.services.onboarding import OnboardingService
from src.hrms.services.tenant_registry import TenantRegistry

router = APIRouter(prefix="/onboarding", tags=["onboarding"])


@router.get("", response_model=OnboardingStatus)
async def onboarding_status(
    tenant: TenantContext = Depends(require_tenant),
    user: User = Depends(get_current_user),
    registry: TenantRegistry = Depends(get_registry),
):
    record = await registry.find_by_id(tenant.tenant_id)
    return OnboardingStatus(
        tenant_id=record.id,
        company_name=record.company_name,
        onboarding_completed=record.onboarding_completed,
        admin_email=user.email,
        plan=record.plan.slug if record.plan else None,
    )


@router.post("/complete")
async def complete_onboarding(
    body: CompleteOnboardingRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    registry: TenantRegistry = Depends(get_registry),
):
    """Store the wizard data, mark the tenant onboarded and go to the dashboard."""
    await OnboardingService(db, registry=registry).complete(user, body)
    return RedirectResponse("/dashboard", status_code=status.HTTP_303_SEE_OTHER)
