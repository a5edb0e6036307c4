"""Tenant management API endpoints.

Served from the central domain: provisioning runs before the tenant has a
domain of its own to be reached on.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.api.deps import get_central_db, get_registry
from src.hrms.schemas.tenant import ProvisionRequest, TenantResponse
from src.hrms.services.tenant_provisioning import TenantProvisioningService
from src.hrms.services.tenant_registry import TenantRegistry

router = APIRouter(prefix="/api/v1/tenants", tags=["tenants"])


def get_provisioning_service(registry: TenantRegistry = Depends(get_registry)) -> TenantProvisioningService:
    return TenantProvisioningService(registry=registry)


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: ProvisionRequest,
    service: TenantProvisioningService = Depends(get_provisioning_service),
):
    """Provision a new tenant with its domain, admin user and company profile."""
    return await service.provision(body)


@router.get("", response_model=list[TenantResponse])
async def get_tenants(
    registry: TenantRegistry = Depends(get_registry),
    db: AsyncSession = Depends(get_central_db),
):
    """List all tenants."""
    return await registry.list_tenants(session=db)
