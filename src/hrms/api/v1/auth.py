"""Authentication endpoints: signed cross-domain login links and current user.

The login link is generated at provisioning time on the central side and
opened on the tenant's own domain. The user row is read through the
unscoped accessor because it has to be found before the link's tenant
claim has been checked against the user record.
"""

from __future__ import annotations

from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.api.deps import get_current_user, get_registry
from src.hrms.config import Environment, get_settings
from src.hrms.core.exceptions import InvalidLoginLinkError, TenantNotFoundError
from src.hrms.core.repository import UnscopedRepository
from src.hrms.core.security import create_access_token, verify_login_token
from src.hrms.core.tenant import current_tenant_or_none, get_active_context
from src.hrms.models.tenant import User
from src.hrms.schemas.auth import UserResponse
from src.hrms.services.tenant_registry import TenantRegistry

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["auth"])

LOGIN_LINK_REASON = "signed-login-link"


@router.get("/auth/login/{user_id}", name="auth.login")
async def login_with_link(
    user_id: str,
    request: Request,
    signature: str = Query(...),
    registry: TenantRegistry = Depends(get_registry),
):
    """Log a user in from a signed link and send them to the dashboard.

    A link opened on a central domain is forwarded, signature unchanged, to
    the primary domain of the tenant it was issued for; the session cookie
    is only ever set on the tenant's own host.

    Raises:
        InvalidLoginLinkError(403): Bad, expired or mismatched link.
    """
    payload = verify_login_token(signature, user_id)
    tenant_id = payload["tenant_id"]

    active = current_tenant_or_none()
    if active is None:
        try:
            tenant = await registry.find_by_id(tenant_id)
        except TenantNotFoundError as exc:
            raise InvalidLoginLinkError() from exc
        target = f"{get_settings().TENANT_URL_SCHEME}://{tenant.primary_domain}{request.url.path}"
        logger.info("auth.login_link_forwarded", user_id=user_id, tenant_id=tenant_id, host=tenant.primary_domain)
        return RedirectResponse(f"{target}?{urlencode({'signature': signature})}", status_code=302)

    if active.tenant_id != tenant_id:
        raise InvalidLoginLinkError("Login link was issued for another tenant")

    async with AsyncSession(get_active_context().engine, expire_on_commit=False) as session:
        user = await UnscopedRepository(User, session, reason=LOGIN_LINK_REASON).find(user_id)

    if user is None or user.tenant_id != tenant_id or not user.is_active:
        raise InvalidLoginLinkError()

    access_token = create_access_token({"sub": user.id, "tenant_id": user.tenant_id, "tenant_slug": active.slug})
    logger.info("auth.login_link_used", user_id=user.id, tenant_id=user.tenant_id)

    response = RedirectResponse("/dashboard", status_code=302)
    response.set_cookie(
        "access_token",
        access_token,
        max_age=get_settings().JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=get_settings().ENVIRONMENT == Environment.production,
        samesite="lax",
    )
    return response


@router.get("/api/v1/auth/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    """Return the authenticated user of the current tenant."""
    tenant = get_active_context().tenant
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        employee_id=user.employee_id,
        tenant_id=user.tenant_id,
        tenant_slug=tenant.slug,
    )
