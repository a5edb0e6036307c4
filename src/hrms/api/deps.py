"""FastAPI dependency injection for tenant-scoped resources and authentication.

These dependencies are used in endpoint function signatures to inject
the tenant context, the database sessions and the authenticated user.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.core.database import get_central_session, get_tenant_session
from src.hrms.core.redis import get_redis_pool
from src.hrms.core.repository import TenantScopedRepository
from src.hrms.core.security import verify_token
from src.hrms.core.tenant import TenantContext, current_tenant_or_none
from src.hrms.models.tenant import User
from src.hrms.services.tenant_registry import TenantRegistry


async def require_tenant() -> TenantContext:
    """Active tenant context; a request on a central domain is a 404."""
    tenant = current_tenant_or_none()
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not available on this domain")
    return tenant


async def get_db(tenant: TenantContext = Depends(require_tenant)) -> AsyncGenerator[AsyncSession, None]:
    """Get a session bound to the active tenant's storage target."""
    async for session in get_tenant_session():
        yield session


async def get_central_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a session on the central database (registry endpoints)."""
    async for session in get_central_session():
        yield session


def get_registry() -> TenantRegistry:
    return TenantRegistry(redis_client=get_redis_pool())


async def get_current_user(
    request: Request,
    tenant: TenantContext = Depends(require_tenant),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the current user from a Bearer JWT or the access_token cookie.

    Raises:
        HTTPException(401): If no valid authentication is provided.
        HTTPException(403): If the token was issued for another tenant.
    """
    token_str = None
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token_str = auth_header[7:]
    else:
        token_str = request.cookies.get("access_token")

    if not token_str:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(token_str, token_type="access")

    # Verify tenant context matches JWT claims
    if payload.get("tenant_id") != tenant.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token tenant does not match request tenant context",
        )

    user = await TenantScopedRepository(User, db).find(payload["sub"])
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


# Alias for cleaner endpoint signatures
require_auth = Depends(get_current_user)


def require_role(*roles: str):
    """Dependency admitting only authenticated users holding one of `roles`.

    Raises:
        HTTPException(403): The user's role is not among `roles`.
    """

    async def _check_role(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{user.role}' may not perform this action",
            )
        return user

    return Depends(_check_role)
