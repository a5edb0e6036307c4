"""Onboarding completion for a freshly provisioned tenant.

Runs inside the tenant's active scope: updates the company profile and the
admin user, creates the first department if one was named, and finally
flags the tenant as onboarded in the registry.
"""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.core.exceptions import DuplicateAdminEmailError
from src.hrms.core.repository import TenantScopedRepository
from src.hrms.core.security import hash_password
from src.hrms.core.tenant import get_current_tenant
from src.hrms.models.central import Tenant
from src.hrms.models.tenant import CompanyProfile, Department, User
from src.hrms.schemas.onboarding import CompleteOnboardingRequest
from src.hrms.services.tenant_registry import TenantRegistry

logger = structlog.get_logger(__name__)


class OnboardingService:
    def __init__(self, session: AsyncSession, registry: TenantRegistry | None = None) -> None:
        self.session = session
        self.registry = registry or TenantRegistry()
        self.profiles = TenantScopedRepository(CompanyProfile, session)
        self.users = TenantScopedRepository(User, session)
        self.departments = TenantScopedRepository(Department, session)

    async def complete(self, user: User, data: CompleteOnboardingRequest) -> Tenant:
        """Apply the onboarding form for the active tenant.

        Tenant rows are committed first, then the registry flag; a failure
        before the commit leaves the tenant un-onboarded.

        Raises:
            DuplicateAdminEmailError: personal_email belongs to another user
                of the same tenant.
        """
        tenant = get_current_tenant()
        try:
            await self._update_company_profile(data)
            await self._update_admin_user(user, data)
            await self._create_department(data)
            await self.session.commit()
        except BaseException:
            await self.session.rollback()
            raise

        onboarded = await self.registry.mark_onboarding_completed(tenant.tenant_id, company_name=data.company_name)
        logger.info("onboarding.completed", tenant_id=tenant.tenant_id, user_id=user.id)
        return onboarded

    async def _update_company_profile(self, data: CompleteOnboardingRequest) -> CompanyProfile:
        values = {
            "company_name": data.company_name,
            "address": data.address,
            "address_line_2": data.address_line_2,
            "city": data.city,
            "state": data.state,
            "country": data.country,
            "postal_code": data.postal_code,
            "phone": data.company_phone,
            "email": str(data.company_email) if data.company_email else None,
            "fiscal_year_start": data.fiscal_year_start or "01-01",
            "currency": data.currency or "USD",
        }
        if data.timezone:
            values["timezone"] = data.timezone
        if data.working_hours is not None:
            values["working_hours"] = data.working_hours

        profile = await self.profiles.first()
        if profile is None:
            return await self.profiles.create(**values)
        return await self.profiles.update(profile.id, **values)

    async def _update_admin_user(self, user: User, data: CompleteOnboardingRequest) -> User:
        email = str(data.personal_email).lower()
        clash = await self.users.first(User.id != user.id, email=email)
        if clash is not None:
            raise DuplicateAdminEmailError(email)

        return await self.users.update(
            user.id,
            first_name=data.first_name,
            last_name=data.last_name,
            name=f"{data.first_name} {data.last_name}",
            email=email,
            work_email=str(data.work_email) if data.work_email else None,
            language=data.language or "en",
            hashed_password=hash_password(data.password),
        )

    async def _create_department(self, data: CompleteOnboardingRequest) -> Department | None:
        if not data.department_name:
            return None
        existing = await self.departments.first(name=data.department_name)
        if existing is not None:
            return await self.departments.update(existing.id, branch_name=data.branch_name, is_active=True)
        return await self.departments.create(
            name=data.department_name,
            branch_name=data.branch_name,
            is_active=True,
        )
