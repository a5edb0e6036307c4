"""Tenant provisioning service.

Creates a tenant together with everything it needs to be usable: the
registry row, its domain alias, the first admin user and the company
profile. Steps 1-5 are all-or-nothing:

1. Build the domain alias and reject one that is already taken
2. Insert the tenant (trial for free plans, active otherwise)
3. Insert the domain alias
4. Activate the tenant context
5. Create the admin user and company profile through the repository layer
6. End the tenant context
7. Send the welcome notification (best-effort, never rolled back)

Shared-mode tenants are written in a single central transaction. For
dedicated-mode tenants the tenant database is committed first and the
central transaction last; if anything fails the central transaction is
rolled back and the tenant database dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.hrms.config import get_settings
from src.hrms.core.connections import TenantDatabaseManager, get_tenant_database_manager
from src.hrms.core.database import get_engine
from src.hrms.core.exceptions import (
    DuplicateAdminEmailError,
    DuplicateDomainError,
    PlanNotFoundError,
    ProvisioningError,
    UserLimitReachedError,
)
from src.hrms.core.monitoring import track_provisioning
from src.hrms.core.repository import TenantScopedRepository, UnscopedRepository
from src.hrms.core.security import create_login_link, generate_password, hash_password
from src.hrms.core.tenant import TenantContext, get_active_context, tenant_scope
from src.hrms.models.central import IsolationMode, SubscriptionPlan, SubscriptionStatus, Tenant, utcnow
from src.hrms.models.tenant import CompanyProfile, User, UserRole
from src.hrms.schemas.tenant import ProvisionRequest
from src.hrms.services.notifications import LogWelcomeNotifier, WelcomeMessage, WelcomeNotifier
from src.hrms.services.plans import get_plan_by_slug
from src.hrms.services.tenant_registry import TenantRegistration, TenantRegistry

logger = structlog.get_logger(__name__)

ADMIN_EMPLOYEE_ID = "EMP001"

# Request-level rejections, re-raised as they are
PASS_THROUGH_ERRORS = (DuplicateDomainError, DuplicateAdminEmailError, PlanNotFoundError, UserLimitReachedError)
DEFAULT_WORK_DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
DEFAULT_WORKING_HOURS = {"start": "08:00", "end": "17:00"}


def build_tenant_domain(label: str) -> str:
    """The one domain rule: <label>.<TENANT_BASE_DOMAIN>, lower-cased."""
    return f"{label.strip().lower()}.{get_settings().TENANT_BASE_DOMAIN.strip('.').lower()}"


def _default_session_factory() -> AsyncSession:
    return AsyncSession(get_engine(), expire_on_commit=False)


class TenantProvisioningService:
    """Provision tenants atomically.

    Args:
        registry: Registry used for the tenant and domain rows.
        notifier: Receives the welcome message after a successful provision.
        database_manager: Manager for dedicated databases (dropped on rollback).
        session_factory: Callable returning a session on the central database.
    """

    def __init__(
        self,
        registry: TenantRegistry | None = None,
        notifier: WelcomeNotifier | None = None,
        database_manager: TenantDatabaseManager | None = None,
        session_factory: Callable[[], AsyncSession] | None = None,
    ) -> None:
        self._session_factory = session_factory or _default_session_factory
        self._registry = registry or TenantRegistry(self._session_factory)
        self._notifier = notifier or LogWelcomeNotifier()
        self._databases = database_manager or get_tenant_database_manager()

    async def provision(self, request: ProvisionRequest) -> Tenant:
        """Provision a tenant and its admin. See the module docstring for steps.

        Raises:
            DuplicateDomainError: The domain alias is already registered.
            PlanNotFoundError: Unknown plan slug.
            DuplicateAdminEmailError: Global admin email uniqueness is
                enabled and the email is in use.
            UserLimitReachedError: The plan admits no users.
            ProvisioningError: Any other failure, including database errors
                while checking the request; nothing was persisted. The root
                cause is chained.
        """
        domain = build_tenant_domain(request.domain)
        admin_email = str(request.admin_email).lower()
        password = generate_password()

        async with self._session_factory() as central:
            try:
                plan = await self._check_request(central, domain, request.plan, admin_email)
            except PASS_THROUGH_ERRORS:
                raise
            except Exception as exc:
                logger.error("provisioning.precheck_failed", domain=domain, error=str(exc), exc_info=True)
                raise ProvisioningError(domain, exc) from exc

            async with track_provisioning(plan.isolation_mode) as tracker:
                tenant: Tenant | None = None
                try:
                    tenant = await self._registry.create(
                        self._registration(request, plan, domain), session=central
                    )
                    tracker["tenant_id"] = tenant.id

                    async with tenant_scope(tenant):
                        admin = await self._seed_tenant(central, tenant, request, admin_email, password)

                    await central.commit()
                except (*PASS_THROUGH_ERRORS, asyncio.CancelledError):
                    await self._rollback(central, tenant)
                    raise
                except Exception as exc:
                    logger.error(
                        "provisioning.failed",
                        domain=domain,
                        plan=plan.slug,
                        error=str(exc),
                        exc_info=True,
                    )
                    await self._rollback(central, tenant)
                    raise ProvisioningError(domain, exc) from exc

        logger.info(
            "provisioning.completed",
            tenant_id=tenant.id,
            domain=domain,
            plan=plan.slug,
            isolation_mode=tenant.isolation_mode,
            subscription_status=tenant.subscription_status,
        )
        await self._send_welcome(tenant, domain, admin, password)
        return tenant

    # ── Steps ───────────────────────────────────────────────────────────

    def _registration(self, request: ProvisionRequest, plan: SubscriptionPlan, domain: str) -> TenantRegistration:
        settings = get_settings()
        now = utcnow()
        registration = TenantRegistration(
            company_name=request.company_name,
            slug=request.domain.strip().lower(),
            domains=[domain],
            plan=plan,
            isolation_mode=plan.isolation_mode,
            subscription_type=request.payment_type,
        )
        if plan.is_free:
            registration.subscription_status = SubscriptionStatus.trial.value
            registration.trial_ends_at = now + timedelta(days=settings.TRIAL_DAYS)
        else:
            registration.subscription_status = SubscriptionStatus.active.value
            registration.subscription_ends_at = now + timedelta(days=settings.BILLING_CYCLE_DAYS)
        return registration

    async def _seed_tenant(
        self,
        central: AsyncSession,
        tenant: Tenant,
        request: ProvisionRequest,
        admin_email: str,
        password: str,
    ) -> User:
        """Create the admin and company profile inside the active tenant scope."""
        if not tenant.is_dedicated:
            return await self._create_initial_rows(central, tenant, request, admin_email, password)

        async with AsyncSession(get_active_context().engine, expire_on_commit=False) as tenant_db:
            try:
                admin = await self._create_initial_rows(tenant_db, tenant, request, admin_email, password)
                await tenant_db.commit()
            except BaseException:
                await tenant_db.rollback()
                raise
        return admin

    async def _create_initial_rows(
        self,
        session: AsyncSession,
        tenant: Tenant,
        request: ProvisionRequest,
        admin_email: str,
        password: str,
    ) -> User:
        first_name, _, last_name = request.admin_name.strip().partition(" ")
        users = TenantScopedRepository(User, session)
        if not tenant.can_add_users(await users.count()):
            raise UserLimitReachedError(tenant.plan.slug, tenant.plan.max_users)
        admin = await users.create(
            name=request.admin_name.strip(),
            first_name=first_name or None,
            last_name=last_name or None,
            email=admin_email,
            hashed_password=hash_password(password),
            role=UserRole.ADMIN,
            employee_id=ADMIN_EMPLOYEE_ID,
            is_active=True,
        )
        profiles = TenantScopedRepository(CompanyProfile, session)
        await profiles.create(
            company_name=request.company_name,
            timezone="UTC",
            currency="USD",
            working_hours=dict(DEFAULT_WORKING_HOURS),
            work_days=list(DEFAULT_WORK_DAYS),
        )
        return admin

    async def _rollback(self, central: AsyncSession, tenant: Tenant | None) -> None:
        # Snapshot first: rollback expunges the rows inserted in this transaction
        snapshot = TenantContext.from_tenant(tenant) if tenant is not None else None
        await central.rollback()
        if snapshot is None or snapshot.isolation_mode != IsolationMode.dedicated.value:
            return
        try:
            await self._databases.drop_database(snapshot)
        except Exception as e:
            logger.error("provisioning.drop_database_failed", tenant_id=snapshot.tenant_id, error=str(e))

    async def _ensure_admin_email_unused(self, central: AsyncSession, email: str) -> None:
        """Reject an admin email already used by any tenant, shared or dedicated."""
        reason = "provisioning-admin-email-uniqueness"
        if await UnscopedRepository(User, central, reason=reason).list(email=email):
            raise DuplicateAdminEmailError(email)

        for tenant in await self._registry.list_tenants(session=central):
            if not tenant.is_dedicated:
                continue
            async with self._databases.session_for(tenant) as tenant_db:
                if await UnscopedRepository(User, tenant_db, reason=reason).list(email=email):
                    raise DuplicateAdminEmailError(email)

    async def _send_welcome(self, tenant: Tenant, domain: str, admin: User, password: str) -> None:
        settings = get_settings()
        try:
            login_url = create_login_link(admin.id, tenant.id, domain, scheme=settings.TENANT_URL_SCHEME)
            await self._notifier.send_welcome(
                WelcomeMessage(
                    tenant_id=tenant.id,
                    company_name=tenant.company_name,
                    admin_user_id=admin.id,
                    admin_name=admin.name,
                    admin_email=admin.email,
                    login_url=login_url,
                    temporary_password=password,
                )
            )
        except Exception as e:
            logger.warning("provisioning.welcome_failed", tenant_id=tenant.id, error=str(e))
