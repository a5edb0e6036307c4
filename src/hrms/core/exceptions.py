"""Tenancy error taxonomy.

Every error carries the HTTP status it maps to; the FastAPI exception
handler in main.py turns them into JSON responses. Isolation errors
(NoActiveTenantError, TenantIsolationError) are programmer or middleware
ordering faults and must abort the operation loudly.
"""

from __future__ import annotations


class TenancyError(Exception):
    """Base class for all tenancy errors."""

    status_code: int = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__)

    @property
    def detail(self) -> str:
        return str(self)


class NoActiveTenantError(TenancyError, RuntimeError):
    """No tenant context is active for a tenant-scoped operation."""

    status_code = 500


class TenantIsolationError(TenancyError):
    """Attempted bypass of the tenant predicate."""

    status_code = 500


class DuplicateDomainError(TenancyError):
    """Domain alias is already registered."""

    status_code = 409

    def __init__(self, domain: str) -> None:
        self.domain = domain
        super().__init__(f"Domain '{domain}' is already taken")


class DuplicateAdminEmailError(TenancyError):
    """Admin email is already registered."""

    status_code = 409

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"Email '{email}' is already registered")


class PlanNotFoundError(TenancyError):
    """Subscription plan does not exist or is inactive."""

    status_code = 422

    def __init__(self, plan: str) -> None:
        self.plan = plan
        super().__init__(f"Subscription plan '{plan}' not found")


class UserLimitReachedError(TenancyError):
    """The tenant's plan does not admit another user."""

    status_code = 403

    def __init__(self, plan: str, max_users: int) -> None:
        self.plan = plan
        self.max_users = max_users
        super().__init__(f"Plan '{plan}' allows at most {max_users} users")


class TenantNotFoundError(TenancyError):
    """Tenant could not be resolved."""

    status_code = 404

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Tenant not found: {key}")


class ContextActivationError(TenancyError):
    """Tenant storage target could not be reached."""

    status_code = 503

    def __init__(self, tenant_id: str, reason: str = "") -> None:
        self.tenant_id = tenant_id
        message = f"Could not activate tenant {tenant_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ProvisioningError(TenancyError):
    """Tenant provisioning failed and was rolled back.

    The root cause is chained as __cause__.
    """

    status_code = 500

    def __init__(self, domain: str, cause: BaseException) -> None:
        self.domain = domain
        super().__init__(f"Failed to provision tenant '{domain}': {cause}")


class InvalidLoginLinkError(TenancyError):
    """Invalid or expired login link."""

    status_code = 403
