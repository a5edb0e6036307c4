"""API middleware package."""

from src.hrms.api.middleware.logging import LoggingMiddleware
from src.hrms.api.middleware.onboarding import EnsureOnboardingCompletedMiddleware
from src.hrms.api.middleware.tenant import DomainTenancyMiddleware

__all__ = ["DomainTenancyMiddleware", "EnsureOnboardingCompletedMiddleware", "LoggingMiddleware"]
