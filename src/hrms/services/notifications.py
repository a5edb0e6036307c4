"""Welcome notifications sent after a tenant is provisioned.

Delivery itself is somebody else's job; the default notifier just logs the
message it would send. Provisioning treats every notifier as best-effort.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WelcomeMessage:
    tenant_id: str
    company_name: str
    admin_user_id: str
    admin_name: str
    admin_email: str
    login_url: str
    temporary_password: str


class WelcomeNotifier(Protocol):
    async def send_welcome(self, message: WelcomeMessage) -> None: ...


class LogWelcomeNotifier:
    """Writes the welcome message to the log instead of sending it."""

    async def send_welcome(self, message: WelcomeMessage) -> None:
        logger.info(
            "notifications.welcome",
            tenant_id=message.tenant_id,
            company_name=message.company_name,
            admin_email=message.admin_email,
            login_url=message.login_url,
        )
