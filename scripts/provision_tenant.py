#!/usr/bin/env python3
"""CLI script to provision a new tenant.

Usage:
    python scripts/provision_tenant.py --domain acme --company "Acme Corp" \
        --admin-email admin@acme.com --admin-name "Ada Lovelace"
    python scripts/provision_tenant.py --domain globex --company "Globex" --plan pro \
        --admin-email it@globex.com --admin-name "Hank Scorpio"

Connects to the central database using DATABASE_URL from environment or .env file.
Creates the central tables and default plans if needed, then runs the same
provisioning flow as POST /api/v1/tenants. The welcome login link is printed.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.hrms
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


class PrintWelcomeNotifier:
    """Prints the welcome message so the operator can hand it over."""

    async def send_welcome(self, message) -> None:
        print(f"  Admin:      {message.admin_name} <{message.admin_email}>")
        print(f"  Password:   {message.temporary_password}")
        print(f"  Login link: {message.login_url}")


async def provision(args: argparse.Namespace) -> int:
    """Provision a tenant by calling the provisioning service directly."""
    from src.hrms.core.connections import close_tenant_databases
    from src.hrms.core.database import close_db, get_central_session, init_db
    from src.hrms.core.exceptions import TenancyError
    from src.hrms.schemas.tenant import ProvisionRequest
    from src.hrms.services.plans import seed_default_plans
    from src.hrms.services.tenant_provisioning import TenantProvisioningService

    await init_db()
    async for session in get_central_session():
        await seed_default_plans(session)

    request = ProvisionRequest(
        company_name=args.company,
        domain=args.domain,
        plan=args.plan,
        admin_email=args.admin_email,
        admin_name=args.admin_name,
    )

    print(f"Provisioning tenant: domain={request.domain}, plan={request.plan}")
    try:
        tenant = await TenantProvisioningService(notifier=PrintWelcomeNotifier()).provision(request)
    except TenancyError as e:
        print(f"Provisioning failed ({e.status_code}): {e}", file=sys.stderr)
        return 1
    finally:
        await close_tenant_databases()
        await close_db()

    print("Tenant provisioned successfully:")
    print(f"  ID:         {tenant.id}")
    print(f"  Domain:     {tenant.primary_domain}")
    print(f"  Isolation:  {tenant.isolation_mode}")
    if tenant.database_name:
        print(f"  Database:   {tenant.database_name}")
    print(f"  Status:     {tenant.subscription_status}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Provision a new tenant")
    parser.add_argument("--domain", required=True, help="Domain label (e.g., acme -> acme.<base domain>)")
    parser.add_argument("--company", required=True, help="Company name (e.g., 'Acme Corp')")
    parser.add_argument("--plan", default="free", help="Subscription plan slug (default: free)")
    parser.add_argument("--admin-email", required=True, help="Initial admin user email")
    parser.add_argument("--admin-name", required=True, help="Initial admin user full name")
    args = parser.parse_args()

    sys.exit(asyncio.run(provision(args)))


if __name__ == "__main__":
    main()
