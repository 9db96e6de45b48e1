# =============================================================================
# Provisioning Service — Self-Service Tenant Signup
# =============================================================================
#
# Used by trusted integrations (authenticated with an API key carrying the
# "provisioning" scope) to open a new customer account in one transaction:
#
#   1. tenant row + tenant schema
#   2. admin user with a temporary password
#   3. TQ license sized to the purchased seats
#   4. TQ seat granted to the admin user
#
# Any failure rolls the whole signup back.
# =============================================================================

from __future__ import annotations

import logging
import secrets
import string
import unicodedata
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.db.models import Tenant, TenantApplication, User
from paas.errors import ConflictError
from paas.services import accounts, licensing, tenants
from paas.services.auth import normalize_email
from paas.services.tenancy import is_valid_slug

logger = logging.getLogger(__name__)

SIGNUP_APPLICATION = "tq"
_PASSWORD_ALPHABET = string.ascii_letters + string.digits


@dataclass
class SignupResult:
    tenant: Tenant
    admin_user: User
    temporary_password: str
    license: TenantApplication
    seats_remaining: int | None


def generate_temporary_password(length: int = 12) -> str:
    """Random password that satisfies the password policy."""
    while True:
        password = "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
        if (
            any(c.isupper() for c in password)
            and any(c.islower() for c in password)
            and any(c.isdigit() for c in password)
        ):
            return password


def subdomain_from_name(name: str) -> str:
    """'Clínica Bem Estar' → 'clinica-bem-estar' (ASCII letters, digits, '-')."""
    ascii_name = (
        unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    )
    slug = "".join(c if c.isalnum() else "-" for c in ascii_name.lower())
    slug = "-".join(part for part in slug.split("-") if part)
    return slug[:50] or "tenant"


async def signup(
    db: AsyncSession,
    tenant_name: str,
    admin_email: str,
    admin_first_name: str,
    admin_last_name: str | None = None,
    subdomain: str | None = None,
    timezone: str = "America/Sao_Paulo",
    seats: int = 1,
) -> SignupResult:
    """
    Raises:
        ConflictError: TENANT_EXISTS, USER_EXISTS
        BusinessRuleError: INVALID_SUBDOMAIN, INVALID_TIMEZONE, INVALID_EMAIL,
            PRICING_NOT_CONFIGURED, ...
        NotFoundError: APPLICATION_NOT_FOUND
    """
    slug = (subdomain or subdomain_from_name(tenant_name)).lower()
    email = normalize_email(admin_email)

    existing_user = await db.execute(select(User.id).where(User.email == email))
    if existing_user.scalar_one_or_none() is not None:
        raise ConflictError(f"User with email '{email}' already exists", code="USER_EXISTS")

    if subdomain is None and is_valid_slug(slug):
        # Generated slugs get a numeric suffix on collision instead of failing
        base, suffix = slug[:45], 1
        while (await db.execute(select(Tenant.id).where(Tenant.subdomain == slug))).first():
            suffix += 1
            slug = f"{base}-{suffix}"

    tenant = await tenants.create_tenant(db, tenant_name, slug, timezone)

    temporary_password = generate_temporary_password()
    admin = await accounts.register(
        db,
        tenant_id=tenant.id,
        email=email,
        password=temporary_password,
        first_name=admin_first_name,
        last_name=admin_last_name,
        role="admin",
    )

    license_ = await licensing.activate_license(
        db, tenant.id, SIGNUP_APPLICATION, user_limit=max(seats, 1),
    )
    seat = await licensing.grant_access(
        db, tenant.id, admin.id, SIGNUP_APPLICATION, role_in_app="admin",
    )

    logger.info(
        "Provisioned tenant %d (%s) with admin user %d and %d TQ seat(s)",
        tenant.id, tenant.subdomain, admin.id, license_.user_limit,
    )
    return SignupResult(
        tenant=tenant,
        admin_user=admin,
        temporary_password=temporary_password,
        license=license_,
        seats_remaining=seat.seats_remaining,
    )
