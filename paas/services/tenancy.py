# =============================================================================
# Tenancy Service — Tenant Resolution & Schema Provisioning
# =============================================================================
#
# A request names its tenant through the `x-tenant-id` header, either as a
# numeric id ("7") or as the tenant's subdomain slug ("acme"). Browser
# traffic on acme.example.com may omit the header; the slug is then taken
# from the Host header.
#
# RESOLUTION:
#   identifier ──validate──▶ lookup in `tenants` (active only)
#              ──▶ TenantContext(schema = "tenant_<id>")
#
# The schema name is always derived from the id, never from user input, so
# it is safe to interpolate into DDL.
# =============================================================================

from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from paas.db.engine import schema_map
from paas.db.models import Tenant, TenantBase
from paas.errors import BadRequestError, NotFoundError

logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
SLUG_MIN_LENGTH = 2
SLUG_MAX_LENGTH = 50

# Subdomains that never name a tenant
RESERVED_SUBDOMAINS = frozenset({"www", "api", "admin", "app", "localhost"})


@dataclass(frozen=True)
class TenantContext:
    """The tenant a request operates on."""

    id: int
    slug: str
    schema: str
    name: str
    status: str
    timezone: str
    source: str          # "header" or "subdomain"
    input_format: str    # "numeric" or "slug"


# ASCII digits only; tenant ids are int4 serials
_NUMERIC_ID = re.compile(r"[0-9]+")
MAX_TENANT_ID = 2_147_483_647


def schema_name_for(tenant_id: int) -> str:
    return f"tenant_{tenant_id}"


def parse_identifier(raw: str) -> tuple[str, int | str]:
    """
    Validate a tenant identifier.

    Returns ("numeric", id) or ("slug", slug).

    Raises:
        BadRequestError (INVALID_TENANT_ID): Not a positive integer and not
            a 2-50 char slug of letters, digits, '_' and '-'.
    """
    value = (raw or "").strip()
    if _NUMERIC_ID.fullmatch(value):
        tenant_id = int(value)
        if not 0 < tenant_id <= MAX_TENANT_ID:
            raise BadRequestError(
                "Tenant ID must be a positive 32-bit integer",
                code="INVALID_TENANT_ID",
                details={"tenant_id": value},
            )
        return "numeric", tenant_id

    if is_valid_slug(value):
        return "slug", value

    raise BadRequestError(
        "Invalid tenant identifier",
        code="INVALID_TENANT_ID",
        details={"tenant_id": value},
    )


def is_valid_slug(value: str) -> bool:
    return (
        SLUG_MIN_LENGTH <= len(value) <= SLUG_MAX_LENGTH
        and bool(SLUG_RE.match(value))
    )


def subdomain_from_host(host: str | None) -> str | None:
    """
    Extract a tenant slug from a Host header value.

    acme.example.com → "acme". IP addresses, hosts with fewer than three
    labels and reserved subdomains yield None.
    """
    if not host:
        return None
    hostname = host.split(":", 1)[0].strip().lower()
    if not hostname:
        return None
    try:
        ipaddress.ip_address(hostname)
        return None
    except ValueError:
        pass

    labels = hostname.split(".")
    if len(labels) < 3:
        return None
    subdomain = labels[0]
    if subdomain in RESERVED_SUBDOMAINS:
        return None
    return subdomain


async def resolve_tenant(
    session: AsyncSession,
    raw_identifier: str,
    source: str = "header",
) -> TenantContext:
    """
    Look up an active tenant by id or slug.

    Raises:
        BadRequestError (INVALID_TENANT_ID): Malformed identifier
        NotFoundError (TENANT_NOT_FOUND): Unknown or inactive tenant
    """
    input_format, value = parse_identifier(raw_identifier)

    stmt = select(Tenant).where(Tenant.active.is_(True))
    if input_format == "numeric":
        stmt = stmt.where(Tenant.id == value)
    else:
        stmt = stmt.where(Tenant.subdomain == value)

    result = await session.execute(stmt)
    tenant = result.scalar_one_or_none()
    if tenant is None:
        raise NotFoundError(
            f"Tenant '{raw_identifier}' not found or inactive",
            code="TENANT_NOT_FOUND",
        )

    return TenantContext(
        id=tenant.id,
        slug=tenant.subdomain,
        schema=schema_name_for(tenant.id),
        name=tenant.name,
        status=tenant.status,
        timezone=tenant.timezone,
        source=source,
        input_format=input_format,
    )


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------


def _create_tenant_tables(sync_conn, schema: str) -> None:
    TenantBase.metadata.create_all(
        sync_conn.execution_options(schema_translate_map=schema_map(schema)),
    )


async def provision_tenant_schema(db: AsyncSession, tenant_id: int) -> str:
    """
    Create the tenant's schema and all TQ tables and sequences in it.

    Runs on the session's own connection: PostgreSQL DDL is transactional,
    so a request that fails after creating the tenant row leaves no schema
    behind. Idempotent (CREATE SCHEMA IF NOT EXISTS, checkfirst tables).
    """
    schema = schema_name_for(tenant_id)
    conn = await db.connection()
    await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))
    await conn.run_sync(_create_tenant_tables, schema)
    logger.info("Provisioned schema %s for tenant %d", schema, tenant_id)
    return schema
