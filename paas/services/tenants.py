# =============================================================================
# Tenants Service — Tenant Records, Contacts & Addresses
# =============================================================================
#
# Creating a tenant also provisions its PostgreSQL schema in the same
# transaction. Deleting a tenant is a soft delete (active=false,
# status=inactive); the schema and its data are kept.
#
# Contacts and addresses carry an `is_primary` flag per type: marking one
# primary demotes any other primary of the same type in the tenant.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paas.db.models import (
    ADDRESS_TYPES,
    CONTACT_TYPES,
    TENANT_STATUSES,
    Tenant,
    TenantAddress,
    TenantContact,
)
from paas.errors import BusinessRuleError, ConflictError, NotFoundError
from paas.services.auth import is_valid_email, normalize_email
from paas.services.tenancy import is_valid_slug, provision_tenant_schema, schema_name_for

logger = logging.getLogger(__name__)

# Non-nullable columns; an explicit null in an update leaves them unchanged
_REQUIRED_CONTACT_FIELDS = frozenset({"type", "full_name", "is_primary"})
_REQUIRED_ADDRESS_FIELDS = frozenset({"type", "line1", "country_code", "is_primary"})


def validate_timezone(timezone: str) -> str:
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise BusinessRuleError(
            f"Unknown timezone '{timezone}'",
            code="INVALID_TIMEZONE",
            details={"timezone": timezone},
        ) from None
    return timezone


def _check_status(status: str) -> None:
    if status not in TENANT_STATUSES:
        raise BusinessRuleError(
            f"Invalid tenant status '{status}'",
            code="INVALID_STATUS",
            details={"allowed": list(TENANT_STATUSES)},
        )


async def get_tenant(db: AsyncSession, tenant_id: int) -> Tenant:
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError(f"Tenant {tenant_id} not found", code="TENANT_NOT_FOUND")
    return tenant


async def list_tenants(
    db: AsyncSession,
    search: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Tenant], int]:
    conditions = []
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(or_(Tenant.name.ilike(pattern), Tenant.subdomain.ilike(pattern)))
    if status:
        conditions.append(Tenant.status == status)

    total = await db.scalar(select(func.count(Tenant.id)).where(*conditions)) or 0
    result = await db.execute(
        select(Tenant)
        .where(*conditions)
        .order_by(Tenant.created_at.desc(), Tenant.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def create_tenant(
    db: AsyncSession,
    name: str,
    subdomain: str,
    timezone: str = "America/Sao_Paulo",
    status: str = "active",
) -> Tenant:
    """
    Create a tenant and provision its schema.

    Raises:
        BusinessRuleError: INVALID_SUBDOMAIN, INVALID_TIMEZONE, INVALID_STATUS
        ConflictError: TENANT_EXISTS
    """
    subdomain = subdomain.strip().lower()
    if not is_valid_slug(subdomain):
        raise BusinessRuleError(
            "Subdomain must be 2-50 characters of letters, digits, '_' or '-'",
            code="INVALID_SUBDOMAIN",
        )
    validate_timezone(timezone)
    _check_status(status)

    existing = await db.execute(select(Tenant.id).where(Tenant.subdomain == subdomain))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(
            f"Tenant with subdomain '{subdomain}' already exists",
            code="TENANT_EXISTS",
        )

    tenant = Tenant(
        name=name.strip(),
        subdomain=subdomain,
        timezone=timezone,
        status=status,
        active=status == "active",
    )
    db.add(tenant)
    await db.flush()

    tenant.schema_name = schema_name_for(tenant.id)
    await provision_tenant_schema(db, tenant.id)
    logger.info("Created tenant %d (%s)", tenant.id, subdomain)
    return tenant


async def update_tenant(db: AsyncSession, tenant_id: int, fields: dict[str, Any]) -> Tenant:
    tenant = await get_tenant(db, tenant_id)
    if fields.get("name") is not None:
        tenant.name = fields["name"].strip()
    if fields.get("timezone") is not None:
        tenant.timezone = validate_timezone(fields["timezone"])
    if fields.get("status") is not None:
        _check_status(fields["status"])
        tenant.status = fields["status"]
        tenant.active = fields["status"] == "active"
    await db.flush()
    return tenant


async def deactivate_tenant(db: AsyncSession, tenant_id: int) -> Tenant:
    tenant = await get_tenant(db, tenant_id)
    tenant.active = False
    tenant.status = "inactive"
    await db.flush()
    logger.info("Deactivated tenant %d", tenant_id)
    return tenant


# ---------------------------------------------------------------------------
# Contacts & Addresses
# ---------------------------------------------------------------------------


async def _demote_primaries(
    db: AsyncSession,
    model: type[TenantContact] | type[TenantAddress],
    tenant_id: int,
    type_: str,
    exclude_id: int | None = None,
) -> None:
    stmt = update(model).where(
        model.tenant_id == tenant_id,
        model.type == type_,
        model.is_primary.is_(True),
    )
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    await db.execute(stmt.values(is_primary=False))


def _check_type(value: str, allowed: tuple[str, ...], what: str) -> str:
    value = value.upper()
    if value not in allowed:
        raise BusinessRuleError(
            f"Invalid {what} type '{value}'",
            code="INVALID_TYPE",
            details={"allowed": list(allowed)},
        )
    return value


async def list_contacts(db: AsyncSession, tenant_id: int) -> list[TenantContact]:
    await get_tenant(db, tenant_id)
    result = await db.execute(
        select(TenantContact)
        .where(TenantContact.tenant_id == tenant_id, TenantContact.active.is_(True))
        .order_by(TenantContact.type, TenantContact.is_primary.desc(), TenantContact.id)
    )
    return list(result.scalars().all())


async def _get_contact(db: AsyncSession, tenant_id: int, contact_id: int) -> TenantContact:
    contact = await db.get(TenantContact, contact_id)
    if contact is None or contact.tenant_id != tenant_id or not contact.active:
        raise NotFoundError("Contact not found", code="CONTACT_NOT_FOUND")
    return contact


def _normalize_contact_fields(fields: dict[str, Any]) -> dict[str, Any]:
    if fields.get("type") is not None:
        fields["type"] = _check_type(fields["type"], CONTACT_TYPES, "contact")
    if fields.get("email"):
        email = normalize_email(fields["email"])
        if not is_valid_email(email):
            raise BusinessRuleError("Invalid email format", code="INVALID_EMAIL")
        fields["email"] = email
    return fields


async def create_contact(
    db: AsyncSession, tenant_id: int, fields: dict[str, Any],
) -> TenantContact:
    await get_tenant(db, tenant_id)
    fields = _normalize_contact_fields(dict(fields))
    if fields.get("is_primary"):
        await _demote_primaries(db, TenantContact, tenant_id, fields["type"])
    contact = TenantContact(tenant_id=tenant_id, **fields)
    db.add(contact)
    await db.flush()
    return contact


async def update_contact(
    db: AsyncSession, tenant_id: int, contact_id: int, fields: dict[str, Any],
) -> TenantContact:
    contact = await _get_contact(db, tenant_id, contact_id)
    fields = _normalize_contact_fields(dict(fields))
    for key, value in fields.items():
        if value is None and key in _REQUIRED_CONTACT_FIELDS:
            continue
        setattr(contact, key, value)
    if contact.is_primary:
        await _demote_primaries(db, TenantContact, tenant_id, contact.type, contact.id)
    await db.flush()
    return contact


async def delete_contact(db: AsyncSession, tenant_id: int, contact_id: int) -> None:
    contact = await _get_contact(db, tenant_id, contact_id)
    contact.active = False
    contact.is_primary = False
    await db.flush()


async def list_addresses(db: AsyncSession, tenant_id: int) -> list[TenantAddress]:
    await get_tenant(db, tenant_id)
    result = await db.execute(
        select(TenantAddress)
        .where(TenantAddress.tenant_id == tenant_id, TenantAddress.active.is_(True))
        .order_by(TenantAddress.type, TenantAddress.is_primary.desc(), TenantAddress.id)
    )
    return list(result.scalars().all())


async def _get_address(db: AsyncSession, tenant_id: int, address_id: int) -> TenantAddress:
    address = await db.get(TenantAddress, address_id)
    if address is None or address.tenant_id != tenant_id or not address.active:
        raise NotFoundError("Address not found", code="ADDRESS_NOT_FOUND")
    return address


def _normalize_address_fields(fields: dict[str, Any]) -> dict[str, Any]:
    if fields.get("type") is not None:
        fields["type"] = _check_type(fields["type"], ADDRESS_TYPES, "address")
    if fields.get("country_code") is not None:
        fields["country_code"] = fields["country_code"].upper()
    return fields


async def create_address(
    db: AsyncSession, tenant_id: int, fields: dict[str, Any],
) -> TenantAddress:
    await get_tenant(db, tenant_id)
    fields = _normalize_address_fields(dict(fields))
    if fields.get("is_primary"):
        await _demote_primaries(db, TenantAddress, tenant_id, fields["type"])
    address = TenantAddress(tenant_id=tenant_id, **fields)
    db.add(address)
    await db.flush()
    return address


async def update_address(
    db: AsyncSession, tenant_id: int, address_id: int, fields: dict[str, Any],
) -> TenantAddress:
    address = await _get_address(db, tenant_id, address_id)
    fields = _normalize_address_fields(dict(fields))
    for key, value in fields.items():
        if value is None and key in _REQUIRED_ADDRESS_FIELDS:
            continue
        setattr(address, key, value)
    if address.is_primary:
        await _demote_primaries(db, TenantAddress, tenant_id, address.type, address.id)
    await db.flush()
    return address


async def delete_address(db: AsyncSession, tenant_id: int, address_id: int) -> None:
    address = await _get_address(db, tenant_id, address_id)
    address.active = False
    address.is_primary = False
    await db.flush()
