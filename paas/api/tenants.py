# =============================================================================
# Tenants API — Tenant Records, Contacts & Addresses (platform admins)
# =============================================================================
#
# ENDPOINTS (prefix /internal/api/v1):
#   GET    /tenants                         — search / filter / paginate
#   POST   /tenants                         — create + provision schema
#   GET    /tenants/{id}
#   PUT    /tenants/{id}
#   DELETE /tenants/{id}                    — soft delete (status inactive)
#   GET    /tenants/{id}/contacts           POST /tenants/{id}/contacts
#   PUT    /tenants/{id}/contacts/{cid}     DELETE /tenants/{id}/contacts/{cid}
#   GET    /tenants/{id}/addresses          POST /tenants/{id}/addresses
#   PUT    /tenants/{id}/addresses/{aid}    DELETE /tenants/{id}/addresses/{aid}
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_platform_admin
from paas.db.engine import get_async_session
from paas.models.requests import (
    AddressRequest,
    ContactRequest,
    CreateTenantRequest,
    UpdateAddressRequest,
    UpdateContactRequest,
    UpdateTenantRequest,
)
from paas.models.responses import (
    AddressResponse,
    ContactResponse,
    TenantListResponse,
    TenantResponse,
    paginate,
)
from paas.services import tenants

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tenants"], dependencies=[Depends(get_platform_admin)])


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


@router.get("/tenants", response_model=TenantListResponse, summary="List tenants")
async def list_tenants(
    search: str | None = Query(default=None, description="Matches name or subdomain"),
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_async_session),
) -> TenantListResponse:
    items, total = await tenants.list_tenants(session, search, status, limit, offset)
    return TenantListResponse(
        items=[TenantResponse.model_validate(t) for t in items],
        pagination=paginate(total, limit, offset, len(items)),
    )


@router.post(
    "/tenants",
    response_model=TenantResponse,
    status_code=201,
    summary="Create a tenant",
    description="Creates the tenant record and its PostgreSQL schema with all TQ tables.",
)
async def create_tenant(
    request: CreateTenantRequest,
    session: AsyncSession = Depends(get_async_session),
) -> TenantResponse:
    tenant = await tenants.create_tenant(
        session, request.name, request.subdomain, request.timezone, request.status,
    )
    return TenantResponse.model_validate(tenant)


@router.get("/tenants/{tenant_id}", response_model=TenantResponse, summary="Get a tenant")
async def get_tenant(
    tenant_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> TenantResponse:
    return TenantResponse.model_validate(await tenants.get_tenant(session, tenant_id))


@router.put("/tenants/{tenant_id}", response_model=TenantResponse, summary="Update a tenant")
async def update_tenant(
    tenant_id: int,
    request: UpdateTenantRequest,
    session: AsyncSession = Depends(get_async_session),
) -> TenantResponse:
    tenant = await tenants.update_tenant(
        session, tenant_id, request.model_dump(exclude_unset=True),
    )
    return TenantResponse.model_validate(tenant)


@router.delete(
    "/tenants/{tenant_id}",
    response_model=TenantResponse,
    summary="Deactivate a tenant",
    description="Soft delete: the tenant becomes inactive; its schema and data are kept.",
)
async def delete_tenant(
    tenant_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> TenantResponse:
    return TenantResponse.model_validate(await tenants.deactivate_tenant(session, tenant_id))


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


@router.get("/tenants/{tenant_id}/contacts", response_model=list[ContactResponse])
async def list_contacts(
    tenant_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> list[ContactResponse]:
    contacts = await tenants.list_contacts(session, tenant_id)
    return [ContactResponse.model_validate(c) for c in contacts]


@router.post(
    "/tenants/{tenant_id}/contacts",
    response_model=ContactResponse,
    status_code=201,
)
async def create_contact(
    tenant_id: int,
    request: ContactRequest,
    session: AsyncSession = Depends(get_async_session),
) -> ContactResponse:
    contact = await tenants.create_contact(session, tenant_id, request.model_dump())
    return ContactResponse.model_validate(contact)


@router.put("/tenants/{tenant_id}/contacts/{contact_id}", response_model=ContactResponse)
async def update_contact(
    tenant_id: int,
    contact_id: int,
    request: UpdateContactRequest,
    session: AsyncSession = Depends(get_async_session),
) -> ContactResponse:
    contact = await tenants.update_contact(
        session, tenant_id, contact_id, request.model_dump(exclude_unset=True),
    )
    return ContactResponse.model_validate(contact)


@router.delete("/tenants/{tenant_id}/contacts/{contact_id}", status_code=204)
async def delete_contact(
    tenant_id: int,
    contact_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> None:
    await tenants.delete_contact(session, tenant_id, contact_id)


# ---------------------------------------------------------------------------
# Addresses
# ---------------------------------------------------------------------------


@router.get("/tenants/{tenant_id}/addresses", response_model=list[AddressResponse])
async def list_addresses(
    tenant_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> list[AddressResponse]:
    addresses = await tenants.list_addresses(session, tenant_id)
    return [AddressResponse.model_validate(a) for a in addresses]


@router.post(
    "/tenants/{tenant_id}/addresses",
    response_model=AddressResponse,
    status_code=201,
)
async def create_address(
    tenant_id: int,
    request: AddressRequest,
    session: AsyncSession = Depends(get_async_session),
) -> AddressResponse:
    address = await tenants.create_address(session, tenant_id, request.model_dump())
    return AddressResponse.model_validate(address)


@router.put("/tenants/{tenant_id}/addresses/{address_id}", response_model=AddressResponse)
async def update_address(
    tenant_id: int,
    address_id: int,
    request: UpdateAddressRequest,
    session: AsyncSession = Depends(get_async_session),
) -> AddressResponse:
    address = await tenants.update_address(
        session, tenant_id, address_id, request.model_dump(exclude_unset=True),
    )
    return AddressResponse.model_validate(address)


@router.delete("/tenants/{tenant_id}/addresses/{address_id}", status_code=204)
async def delete_address(
    tenant_id: int,
    address_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> None:
    await tenants.delete_address(session, tenant_id, address_id)
