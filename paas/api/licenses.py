# =============================================================================
# Licenses API — Tenant Licenses & User Seats (platform admins)
# =============================================================================
#
# ENDPOINTS (prefix /internal/api/v1):
#   POST /tenants/{id}/applications/{slug}/activate
#   PUT  /tenants/{id}/applications/{slug}/adjust
#   POST /tenants/{id}/users/{user_id}/applications/{slug}/grant
#   POST /tenants/{id}/users/{user_id}/applications/{slug}/revoke
#   GET  /tenants/{id}/applications/{slug}/users
#   GET  /tenants/{id}/licenses
#
# Seat accounting lives in services/licensing.py; every handler here runs
# inside the request transaction that holds the license row lock.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_platform_admin, request_info
from paas.db.engine import get_async_session
from paas.db.models import TenantApplication
from paas.models.requests import ActivateLicenseRequest, AdjustLicenseRequest, GrantAccessRequest
from paas.models.responses import (
    LicenseListResponse,
    LicenseResponse,
    LicenseUsersResponse,
    SeatChangeResponse,
)
from paas.services import licensing
from paas.services.auth import TokenClaims
from paas.services.licensing import SeatChange

router = APIRouter(tags=["Licenses"])


def license_response(license_: TenantApplication) -> LicenseResponse:
    return LicenseResponse(
        id=license_.id,
        tenant_id=license_.tenant_id,
        application_id=license_.application_id,
        application_slug=license_.application.slug,
        application_name=license_.application.name,
        status=license_.status,
        activated_at=license_.activated_at,
        expires_at=license_.expires_at,
        user_limit=license_.user_limit,
        seats_used=license_.seats_used,
        seats_available=license_.seats_available,
        active=license_.active,
    )


def seat_change_response(change: SeatChange, app_slug: str) -> SeatChangeResponse:
    access = change.access
    return SeatChangeResponse(
        user_id=access.user_id,
        application_slug=app_slug,
        role_in_app=access.role_in_app,
        active=access.active,
        granted_at=access.granted_at,
        seats_used=change.seats_used,
        user_limit=change.user_limit,
        seats_remaining=change.seats_remaining,
        seats_freed=change.seats_freed,
        price_snapshot=access.price_snapshot,
        currency_snapshot=access.currency_snapshot,
        billing_cycle_snapshot=access.billing_cycle_snapshot,
    )


@router.post(
    "/tenants/{tenant_id}/applications/{slug}/activate",
    response_model=LicenseResponse,
    status_code=201,
    summary="License an application for a tenant",
    description=(
        "Creates the license, or reactivates a suspended/expired/revoked one "
        "with the new terms. Omit user_limit for unlimited seats."
    ),
)
async def activate_license(
    tenant_id: int,
    slug: str,
    body: ActivateLicenseRequest,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> LicenseResponse:
    license_ = await licensing.activate_license(
        session,
        tenant_id,
        slug,
        user_limit=body.user_limit,
        expires_at=body.expires_at,
        status=body.status,
    )
    return license_response(license_)


@router.put(
    "/tenants/{tenant_id}/applications/{slug}/adjust",
    response_model=LicenseResponse,
    summary="Change seats, expiry or status of a license",
)
async def adjust_license(
    tenant_id: int,
    slug: str,
    body: AdjustLicenseRequest,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> LicenseResponse:
    license_ = await licensing.adjust_license(
        session, tenant_id, slug, **body.model_dump(exclude_unset=True),
    )
    return license_response(license_)


@router.post(
    "/tenants/{tenant_id}/users/{user_id}/applications/{slug}/grant",
    response_model=SeatChangeResponse,
    summary="Give a user a seat",
)
async def grant_access(
    tenant_id: int,
    user_id: int,
    slug: str,
    request: Request,
    body: GrantAccessRequest | None = None,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> SeatChangeResponse:
    change = await licensing.grant_access(
        session,
        tenant_id,
        user_id,
        slug,
        role_in_app=body.role_in_app if body else None,
        granted_by=admin.user_id,
        request_info=request_info(request),
    )
    return seat_change_response(change, slug)


@router.post(
    "/tenants/{tenant_id}/users/{user_id}/applications/{slug}/revoke",
    response_model=SeatChangeResponse,
    summary="Take a user's seat back",
)
async def revoke_access(
    tenant_id: int,
    user_id: int,
    slug: str,
    request: Request,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> SeatChangeResponse:
    change = await licensing.revoke_access(
        session,
        tenant_id,
        user_id,
        slug,
        revoked_by=admin.user_id,
        request_info=request_info(request),
    )
    return seat_change_response(change, slug)


@router.get(
    "/tenants/{tenant_id}/applications/{slug}/users",
    response_model=LicenseUsersResponse,
    summary="Users of a tenant with their access to an application",
)
async def list_license_users(
    tenant_id: int,
    slug: str,
    q: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> LicenseUsersResponse:
    data = await licensing.list_license_users(session, tenant_id, slug, q, limit, offset)
    return LicenseUsersResponse.model_validate(data)


@router.get(
    "/tenants/{tenant_id}/licenses",
    response_model=LicenseListResponse,
    summary="All licenses of a tenant",
)
async def tenant_licenses(
    tenant_id: int,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> LicenseListResponse:
    licenses = await licensing.tenant_licenses(session, tenant_id)
    return LicenseListResponse(
        tenant_id=tenant_id,
        licenses=[license_response(lic) for lic in licenses],
    )
