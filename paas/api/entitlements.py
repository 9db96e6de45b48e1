# =============================================================================
# Entitlements API — What a Tenant and Its Users May Use
# =============================================================================
#
# ENDPOINTS (prefix /internal/api/v1, tenant header + tenant user token):
#   GET /entitlements               — tenant licenses with seat usage
#   GET /entitlements/me            — applications the caller may open
#   GET /entitlements/access-logs   — access decisions (tenant admins)
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_tenant_context, get_tenant_user, require_role
from paas.api.licenses import license_response
from paas.db.engine import get_async_session
from paas.db.models import ApplicationAccessLog
from paas.models.responses import (
    AccessLogListResponse,
    AccessLogResponse,
    LicenseListResponse,
    MyEntitlementsResponse,
    paginate,
)
from paas.services import licensing
from paas.services.auth import TokenClaims
from paas.services.tenancy import TenantContext

router = APIRouter(tags=["Entitlements"])


@router.get("/entitlements", response_model=LicenseListResponse)
async def tenant_entitlements(
    claims: TokenClaims = Depends(get_tenant_user),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_async_session),
) -> LicenseListResponse:
    licenses = await licensing.tenant_licenses(session, tenant.id)
    return LicenseListResponse(
        tenant_id=tenant.id,
        licenses=[license_response(lic) for lic in licenses],
    )


@router.get("/entitlements/me", response_model=MyEntitlementsResponse)
async def my_entitlements(
    claims: TokenClaims = Depends(get_tenant_user),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_async_session),
) -> MyEntitlementsResponse:
    """Computed from the database, so it reflects grants made after login."""
    apps = await licensing.user_allowed_apps(session, claims.user_id, tenant.id)
    return MyEntitlementsResponse(
        user_id=claims.user_id, tenant_id=tenant.id, allowed_apps=apps,
    )


@router.get("/entitlements/access-logs", response_model=AccessLogListResponse)
async def access_logs(
    user_id: int | None = Query(default=None),
    app: str | None = Query(default=None, description="Application slug"),
    decision: str | None = Query(default=None, pattern="^(granted|denied)$"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    claims: TokenClaims = Depends(require_role("admin")),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_async_session),
) -> AccessLogListResponse:
    conditions = [ApplicationAccessLog.tenant_id == tenant.id]
    if user_id is not None:
        conditions.append(ApplicationAccessLog.user_id == user_id)
    if decision is not None:
        conditions.append(ApplicationAccessLog.decision == decision)
    if app is not None:
        application = await licensing.get_application_by_slug(session, app)
        conditions.append(ApplicationAccessLog.application_id == application.id)

    total = await session.scalar(
        select(func.count(ApplicationAccessLog.id)).where(*conditions)
    ) or 0
    result = await session.execute(
        select(ApplicationAccessLog)
        .where(*conditions)
        .order_by(ApplicationAccessLog.created_at.desc(), ApplicationAccessLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    logs = list(result.scalars().all())
    return AccessLogListResponse(
        items=[AccessLogResponse.model_validate(entry) for entry in logs],
        pagination=paginate(total, limit, offset, len(logs)),
    )
