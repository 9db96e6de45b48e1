# =============================================================================
# Admin API — Integration Keys & Request Audit Trail (platform admins)
# =============================================================================
#
#   POST   /admin/keys            — issue a key; the raw value is shown once
#   GET    /admin/keys            — list keys (prefix only, never the hash)
#   GET    /admin/keys/{key_id}
#   PATCH  /admin/keys/{key_id}   — rename, rescope, disable, change expiry
#   DELETE /admin/keys/{key_id}   — hard delete; audit rows keep NULL key id
#   GET    /admin/audit-logs      — filtered request history
#
# Integration keys authenticate machine callers such as the website signup
# flow (scope "provisioning"). Disabling a key is a PATCH with
# is_active=false; DELETE removes the row.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_platform_admin
from paas.db.engine import get_async_session
from paas.db.models import ApiKey, AuditLog
from paas.errors import NotFoundError
from paas.models.requests import CreateApiKeyRequest, UpdateApiKeyRequest
from paas.models.responses import (
    ApiKeyCreatedResponse,
    ApiKeyListResponse,
    ApiKeyResponse,
    AuditLogListResponse,
    AuditLogResponse,
)
from paas.services.auth import TokenClaims, generate_api_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"], dependencies=[Depends(get_platform_admin)])


async def _load_key(session: AsyncSession, key_id: int) -> ApiKey:
    api_key = await session.get(ApiKey, key_id)
    if api_key is None:
        raise NotFoundError(f"API key {key_id} not found", code="API_KEY_NOT_FOUND")
    return api_key


# ---------------------------------------------------------------------------
# Integration Keys
# ---------------------------------------------------------------------------


@router.post(
    "/admin/keys",
    response_model=ApiKeyCreatedResponse,
    status_code=201,
    summary="Issue an integration key",
    description="The raw key appears only in this response.",
)
async def create_api_key(
    request: CreateApiKeyRequest,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> ApiKeyCreatedResponse:
    raw_key, key_prefix, key_hash = generate_api_key()

    api_key = ApiKey(
        key_prefix=key_prefix,
        key_hash=key_hash,
        created_by_id=admin.user_id,
        **request.model_dump(),
    )
    session.add(api_key)
    await session.flush()

    logger.info(
        "Integration key %s issued by user %d (id=%d, scopes=%s)",
        key_prefix, admin.user_id, api_key.id, api_key.scopes,
    )
    fields = set(ApiKeyCreatedResponse.model_fields) - {"raw_key"}
    return ApiKeyCreatedResponse(
        raw_key=raw_key,
        **{field: getattr(api_key, field) for field in fields},
    )


@router.get(
    "/admin/keys",
    response_model=ApiKeyListResponse,
    summary="List integration keys",
)
async def list_api_keys(
    include_inactive: bool = Query(default=True),
    session: AsyncSession = Depends(get_async_session),
) -> ApiKeyListResponse:
    stmt = select(ApiKey).order_by(ApiKey.created_at.desc())
    if not include_inactive:
        stmt = stmt.where(ApiKey.is_active.is_(True))

    keys = (await session.execute(stmt)).scalars().all()
    return ApiKeyListResponse(
        keys=[ApiKeyResponse.model_validate(k) for k in keys],
        total=len(keys),
    )


@router.get(
    "/admin/keys/{key_id}",
    response_model=ApiKeyResponse,
    summary="Get an integration key",
)
async def get_api_key(
    key_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> ApiKeyResponse:
    return ApiKeyResponse.model_validate(await _load_key(session, key_id))


@router.patch(
    "/admin/keys/{key_id}",
    response_model=ApiKeyResponse,
    summary="Update an integration key",
)
async def update_api_key(
    key_id: int,
    request: UpdateApiKeyRequest,
    session: AsyncSession = Depends(get_async_session),
) -> ApiKeyResponse:
    """Apply the fields present in the body; null values are ignored."""
    api_key = await _load_key(session, key_id)

    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(api_key, field, value)
    await session.flush()

    logger.info("Integration key %s updated: %s", api_key.key_prefix, sorted(changes))
    return ApiKeyResponse.model_validate(api_key)


@router.delete(
    "/admin/keys/{key_id}",
    status_code=204,
    summary="Delete an integration key",
)
async def delete_api_key(
    key_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> None:
    api_key = await _load_key(session, key_id)
    await session.delete(api_key)
    logger.info("Integration key %s deleted (id=%d)", api_key.key_prefix, key_id)


# ---------------------------------------------------------------------------
# Request Audit Trail
# ---------------------------------------------------------------------------


@router.get(
    "/admin/audit-logs",
    response_model=AuditLogListResponse,
    summary="Query the request audit trail",
)
async def get_audit_logs(
    tenant_id: int | None = Query(default=None),
    user_id: int | None = Query(default=None),
    api_key_id: int | None = Query(default=None),
    path_prefix: str | None = Query(default=None, max_length=200),
    min_status: int | None = Query(default=None, ge=100, le=599),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_async_session),
) -> AuditLogListResponse:
    """
    Newest first. `min_status=400` narrows the trail to failed requests;
    `total` counts every matching row, not just the returned page.
    """
    conditions = [
        column == value
        for column, value in (
            (AuditLog.tenant_id, tenant_id),
            (AuditLog.user_id, user_id),
            (AuditLog.api_key_id, api_key_id),
        )
        if value is not None
    ]
    if path_prefix:
        conditions.append(AuditLog.path.startswith(path_prefix, autoescape=True))
    if min_status is not None:
        conditions.append(AuditLog.status_code >= min_status)

    page = (
        await session.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset(offset)
            .limit(limit)
        )
    ).scalars().all()
    total = await session.scalar(select(func.count(AuditLog.id)).where(*conditions))

    return AuditLogListResponse(
        logs=[AuditLogResponse.model_validate(row) for row in page],
        total=total or 0,
    )
