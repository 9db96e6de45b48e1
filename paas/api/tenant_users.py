# =============================================================================
# Tenant Users API — User Administration Within a Tenant (platform admins)
# =============================================================================
#
# ENDPOINTS (prefix /internal/api/v1):
#   GET    /tenants/{id}/users                          — search / paginate
#   POST   /tenants/{id}/users                          — create user
#   GET    /tenants/{id}/users/{user_id}
#   PUT    /tenants/{id}/users/{user_id}                — name, role, status
#   DELETE /tenants/{id}/users/{user_id}                — deactivate (frees seats)
#   POST   /tenants/{id}/users/{user_id}/reset-password
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_platform_admin, request_info
from paas.db.engine import get_async_session
from paas.models.requests import CreateUserRequest, ResetPasswordRequest, UpdateUserRequest
from paas.models.responses import MessageResponse, UserListResponse, UserResponse, paginate
from paas.services import accounts, tenants
from paas.services.auth import TokenClaims

router = APIRouter(tags=["Tenant Users"])


@router.get("/tenants/{tenant_id}/users", response_model=UserListResponse)
async def list_users(
    tenant_id: int,
    q: str | None = Query(default=None, description="Matches email or name"),
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> UserListResponse:
    await tenants.get_tenant(session, tenant_id)
    users, total = await accounts.list_users(session, tenant_id, q, status, limit, offset)
    return UserListResponse(
        items=[UserResponse.model_validate(u) for u in users],
        pagination=paginate(total, limit, offset, len(users)),
    )


@router.post("/tenants/{tenant_id}/users", response_model=UserResponse, status_code=201)
async def create_user(
    tenant_id: int,
    body: CreateUserRequest,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> UserResponse:
    await tenants.get_tenant(session, tenant_id)
    user = await accounts.register(
        session,
        tenant_id=tenant_id,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
        user_type_id=body.user_type_id,
    )
    return UserResponse.model_validate(user)


@router.get("/tenants/{tenant_id}/users/{user_id}", response_model=UserResponse)
async def get_user(
    tenant_id: int,
    user_id: int,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> UserResponse:
    return UserResponse.model_validate(await accounts.get_user(session, tenant_id, user_id))


@router.put("/tenants/{tenant_id}/users/{user_id}", response_model=UserResponse)
async def update_user(
    tenant_id: int,
    user_id: int,
    body: UpdateUserRequest,
    request: Request,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> UserResponse:
    user = await accounts.update_user(
        session, tenant_id, user_id, body.model_dump(exclude_unset=True),
        updated_by=admin.user_id,
        request_info=request_info(request),
    )
    return UserResponse.model_validate(user)


@router.delete(
    "/tenants/{tenant_id}/users/{user_id}",
    response_model=UserResponse,
    summary="Deactivate a user",
    description="Soft delete. Every application seat held by the user is revoked.",
)
async def deactivate_user(
    tenant_id: int,
    user_id: int,
    request: Request,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> UserResponse:
    user = await accounts.deactivate_user(
        session, tenant_id, user_id,
        deactivated_by=admin.user_id,
        request_info=request_info(request),
    )
    return UserResponse.model_validate(user)


@router.post(
    "/tenants/{tenant_id}/users/{user_id}/reset-password",
    response_model=MessageResponse,
)
async def reset_password(
    tenant_id: int,
    user_id: int,
    body: ResetPasswordRequest,
    admin: TokenClaims = Depends(get_platform_admin),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    await accounts.reset_password(session, tenant_id, user_id, body.new_password)
    return MessageResponse(message="Password reset successfully")
