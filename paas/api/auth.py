# =============================================================================
# Tenant Auth API — Login, Token Refresh, Profile & Registration
# =============================================================================
#
# ENDPOINTS (prefix /internal/api/v1, tenant header required):
#   POST /auth/login            — email + password ──▶ JWT with entitlements
#   POST /auth/refresh          — new token with current entitlements
#   GET  /auth/me               — identity carried by the token
#   PUT  /auth/change-password  — change own password
#   POST /auth/register         — tenant admin creates a user in the tenant
#
# Login and refresh count against the "auth" rate-limit bucket.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import (
    get_tenant_context,
    get_token_claims,
    rate_limit,
    require_role,
)
from paas.config import settings
from paas.db.engine import get_async_session
from paas.models.requests import ChangePasswordRequest, CreateUserRequest, LoginRequest
from paas.models.responses import LoginResponse, MeResponse, MessageResponse, UserResponse
from paas.services import accounts
from paas.services.accounts import AuthResult
from paas.services.auth import TokenClaims
from paas.services.tenancy import TenantContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


def login_response(result: AuthResult) -> LoginResponse:
    """Shared by tenant and platform login."""
    return LoginResponse(
        token=result.token,
        expires_in=settings.jwt_expires_minutes * 60,
        user=UserResponse.model_validate(result.user),
        tenant_id=result.claims.tenant_id,
        allowed_apps=result.claims.allowed_apps,
        locale=result.claims.locale,
    )


@router.post(
    "/auth/login",
    response_model=LoginResponse,
    summary="Log in to a tenant",
    description=(
        "Authenticate with email and password. The returned token carries "
        "the tenant, the user's role and the applications they may use."
    ),
    dependencies=[Depends(rate_limit("auth"))],
)
async def login(
    request: LoginRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_async_session),
) -> LoginResponse:
    result = await accounts.login(session, tenant, request.email, request.password)
    return login_response(result)


@router.post(
    "/auth/refresh",
    response_model=LoginResponse,
    summary="Refresh the access token",
    dependencies=[Depends(get_token_claims), Depends(rate_limit("auth"))],
)
async def refresh(
    claims: TokenClaims = Depends(get_token_claims),
    session: AsyncSession = Depends(get_async_session),
) -> LoginResponse:
    """Re-issue the token with current entitlements and tenant timezone."""
    result = await accounts.refresh(session, claims)
    return login_response(result)


@router.get("/auth/me", response_model=MeResponse, summary="Current user")
async def me(claims: TokenClaims = Depends(get_token_claims)) -> MeResponse:
    return MeResponse.model_validate(claims)


@router.put(
    "/auth/change-password",
    response_model=MessageResponse,
    summary="Change own password",
)
async def change_password(
    request: ChangePasswordRequest,
    claims: TokenClaims = Depends(get_token_claims),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    await accounts.change_password(
        session, claims.user_id, request.current_password, request.new_password,
    )
    return MessageResponse(message="Password changed successfully")


@router.post(
    "/auth/register",
    response_model=UserResponse,
    status_code=201,
    summary="Register a user in the current tenant (tenant admins only)",
)
async def register(
    request: CreateUserRequest,
    claims: TokenClaims = Depends(require_role("admin")),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_async_session),
) -> UserResponse:
    user = await accounts.register(
        session,
        tenant_id=tenant.id,
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        role=request.role,
        user_type_id=request.user_type_id,
    )
    logger.info("User %d registered user %d in tenant %d", claims.user_id, user.id, tenant.id)
    return UserResponse.model_validate(user)
