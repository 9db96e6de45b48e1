# =============================================================================
# Platform Auth API — Internal Admin Login
# =============================================================================
#
# Platform staff (users with platform_role = "internal_admin") log in here
# to obtain a `platform_admin` token for the /internal/api/v1 admin routes.
# No tenant header is involved. Every attempt, successful or not, is
# written to the access log.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.auth import login_response
from paas.api.deps import get_platform_admin, rate_limit, request_info
from paas.db.engine import get_async_session
from paas.models.requests import LoginRequest
from paas.models.responses import LoginResponse, MeResponse
from paas.services import accounts
from paas.services.auth import TokenClaims

router = APIRouter(tags=["Platform Auth"])


@router.post(
    "/platform-auth/login",
    response_model=LoginResponse,
    summary="Log in as a platform admin",
    dependencies=[Depends(rate_limit("auth"))],
)
async def platform_login(
    body: LoginRequest,
    request: Request,
    session: AsyncSession = Depends(get_async_session),
) -> LoginResponse:
    result = await accounts.platform_login(
        session, body.email, body.password, request_info=request_info(request),
    )
    return login_response(result)


@router.get("/platform-auth/me", response_model=MeResponse, summary="Current platform admin")
async def platform_me(claims: TokenClaims = Depends(get_platform_admin)) -> MeResponse:
    return MeResponse.model_validate(claims)
