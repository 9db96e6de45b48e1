"""
Self-service signup for trusted integrations.

    POST /internal/api/v1/provisioning/signup   (x-api-key, scope "provisioning")

Creates tenant, schema, admin user, TQ license and the admin's seat in one
transaction. The admin's temporary password is only returned here.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.licenses import license_response
from paas.db.engine import get_async_session
from paas.api.deps import get_api_key_with_scope
from paas.db.models import ApiKey
from paas.models.requests import SignupRequest
from paas.models.responses import SignupResponse, TenantResponse, UserResponse
from paas.services import provisioning

router = APIRouter(tags=["Provisioning"])


@router.post(
    "/provisioning/signup",
    response_model=SignupResponse,
    status_code=201,
    summary="Open a new customer account",
)
async def signup(
    request: SignupRequest,
    api_key: ApiKey = Depends(get_api_key_with_scope("provisioning")),
    session: AsyncSession = Depends(get_async_session),
) -> SignupResponse:
    result = await provisioning.signup(
        session,
        tenant_name=request.tenant_name,
        admin_email=request.admin_email,
        admin_first_name=request.admin_first_name,
        admin_last_name=request.admin_last_name,
        subdomain=request.subdomain,
        timezone=request.timezone,
        seats=request.seats,
    )
    return SignupResponse(
        tenant=TenantResponse.model_validate(result.tenant),
        admin_user=UserResponse.model_validate(result.admin_user),
        temporary_password=result.temporary_password,
        license=license_response(result.license),
        seats_remaining=result.seats_remaining,
    )
