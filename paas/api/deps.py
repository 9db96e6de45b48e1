# =============================================================================
# Request Dependencies — Authentication, Tenant Context & App Access
# =============================================================================
#
# FastAPI dependencies that protect the API. A TQ request is resolved as:
#
#   get_token_claims      Bearer JWT ──▶ TokenClaims (401 if invalid)
#   get_tenant_context    x-tenant-id / Host ──▶ TenantContext
#   get_tenant_user       token tenant must equal resolved tenant (403)
#   get_tenant_session    session mapped to schema tenant_<id>
#   require_app_access    license + seat + role check, access-logged
#
# Platform routes use get_platform_admin instead of the tenant chain;
# integrations use get_api_key_with_scope (x-api-key header).
#
# DESIGN DECISION: FastAPI dependencies (not middleware) for auth.
# Each endpoint opts in, the resolved objects are available in handlers,
# and tests replace them with dependency_overrides.
#
# Everything resolved here is also stored on request.state (`claims`,
# `tenant`, `api_key`) for the audit middleware.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.config import settings
from paas.db.engine import get_async_session, open_tenant_session
from paas.db.models import ApiKey
from paas.errors import BadRequestError, PermissionDeniedError
from paas.services.auth import TokenClaims, decode_access_token, has_role, hash_api_key
from paas.services.licensing import AccessRequestInfo, AppAccessGrant, check_app_access
from paas.services.llm import get_llm_provider
from paas.services.rate_limiter import bucket_for, check_rate_limit
from paas.services.tenancy import TenantContext, resolve_tenant, subdomain_from_host

logger = logging.getLogger(__name__)

# Security schemes for OpenAPI docs (shows "Authorize" button in Swagger UI)
_bearer_scheme = HTTPBearer(auto_error=False)
_api_key_scheme = APIKeyHeader(name="x-api-key", auto_error=False)


def request_info(request: Request) -> AccessRequestInfo:
    """Request metadata recorded in the access log."""
    return AccessRequestInfo(
        api_path=str(request.url.path)[:500],
        user_agent=(request.headers.get("user-agent") or "")[:500] or None,
        ip_address=request.client.host if request.client else None,
    )


def _rate_limit_identity(request: Request) -> str:
    api_key = getattr(request.state, "api_key", None)
    if api_key is not None:
        return f"key:{api_key.id}"
    claims = getattr(request.state, "claims", None)
    if claims is not None:
        return f"user:{claims.user_id}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


# ---------------------------------------------------------------------------
# Bearer Token
# ---------------------------------------------------------------------------


async def get_token_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> TokenClaims:
    """
    Validate the Bearer JWT and count the request against the user's
    default rate-limit bucket.

    Raises:
        HTTPException 401: Missing, invalid or expired token
        HTTPException 429: Rate limit exceeded
    """
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing access token. Provide "
            "'Authorization: Bearer <token>' header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=401,
            detail="Access token has expired.",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.info("Rejected access token: %s", e)
        raise HTTPException(
            status_code=401,
            detail="Invalid access token.",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    # Store on request.state for audit logging middleware
    request.state.claims = claims

    await check_rate_limit(_rate_limit_identity(request), bucket_for("default"))
    return claims


async def get_platform_admin(
    claims: TokenClaims = Depends(get_token_claims),
) -> TokenClaims:
    """Require a platform admin token (issued by /platform-auth/login)."""
    if not claims.is_platform_admin:
        raise HTTPException(
            status_code=403,
            detail="Platform admin token required.",
        )
    return claims


def require_role(role: str):
    """
    Dependency factory: the tenant user's role must be at least `role`
    (operations < manager < admin).
    """

    async def dependency(claims: TokenClaims = Depends(get_tenant_user)) -> TokenClaims:
        if not has_role(claims.role, role):
            raise PermissionDeniedError(
                f"Role '{role}' or higher required",
                code="INSUFFICIENT_ROLE",
                details={"required": role, "current": claims.role},
            )
        return claims

    return dependency


# ---------------------------------------------------------------------------
# Tenant Context
# ---------------------------------------------------------------------------


async def get_tenant_context(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
) -> TenantContext:
    """
    Resolve the request's tenant from the tenant header, falling back to
    the Host subdomain when enabled.

    Raises:
        BadRequestError: TENANT_HEADER_REQUIRED, INVALID_TENANT_ID
        NotFoundError: TENANT_NOT_FOUND
    """
    raw = request.headers.get(settings.tenant_header_name)
    source = "header"
    if not raw and settings.tenant_subdomain_resolution:
        raw = subdomain_from_host(request.headers.get("host"))
        source = "subdomain"

    if not raw:
        raise BadRequestError(
            f"Tenant identifier required in '{settings.tenant_header_name}' header",
            code="TENANT_HEADER_REQUIRED",
        )

    tenant = await resolve_tenant(session, raw, source=source)
    request.state.tenant = tenant
    return tenant


async def get_tenant_user(
    claims: TokenClaims = Depends(get_token_claims),
    tenant: TenantContext = Depends(get_tenant_context),
) -> TokenClaims:
    """Tenant-user token whose tenant matches the resolved tenant."""
    if claims.tenant_id != tenant.id:
        raise PermissionDeniedError(
            "Token does not belong to this tenant",
            code="TENANT_MISMATCH",
            details={"token_tenant_id": claims.tenant_id, "tenant_id": tenant.id},
        )
    return claims


async def get_tenant_session(
    tenant: TenantContext = Depends(get_tenant_context),
) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session whose tenant tables resolve to the tenant's schema."""
    async with open_tenant_session(tenant.schema) as session:
        yield session


def require_app_access(app_slug: str, required_role: str | None = None):
    """
    Dependency factory guarding an application's routes.

    Usage:
        router = APIRouter(dependencies=[Depends(require_app_access("tq"))])
    """

    async def dependency(
        request: Request,
        claims: TokenClaims = Depends(get_tenant_user),
        tenant: TenantContext = Depends(get_tenant_context),
        session: AsyncSession = Depends(get_tenant_session),
    ) -> AppAccessGrant:
        grant = await check_app_access(
            session,
            claims,
            tenant,
            app_slug,
            required_role=required_role,
            request_info=request_info(request),
        )
        request.state.app_access = grant
        return grant

    return dependency


# ---------------------------------------------------------------------------
# Rate Limit Buckets
# ---------------------------------------------------------------------------


def rate_limit(bucket_name: str):
    """
    Dependency factory counting the request in a named bucket ("auth",
    "ai"). Declare it after the auth dependencies so the identity is the
    user or API key rather than the client IP.
    """

    async def dependency(request: Request) -> None:
        await check_rate_limit(_rate_limit_identity(request), bucket_for(bucket_name))

    return dependency


# ---------------------------------------------------------------------------
# Integration API Keys
# ---------------------------------------------------------------------------


def get_api_key_with_scope(scope: str):
    """
    Dependency factory validating the `x-api-key` header and requiring
    `scope`. Keys with null/empty scopes have full access.

    Raises:
        HTTPException 401: Missing or unknown key
        HTTPException 403: Key inactive, expired or missing the scope
        HTTPException 429: Key's rate limit exceeded
    """

    async def dependency(
        request: Request,
        raw_key: str | None = Depends(_api_key_scheme),
        session: AsyncSession = Depends(get_async_session),
    ) -> ApiKey:
        if not raw_key:
            raise HTTPException(
                status_code=401,
                detail="Missing API key. Provide 'x-api-key' header.",
            )

        result = await session.execute(
            select(ApiKey).where(ApiKey.key_hash == hash_api_key(raw_key))
        )
        api_key = result.scalar_one_or_none()

        if api_key is None:
            raise HTTPException(status_code=401, detail="Invalid API key.")

        if not api_key.is_active:
            raise HTTPException(status_code=403, detail="API key has been deactivated.")

        if api_key.expires_at and api_key.expires_at < datetime.now(UTC):
            raise HTTPException(status_code=403, detail="API key has expired.")

        if api_key.scopes and scope not in api_key.scopes:
            raise HTTPException(
                status_code=403,
                detail=f"API key does not have '{scope}' scope.",
            )

        request.state.api_key = api_key
        await check_rate_limit(
            _rate_limit_identity(request),
            bucket_for("default", api_key.rate_limit_rpm),
        )

        api_key.last_used_at = datetime.now(UTC)
        return api_key

    return dependency


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------


def get_llm_factory():
    """
    The LLM provider factory used by the AI agent routes.

    Returned uncalled: the provider (and its API-key check) is only built
    once the agent has found the records it needs.
    """
    return get_llm_provider
