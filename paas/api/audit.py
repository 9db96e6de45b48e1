# =============================================================================
# Audit Logging Middleware — Request/Response Lifecycle Logging
# =============================================================================
#
# Records every API request to the audit_logs table: who (user or API
# key), in which tenant, what (method + path), outcome and latency.
#
# DESIGN DECISION: Starlette middleware (not a FastAPI dependency) because:
# 1. Middleware wraps the ENTIRE request lifecycle (captures status code)
# 2. Captures timing across the full request
# 3. Does not require every endpoint to explicitly opt-in
# 4. Audit writes use their own DB session, so a rolled-back request is
#    still audited
#
# Identity comes from request.state, set by the auth dependencies in
# api/deps.py (`claims`, `api_key`, `tenant`). Failures are logged but never
# crash the actual request.
# =============================================================================

from __future__ import annotations

import logging
import time

from starlette.middleware.base import (
    BaseHTTPMiddleware,
    RequestResponseEndpoint,
)
from starlette.requests import Request
from starlette.responses import Response

from paas.config import settings
from paas.db.engine import async_session_factory
from paas.db.models import AuditLog

logger = logging.getLogger(__name__)

# Endpoints to skip audit logging (health check, docs)
_SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


def audit_entry_for(request: Request, status_code: int, elapsed_ms: int) -> AuditLog:
    """Build the audit row for a finished request from its state."""
    claims = getattr(request.state, "claims", None)
    api_key = getattr(request.state, "api_key", None)
    tenant = getattr(request.state, "tenant", None)

    tenant_id = None
    if tenant is not None:
        tenant_id = tenant.id
    elif claims is not None:
        tenant_id = claims.tenant_id

    return AuditLog(
        user_id=claims.user_id if claims else None,
        api_key_id=api_key.id if api_key else None,
        tenant_id=tenant_id,
        method=request.method,
        path=str(request.url.path)[:500],
        client_ip=request.client.host if request.client else None,
        status_code=status_code,
        response_time_ms=elapsed_ms,
    )


class AuditLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that logs all API requests to the audit_logs table."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if not settings.audit_logging_enabled:
            return await call_next(request)

        if request.url.path in _SKIP_PATHS:
            return await call_next(request)

        start_time = time.monotonic()
        response = await call_next(request)
        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        # Persist audit log (own session, non-blocking)
        try:
            async with async_session_factory() as session:
                session.add(audit_entry_for(request, response.status_code, elapsed_ms))
                await session.commit()
        except Exception as e:
            logger.warning("Failed to write audit log: %s", e)

        return response
