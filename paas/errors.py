# =============================================================================
# Domain Errors & Exception Handlers
# =============================================================================
#
# Services raise PlatformError subclasses; they never import FastAPI.
# The handlers registered by `setup_exception_handlers()` translate them into
# JSON responses of the form:
#
#   {
#     "error": "Conflict",
#     "message": "User already has access to 'tq'",
#     "code": "ALREADY_GRANTED",
#     "details": {"user_id": 7, "application_slug": "tq"}
#   }
#
# `code` is a stable machine-readable reason that clients can branch on.
# Anything else that escapes a route handler is logged with an error id and
# reported as a generic 500.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PlatformError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code: int = 500
    title: str = "Internal Server Error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code()
        self.details = details or {}

    @classmethod
    def default_code(cls) -> str:
        return cls.title.upper().replace(" ", "_")

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "error": self.title,
            "message": self.message,
            "code": self.code,
        }
        if self.details:
            body["details"] = self.details
        return body


class BadRequestError(PlatformError):
    status_code = 400
    title = "Bad Request"


class AuthenticationError(PlatformError):
    status_code = 401
    title = "Unauthorized"


class PermissionDeniedError(PlatformError):
    status_code = 403
    title = "Forbidden"


class NotFoundError(PlatformError):
    status_code = 404
    title = "Not Found"


class ConflictError(PlatformError):
    status_code = 409
    title = "Conflict"


class BusinessRuleError(PlatformError):
    """A well-formed request that violates a domain rule (HTTP 422)."""

    status_code = 422
    title = "Validation Error"


class UpstreamServiceError(PlatformError):
    """An external dependency (LLM provider) failed or answered badly."""

    status_code = 502
    title = "Bad Gateway"


class ServiceConfigurationError(PlatformError):
    """The service is missing configuration needed for this request."""

    status_code = 503
    title = "Service Unavailable"


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------


async def platform_error_handler(
    request: Request, exc: PlatformError,
) -> JSONResponse:
    """Render a PlatformError as its JSON error body."""
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: [%s] %s",
            request.method, request.url.path, exc.code, exc.message,
        )
    else:
        logger.info(
            "%s %s rejected: [%s] %s",
            request.method, request.url.path, exc.code, exc.message,
        )

    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )


async def unhandled_exception_handler(
    request: Request, exc: Exception,
) -> JSONResponse:
    """Log an unexpected exception with an error id and return a 500."""
    error_id = uuid.uuid4().hex[:12]
    logger.error(
        "Unhandled exception [%s] in %s %s: %s",
        error_id, request.method, request.url.path, exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred.",
            "code": "INTERNAL_ERROR",
            "error_id": error_id,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the platform exception handlers on the application."""
    app.add_exception_handler(PlatformError, platform_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
