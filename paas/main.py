# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
# Route layout:
#   /health                      — liveness (no auth, not audited)
#   /internal/api/v1/...         — platform administration and tenant APIs
#   /api/tq/v1/...               — TQ clinical-documentation application
#
# Middleware (outermost first): CORS, then audit logging. Error bodies for
# PlatformError subclasses are rendered by the handlers in paas.errors.
#
# Run with:
#   uvicorn paas.main:app --reload
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paas.api import (
    admin,
    applications,
    auth,
    entitlements,
    health,
    licenses,
    platform_auth,
    provisioning,
    tenant_users,
    tenants,
    tq,
)
from paas.api.audit import AuditLoggingMiddleware
from paas.config import settings
from paas.db.engine import async_engine
from paas.errors import setup_exception_handlers

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

INTERNAL_PREFIX = "/internal/api/v1"
TQ_PREFIX = "/api/tq/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    yield
    await async_engine.dispose()
    logger.info("Shut down %s", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description=(
        "Multi-tenant platform API: tenants, users, application licenses and "
        "seats, plus the TQ clinical-documentation application."
    ),
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(AuditLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

app.include_router(health.router)

# Platform administration and tenant APIs
for module in (
    platform_auth,
    tenants,
    tenant_users,
    applications,
    licenses,
    admin,
    provisioning,
    auth,
    entitlements,
):
    app.include_router(module.router, prefix=INTERNAL_PREFIX)

app.include_router(tq.router, prefix=TQ_PREFIX)
