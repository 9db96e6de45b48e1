# =============================================================================
# Celery Task Definitions — Periodic Maintenance
# =============================================================================
#
# IMPORTANT: Celery workers are SYNCHRONOUS.
# - Do NOT use `async/await` in Celery tasks
# - Do NOT use the async SQLAlchemy engine (use sync engine instead)
# - Do NOT call FastAPI dependencies directly
#
# The UPDATE statements are shared with the async services
# (expire_licenses_stmt, expire_quotes_stmt) so both paths apply the
# same rule.
#
# TENANT TABLES: quotes live in one schema per tenant. The task lists the
# active tenants from the platform schema and opens one sync session per
# tenant with schema_translate_map pointing at `tenant_<id>`. A failing
# tenant is logged and skipped; the others are still processed.
# =============================================================================

import logging
from datetime import UTC, datetime

from sqlalchemy import select

from paas.db.engine import get_sync_session
from paas.db.models import Tenant
from paas.services.licensing import expire_licenses_stmt
from paas.services.quotes import expire_quotes_stmt
from paas.services.tenancy import schema_name_for
from paas.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="expire_licenses")
def expire_licenses() -> dict:
    """Mark active licenses whose expires_at has passed as expired."""
    now = datetime.now(UTC)
    with get_sync_session() as session:
        result = session.execute(expire_licenses_stmt(now))
        count = result.rowcount or 0

    logger.info("License expiry run at %s: %d license(s) expired", now.isoformat(), count)
    return {"expired": count, "ran_at": now.isoformat()}


@celery_app.task(name="expire_quotes")
def expire_quotes() -> dict:
    """
    Expire draft/sent quotes past their expires_at, tenant by tenant.

    Returns:
        dict with total expired quotes, tenants processed and the ids of
        tenants that failed.
    """
    now = datetime.now(UTC)
    with get_sync_session() as session:
        tenant_ids = list(
            session.execute(
                select(Tenant.id)
                .where(Tenant.active.is_(True), Tenant.status == "active")
                .order_by(Tenant.id)
            ).scalars().all()
        )

    total = 0
    failed: list[int] = []
    for tenant_id in tenant_ids:
        try:
            with get_sync_session(schema_name_for(tenant_id)) as session:
                count = session.execute(expire_quotes_stmt(now)).rowcount or 0
        except Exception:
            logger.exception("Quote expiry failed for tenant %d", tenant_id)
            failed.append(tenant_id)
            continue
        if count:
            logger.info("Tenant %d: %d quote(s) expired", tenant_id, count)
        total += count

    logger.info(
        "Quote expiry run at %s: %d quote(s) expired across %d tenant(s), %d failed",
        now.isoformat(), total, len(tenant_ids), len(failed),
    )
    return {
        "expired": total,
        "tenants": len(tenant_ids),
        "failed_tenants": failed,
        "ran_at": now.isoformat(),
    }
