# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery runs the platform's periodic maintenance jobs:
#   expire_licenses — daily, licenses past expires_at become "expired"
#   expire_quotes   — hourly, per tenant schema, lapsed quotes become "expired"
#
# ARCHITECTURE:
# ┌────────────┐     ┌───────┐     ┌──────────────┐     ┌────────────┐
# │ Celery Beat│────▶│ Redis │────▶│ Celery Worker│────▶│ PostgreSQL │
# │ (schedule) │     │(broker)│    │ (sync engine)│     │            │
# └────────────┘     └───────┘     └──────────────┘     └────────────┘
#
# Run with:
#   celery -A paas.workers.celery_app worker --loglevel=info
#   celery -A paas.workers.celery_app beat --loglevel=info
# =============================================================================

from celery import Celery
from celery.schedules import crontab

from paas.config import settings

celery_app = Celery(
    "paas.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only: pickle can execute arbitrary code during deserialization.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Acknowledge after completion so a crashed worker's job is re-queued.
    # Both jobs are idempotent UPDATEs, so running one twice is harmless.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    task_soft_time_limit=300,
    task_time_limit=600,

    # --- Results ---
    result_expires=3600,

    timezone="UTC",
    enable_utc=True,

    include=["paas.workers.tasks"],
)

# ---------------------------------------------------------------------------
# Beat Schedule
# ---------------------------------------------------------------------------
celery_app.conf.beat_schedule = {
    "expire-licenses-daily": {
        "task": "expire_licenses",
        "schedule": crontab(hour=settings.license_expiry_cron_hour, minute=0),
    },
    "expire-quotes-hourly": {
        "task": "expire_quotes",
        "schedule": crontab(minute=settings.quote_expiry_minute),
    },
}
