# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
# Runs scheduled maintenance outside the API process:
#   - celery_app.py: Celery application and beat schedule
#   - tasks.py: license expiry and per-tenant quote expiry
# =============================================================================
