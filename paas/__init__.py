# =============================================================================
# Simplia PaaS — Multi-Tenant Platform Backend
# =============================================================================
# Tenant, user, license and seat administration for a multi-tenant SaaS
# platform, plus the TQ clinical-documentation application built on it.
#
# Package structure:
#   paas/
#   ├── api/          → FastAPI routers (platform admin, tenant, TQ)
#   ├── db/           → Database engines, sessions, ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Business logic (auth, tenancy, licensing, AI
#   │                    template filling, rate limiting)
#   └── workers/      → Celery app and periodic maintenance tasks
# =============================================================================
