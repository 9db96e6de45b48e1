# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - platform_auth.py, tenants.py, tenant_users.py, applications.py,
#     licenses.py, admin.py: platform administration (platform admin token)
#   - provisioning.py: self-service signup (integration API key)
#   - auth.py, entitlements.py: tenant users (tenant header + token)
#   - tq/: the TQ clinical-documentation application
#   - deps.py: shared dependencies (auth, tenant context, seats, rate limits)
#   - audit.py: request audit middleware
# =============================================================================
