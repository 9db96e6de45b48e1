# =============================================================================
# Database Package
# =============================================================================
# Provides async SQLAlchemy engines, session management, and ORM models.
#
# Key exports:
#   - get_async_session: FastAPI dependency for platform-schema sessions
#   - open_tenant_session: session bound to one tenant's schema
#   - Base: platform tables (public schema)
#   - TenantBase: TQ tables, created once per tenant schema
# =============================================================================
