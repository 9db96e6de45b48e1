# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Defines request/response schemas for the API.
# These are SEPARATE from the database models (paas/db/models.py).
#
# DESIGN DECISION: API schemas never expose password hashes, API key
# hashes or internal schema names; those stay on the ORM side.
# =============================================================================
