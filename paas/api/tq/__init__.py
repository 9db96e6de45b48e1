"""
TQ application routes, mounted under /api/tq/v1.

Every route needs the tenant header, a tenant user token and an active `tq`
seat; the access check runs once for the whole router.
"""

from fastapi import APIRouter, Depends

from paas.api.deps import require_app_access
from paas.api.tq import ai_agent, clinical_notes, items, patients, quotes, sessions, templates

router = APIRouter(dependencies=[Depends(require_app_access("tq"))])

router.include_router(patients.router)
router.include_router(sessions.router)
router.include_router(templates.router)
router.include_router(items.router)
router.include_router(quotes.router)
router.include_router(clinical_notes.router)
router.include_router(ai_agent.router)
