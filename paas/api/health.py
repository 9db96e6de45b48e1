"""Liveness endpoint (no auth, not audited)."""

from fastapi import APIRouter

from paas.config import settings
from paas.models.responses import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=settings.app_version,
        service=settings.app_name,
    )
