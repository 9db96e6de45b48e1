# =============================================================================
# Applications API — Catalog & Seat Pricing (platform admins)
# =============================================================================
#
# ENDPOINTS (prefix /internal/api/v1):
#   GET    /applications                         — catalog
#   POST   /applications
#   GET    /applications/{slug}
#   PUT    /applications/{slug}
#   DELETE /applications/{slug}                  — deactivate
#   GET    /applications/{slug}/pricing          — price history
#   POST   /applications/{slug}/pricing          — new price for a user type
#   POST   /applications/{slug}/pricing/{id}/end — close a price
#   GET    /user-types                           — pricing tiers
#
# DESIGN DECISION: Prices are versioned, never edited. A new price for a
# user type ends the current one (valid_to = new valid_from), so seats
# granted earlier keep the price they were snapshotted with and the
# history stays auditable.
# =============================================================================

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_platform_admin
from paas.db.engine import get_async_session
from paas.db.models import Application, ApplicationPricing, UserType
from paas.errors import ConflictError, NotFoundError
from paas.models.requests import (
    CreateApplicationRequest,
    CreatePricingRequest,
    UpdateApplicationRequest,
)
from paas.models.responses import ApplicationResponse, PricingResponse
from paas.services.licensing import get_application_by_slug

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Applications"], dependencies=[Depends(get_platform_admin)])


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.get("/applications", response_model=list[ApplicationResponse])
async def list_applications(
    session: AsyncSession = Depends(get_async_session),
) -> list[ApplicationResponse]:
    result = await session.execute(select(Application).order_by(Application.name))
    return [ApplicationResponse.model_validate(a) for a in result.scalars().all()]


@router.post("/applications", response_model=ApplicationResponse, status_code=201)
async def create_application(
    request: CreateApplicationRequest,
    session: AsyncSession = Depends(get_async_session),
) -> ApplicationResponse:
    slug = request.slug.strip().lower()
    existing = await session.execute(select(Application.id).where(Application.slug == slug))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(
            f"Application '{slug}' already exists", code="APPLICATION_EXISTS",
        )

    application = Application(
        name=request.name,
        slug=slug,
        description=request.description,
        price_per_user=request.price_per_user,
        status=request.status,
        version=request.version,
        active=request.status == "active",
    )
    session.add(application)
    await session.flush()
    logger.info("Application created: id=%d, slug='%s'", application.id, slug)
    return ApplicationResponse.model_validate(application)


@router.get("/applications/{slug}", response_model=ApplicationResponse)
async def get_application(
    slug: str,
    session: AsyncSession = Depends(get_async_session),
) -> ApplicationResponse:
    return ApplicationResponse.model_validate(await get_application_by_slug(session, slug))


@router.put("/applications/{slug}", response_model=ApplicationResponse)
async def update_application(
    slug: str,
    request: UpdateApplicationRequest,
    session: AsyncSession = Depends(get_async_session),
) -> ApplicationResponse:
    application = await get_application_by_slug(session, slug)

    if request.name is not None:
        application.name = request.name
    if request.description is not None:
        application.description = request.description
    if request.price_per_user is not None:
        application.price_per_user = request.price_per_user
    if request.version is not None:
        application.version = request.version
    if request.status is not None:
        application.status = request.status
        application.active = request.status == "active"

    await session.flush()
    return ApplicationResponse.model_validate(application)


@router.delete("/applications/{slug}", response_model=ApplicationResponse)
async def deactivate_application(
    slug: str,
    session: AsyncSession = Depends(get_async_session),
) -> ApplicationResponse:
    """Existing licenses are untouched; the application can no longer be licensed."""
    application = await get_application_by_slug(session, slug)
    application.status = "inactive"
    application.active = False
    await session.flush()
    logger.info("Application deactivated: slug='%s'", slug)
    return ApplicationResponse.model_validate(application)


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


@router.get("/applications/{slug}/pricing", response_model=list[PricingResponse])
async def list_pricing(
    slug: str,
    session: AsyncSession = Depends(get_async_session),
) -> list[PricingResponse]:
    application = await get_application_by_slug(session, slug)
    result = await session.execute(
        select(ApplicationPricing)
        .where(ApplicationPricing.application_id == application.id)
        .order_by(ApplicationPricing.user_type_id, ApplicationPricing.valid_from.desc())
    )
    return [PricingResponse.model_validate(p) for p in result.scalars().all()]


@router.post(
    "/applications/{slug}/pricing",
    response_model=PricingResponse,
    status_code=201,
    summary="Set a new seat price for a user type",
)
async def create_pricing(
    slug: str,
    request: CreatePricingRequest,
    session: AsyncSession = Depends(get_async_session),
) -> PricingResponse:
    application = await get_application_by_slug(session, slug)
    if await session.get(UserType, request.user_type_id) is None:
        raise NotFoundError(
            f"User type {request.user_type_id} not found", code="USER_TYPE_NOT_FOUND",
        )

    valid_from = request.valid_from or datetime.now(UTC)

    # End the current price of this user type
    await session.execute(
        update(ApplicationPricing)
        .where(
            ApplicationPricing.application_id == application.id,
            ApplicationPricing.user_type_id == request.user_type_id,
            ApplicationPricing.active.is_(True),
            ApplicationPricing.valid_to.is_(None),
        )
        .values(valid_to=valid_from, active=False)
    )

    pricing = ApplicationPricing(
        application_id=application.id,
        user_type_id=request.user_type_id,
        price=request.price,
        currency=request.currency.upper(),
        billing_cycle=request.billing_cycle,
        valid_from=valid_from,
        active=True,
    )
    session.add(pricing)
    await session.flush()
    logger.info(
        "Pricing set for %s / user type %d: %s %s (%s)",
        slug, request.user_type_id, pricing.price, pricing.currency, pricing.billing_cycle,
    )
    return PricingResponse.model_validate(pricing)


@router.post(
    "/applications/{slug}/pricing/{pricing_id}/end",
    response_model=PricingResponse,
    summary="End a price",
)
async def end_pricing(
    slug: str,
    pricing_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> PricingResponse:
    application = await get_application_by_slug(session, slug)
    pricing = await session.get(ApplicationPricing, pricing_id)
    if pricing is None or pricing.application_id != application.id:
        raise NotFoundError(f"Pricing {pricing_id} not found", code="PRICING_NOT_FOUND")

    pricing.valid_to = datetime.now(UTC)
    pricing.active = False
    await session.flush()
    return PricingResponse.model_validate(pricing)


@router.get("/user-types", summary="List user types (pricing tiers)")
async def list_user_types(
    session: AsyncSession = Depends(get_async_session),
) -> list[dict]:
    result = await session.execute(select(UserType).order_by(UserType.hierarchy_level))
    return [
        {
            "id": t.id,
            "name": t.name,
            "slug": t.slug,
            "base_price": t.base_price,
            "hierarchy_level": t.hierarchy_level,
        }
        for t in result.scalars().all()
    ]
