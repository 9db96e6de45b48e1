# =============================================================================
# TQ Templates — HTML Documents with $variable$ Placeholders
# =============================================================================
#
#   GET    /templates?active=&q=&limit=&offset=
#   GET    /templates/most-used?limit=
#   POST   /templates/validate-variables
#   POST   /templates
#   GET    /templates/{id}
#   PUT    /templates/{id}
#   DELETE /templates/{id}
#
# DESIGN DECISION: Unsupported variables are rejected at write time. A
# template that saved with a typo ($patient.fullname$) would otherwise reach
# the LLM with the placeholder untouched and the mistake would only show up
# in a finished clinical document.
# =============================================================================

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_tenant_session
from paas.db.models import Template
from paas.errors import BusinessRuleError, NotFoundError
from paas.models.requests import TemplateRequest, UpdateTemplateRequest, ValidateTemplateRequest
from paas.models.responses import (
    TemplateListResponse,
    TemplateResponse,
    VariableValidationResponse,
    paginate,
)
from paas.services.template_variables import SUPPORTED_VARIABLES, validate_variables

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/templates", tags=["TQ Templates"])


def _check_variables(content: str) -> None:
    validation = validate_variables(content)
    if not validation.is_valid:
        raise BusinessRuleError(
            "Template uses unsupported variables",
            code="UNSUPPORTED_VARIABLES",
            details={
                "unsupported_variables": validation.unsupported_variables,
                "supported_variables": list(SUPPORTED_VARIABLES),
            },
        )


async def _get_template_or_404(session: AsyncSession, template_id: uuid.UUID) -> Template:
    template = await session.get(Template, template_id)
    if template is None:
        raise NotFoundError("Template not found", code="TEMPLATE_NOT_FOUND")
    return template


@router.get("", response_model=TemplateListResponse)
async def list_templates(
    active: bool | None = Query(default=None),
    q: str | None = Query(default=None, description="Search title and description"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_tenant_session),
) -> TemplateListResponse:
    conditions = []
    if active is not None:
        conditions.append(Template.active.is_(active))
    if q:
        pattern = f"%{q.strip()}%"
        conditions.append(or_(Template.title.ilike(pattern), Template.description.ilike(pattern)))

    total = await session.scalar(select(func.count(Template.id)).where(*conditions)) or 0
    result = await session.execute(
        select(Template).where(*conditions).order_by(Template.title).limit(limit).offset(offset)
    )
    templates = list(result.scalars().all())
    return TemplateListResponse(
        items=[TemplateResponse.model_validate(t) for t in templates],
        pagination=paginate(total, limit, offset, len(templates)),
    )


@router.get("/most-used", response_model=list[TemplateResponse])
async def most_used_templates(
    limit: int = Query(default=10, ge=1, le=50),
    session: AsyncSession = Depends(get_tenant_session),
) -> list[TemplateResponse]:
    result = await session.execute(
        select(Template)
        .where(Template.active.is_(True))
        .order_by(Template.usage_count.desc(), Template.title)
        .limit(limit)
    )
    return [TemplateResponse.model_validate(t) for t in result.scalars().all()]


@router.post("/validate-variables", response_model=VariableValidationResponse)
async def validate_template_variables(request: ValidateTemplateRequest) -> VariableValidationResponse:
    """Check content without saving it."""
    validation = validate_variables(request.content)
    return VariableValidationResponse(
        is_valid=validation.is_valid,
        used_variables=validation.used_variables,
        unsupported_variables=validation.unsupported_variables,
        supported_variables=list(SUPPORTED_VARIABLES),
    )


@router.post("", response_model=TemplateResponse, status_code=201)
async def create_template(
    request: TemplateRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> TemplateResponse:
    _check_variables(request.content)
    template = Template(**request.model_dump())
    session.add(template)
    await session.flush()
    logger.info("Template created: id=%s, title='%s'", template.id, template.title)
    return TemplateResponse.model_validate(template)


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> TemplateResponse:
    return TemplateResponse.model_validate(await _get_template_or_404(session, template_id))


@router.put("/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: uuid.UUID,
    request: UpdateTemplateRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> TemplateResponse:
    template = await _get_template_or_404(session, template_id)

    if request.content is not None:
        _check_variables(request.content)
        template.content = request.content
    if request.title is not None:
        template.title = request.title
    if request.description is not None:
        template.description = request.description
    if request.active is not None:
        template.active = request.active

    await session.flush()
    return TemplateResponse.model_validate(template)


@router.delete("/{template_id}", status_code=204)
async def delete_template(
    template_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> None:
    template = await _get_template_or_404(session, template_id)
    await session.delete(template)
    logger.info("Template deleted: id=%s", template_id)
