# =============================================================================
# TQ Quotes
# =============================================================================
#
#   GET    /quotes?session_id=&status=&limit=&offset=
#   POST   /quotes
#   GET    /quotes/{id}
#   PUT    /quotes/{id}                      — status, content, expiry
#   POST   /quotes/{id}/items                — add a line
#   DELETE /quotes/{id}/items/{quote_item_id} — remove a line
#
# Pricing rules live in services/quotes.py.
# =============================================================================

from __future__ import annotations

import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_tenant_session
from paas.db.models import Quote
from paas.models.requests import CreateQuoteRequest, QuoteLineRequest, UpdateQuoteRequest
from paas.models.responses import QuoteListResponse, QuoteResponse, paginate
from paas.services import quotes
from paas.services.quotes import QuoteLine

router = APIRouter(prefix="/quotes", tags=["TQ Quotes"])


def _line(request: QuoteLineRequest) -> QuoteLine:
    return QuoteLine(
        item_id=request.item_id,
        quantity=request.quantity,
        discount_amount=request.discount_amount,
    )


@router.get("", response_model=QuoteListResponse)
async def list_quotes(
    session_id: uuid.UUID | None = Query(default=None),
    status: Literal["draft", "sent", "approved", "rejected", "expired"] | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_tenant_session),
) -> QuoteListResponse:
    conditions = []
    if session_id is not None:
        conditions.append(Quote.session_id == session_id)
    if status is not None:
        conditions.append(Quote.status == status)

    total = await session.scalar(select(func.count(Quote.id)).where(*conditions)) or 0
    result = await session.execute(
        select(Quote)
        .where(*conditions)
        .order_by(Quote.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    rows = list(result.scalars().all())
    return QuoteListResponse(
        items=[QuoteResponse.model_validate(q) for q in rows],
        pagination=paginate(total, limit, offset, len(rows)),
    )


@router.post("", response_model=QuoteResponse, status_code=201)
async def create_quote(
    request: CreateQuoteRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> QuoteResponse:
    quote = await quotes.create_quote(
        session,
        request.session_id,
        [_line(line) for line in request.items],
        content=request.content,
        expires_at=request.expires_at,
        status=request.status,
    )
    return QuoteResponse.model_validate(quote)


@router.get("/{quote_id}", response_model=QuoteResponse)
async def get_quote(
    quote_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> QuoteResponse:
    return QuoteResponse.model_validate(await quotes.get_quote(session, quote_id))


@router.put("/{quote_id}", response_model=QuoteResponse)
async def update_quote(
    quote_id: uuid.UUID,
    request: UpdateQuoteRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> QuoteResponse:
    quote = await quotes.update_quote(
        session, quote_id, request.model_dump(exclude_unset=True),
    )
    return QuoteResponse.model_validate(quote)


@router.post("/{quote_id}/items", response_model=QuoteResponse, status_code=201)
async def add_quote_item(
    quote_id: uuid.UUID,
    request: QuoteLineRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> QuoteResponse:
    quote = await quotes.add_quote_item(session, quote_id, _line(request))
    return QuoteResponse.model_validate(quote)


@router.delete("/{quote_id}/items/{quote_item_id}", response_model=QuoteResponse)
async def remove_quote_item(
    quote_id: uuid.UUID,
    quote_item_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> QuoteResponse:
    quote = await quotes.remove_quote_item(session, quote_id, quote_item_id)
    return QuoteResponse.model_validate(quote)
