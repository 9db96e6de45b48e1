"""
TQ item catalog: the services and products quotes are built from.

Deleting an item keeps existing quote lines (they carry a copy of the name
and price); the line's item link is cleared by the database.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from paas.api.deps import get_tenant_session
from paas.db.models import Item
from paas.errors import NotFoundError
from paas.models.requests import ItemRequest, UpdateItemRequest
from paas.models.responses import ItemListResponse, ItemResponse, paginate

router = APIRouter(prefix="/items", tags=["TQ Items"])


async def _get_item_or_404(session: AsyncSession, item_id: uuid.UUID) -> Item:
    item = await session.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item not found", code="ITEM_NOT_FOUND")
    return item


@router.get("", response_model=ItemListResponse)
async def list_items(
    active: bool | None = Query(default=None),
    q: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_tenant_session),
) -> ItemListResponse:
    conditions = []
    if active is not None:
        conditions.append(Item.active.is_(active))
    if q:
        conditions.append(Item.name.ilike(f"%{q.strip()}%"))

    total = await session.scalar(select(func.count(Item.id)).where(*conditions)) or 0
    result = await session.execute(
        select(Item).where(*conditions).order_by(Item.name).limit(limit).offset(offset)
    )
    items = list(result.scalars().all())
    return ItemListResponse(
        items=[ItemResponse.model_validate(i) for i in items],
        pagination=paginate(total, limit, offset, len(items)),
    )


@router.post("", response_model=ItemResponse, status_code=201)
async def create_item(
    request: ItemRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> ItemResponse:
    item = Item(**request.model_dump())
    session.add(item)
    await session.flush()
    return ItemResponse.model_validate(item)


@router.get("/{item_id}", response_model=ItemResponse)
async def get_item(
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> ItemResponse:
    return ItemResponse.model_validate(await _get_item_or_404(session, item_id))


@router.put("/{item_id}", response_model=ItemResponse)
async def update_item(
    item_id: uuid.UUID,
    request: UpdateItemRequest,
    session: AsyncSession = Depends(get_tenant_session),
) -> ItemResponse:
    item = await _get_item_or_404(session, item_id)
    for name, value in request.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(item, name, value)
    await session.flush()
    return ItemResponse.model_validate(item)


@router.delete("/{item_id}", status_code=204)
async def delete_item(
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_tenant_session),
) -> None:
    await session.delete(await _get_item_or_404(session, item_id))
