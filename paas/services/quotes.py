# =============================================================================
# Quotes Service — Pricing & Lifecycle of TQ Quotes
# =============================================================================
#
# A quote belongs to a session and lists catalog items:
#
#   final_price = (base_price - discount_amount) × quantity
#   total       = Σ final_price
#
# Name and base price are copied from the catalog when a line is added, so
# later catalog edits do not change issued quotes. The total is recomputed
# after every line change.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from paas.db.models import QUOTE_STATUSES, ClinicalSession, Item, Quote, QuoteItem
from paas.errors import BusinessRuleError, NotFoundError
from paas.services.numbering import next_quote_number

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Quotes in these states lapse once expires_at has passed
EXPIRABLE_STATUSES = ("draft", "sent")


@dataclass
class QuoteLine:
    """Requested quote line (catalog item, quantity, discount per unit)."""

    item_id: uuid.UUID
    quantity: int = 1
    discount_amount: Decimal = Decimal("0")


def line_final_price(base_price: Decimal, discount_amount: Decimal, quantity: int) -> Decimal:
    """
    Price of one line, rounded to cents.

    Raises:
        BusinessRuleError: INVALID_QUANTITY, INVALID_DISCOUNT
    """
    if quantity < 1:
        raise BusinessRuleError(
            "Quantity must be at least 1", code="INVALID_QUANTITY",
        )
    if discount_amount < 0 or discount_amount > base_price:
        raise BusinessRuleError(
            "Discount must be between 0 and the item's base price",
            code="INVALID_DISCOUNT",
            details={"base_price": str(base_price), "discount_amount": str(discount_amount)},
        )
    return ((base_price - discount_amount) * quantity).quantize(CENT, rounding=ROUND_HALF_UP)


def quote_total(items: Iterable[QuoteItem]) -> Decimal:
    return sum((item.final_price for item in items), Decimal("0")).quantize(CENT)


async def _catalog_item(db: AsyncSession, item_id: uuid.UUID) -> Item:
    item = await db.get(Item, item_id)
    if item is None:
        raise NotFoundError(f"Item {item_id} not found", code="ITEM_NOT_FOUND")
    if not item.active:
        raise BusinessRuleError(f"Item {item_id} is inactive", code="ITEM_INACTIVE")
    return item


async def _build_line(db: AsyncSession, line: QuoteLine) -> QuoteItem:
    item = await _catalog_item(db, line.item_id)
    return QuoteItem(
        item_id=item.id,
        name=item.name,
        base_price=item.base_price,
        quantity=line.quantity,
        discount_amount=line.discount_amount,
        final_price=line_final_price(item.base_price, line.discount_amount, line.quantity),
    )


def _check_status(status: str) -> None:
    if status not in QUOTE_STATUSES:
        raise BusinessRuleError(
            f"Invalid quote status '{status}'",
            code="INVALID_STATUS",
            details={"allowed": list(QUOTE_STATUSES)},
        )


async def get_quote(db: AsyncSession, quote_id: uuid.UUID) -> Quote:
    quote = await db.get(Quote, quote_id)
    if quote is None:
        raise NotFoundError("Quote not found", code="QUOTE_NOT_FOUND")
    return quote


async def create_quote(
    db: AsyncSession,
    session_id: uuid.UUID,
    lines: list[QuoteLine],
    content: str | None = None,
    expires_at: datetime | None = None,
    status: str = "draft",
) -> Quote:
    """
    Create a quote for a session.

    Raises:
        NotFoundError: SESSION_NOT_FOUND, ITEM_NOT_FOUND
        BusinessRuleError: ITEM_INACTIVE, INVALID_QUANTITY, INVALID_DISCOUNT,
            INVALID_STATUS
    """
    _check_status(status)
    if await db.get(ClinicalSession, session_id) is None:
        raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")

    items = [await _build_line(db, line) for line in lines]
    quote = Quote(
        number=await next_quote_number(db),
        session_id=session_id,
        content=content,
        status=status,
        expires_at=expires_at,
        items=items,
        total=quote_total(items),
    )
    db.add(quote)
    await db.flush()
    logger.info("Created quote %s (%d items, total %s)", quote.number, len(items), quote.total)
    return quote


async def update_quote(
    db: AsyncSession,
    quote_id: uuid.UUID,
    fields: dict,
) -> Quote:
    """Update status, content or expiry."""
    quote = await get_quote(db, quote_id)
    if "status" in fields and fields["status"] is not None:
        _check_status(fields["status"])
        quote.status = fields["status"]
    if "content" in fields:
        quote.content = fields["content"]
    if "expires_at" in fields:
        quote.expires_at = fields["expires_at"]
    await db.flush()
    return quote


async def add_quote_item(db: AsyncSession, quote_id: uuid.UUID, line: QuoteLine) -> Quote:
    quote = await get_quote(db, quote_id)
    quote.items.append(await _build_line(db, line))
    quote.total = quote_total(quote.items)
    await db.flush()
    return quote


async def remove_quote_item(
    db: AsyncSession, quote_id: uuid.UUID, quote_item_id: uuid.UUID,
) -> Quote:
    quote = await get_quote(db, quote_id)
    for line in quote.items:
        if line.id == quote_item_id:
            quote.items.remove(line)
            break
    else:
        raise NotFoundError("Quote item not found", code="QUOTE_ITEM_NOT_FOUND")
    quote.total = quote_total(quote.items)
    await db.flush()
    return quote


def expire_quotes_stmt(now: datetime | None = None):
    """UPDATE lapsing draft/sent quotes whose expiry has passed."""
    now = now or datetime.now(UTC)
    return (
        update(Quote)
        .where(
            Quote.status.in_(EXPIRABLE_STATUSES),
            Quote.expires_at.is_not(None),
            Quote.expires_at < now,
        )
        .values(status="expired", updated_at=now)
    )
