# =============================================================================
# Unit Tests — Quote Pricing & Lifecycle
# =============================================================================

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from paas.db.models import ClinicalSession, Item, Quote, QuoteItem
from paas.errors import BusinessRuleError, NotFoundError
from paas.services import quotes
from paas.services.quotes import (
    QuoteLine,
    expire_quotes_stmt,
    line_final_price,
    quote_total,
)


def _item(base_price: str = "150.00", active: bool = True) -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid.uuid4(), name="Cleaning", base_price=Decimal(base_price), active=active,
    )


def _db(rows: dict) -> AsyncMock:
    db = AsyncMock()
    db.add = lambda obj: None
    db.get.side_effect = lambda cls, _key: rows.get(cls)
    return db


class TestLineFinalPrice:
    def test_discount_times_quantity(self):
        assert line_final_price(Decimal("150.00"), Decimal("20.00"), 3) == Decimal("390.00")

    def test_rounded_to_cents(self):
        assert line_final_price(Decimal("10.005"), Decimal("0"), 1) == Decimal("10.01")

    def test_full_discount_allowed(self):
        assert line_final_price(Decimal("80.00"), Decimal("80.00"), 2) == Decimal("0.00")

    @pytest.mark.parametrize("discount", [Decimal("-1"), Decimal("150.01")])
    def test_invalid_discount(self, discount):
        with pytest.raises(BusinessRuleError) as exc_info:
            line_final_price(Decimal("150.00"), discount, 1)
        assert exc_info.value.code == "INVALID_DISCOUNT"

    def test_invalid_quantity(self):
        with pytest.raises(BusinessRuleError) as exc_info:
            line_final_price(Decimal("150.00"), Decimal("0"), 0)
        assert exc_info.value.code == "INVALID_QUANTITY"
        assert exc_info.value.status_code == 422


class TestQuoteTotal:
    def test_sums_final_prices(self):
        lines = [
            SimpleNamespace(final_price=Decimal("390.00")),
            SimpleNamespace(final_price=Decimal("45.50")),
        ]
        assert quote_total(lines) == Decimal("435.50")

    def test_empty_quote(self):
        assert quote_total([]) == Decimal("0.00")


class TestCreateQuote:
    def test_creates_numbered_quote(self):
        item = _item()
        session_id = uuid.uuid4()
        db = _db({ClinicalSession: SimpleNamespace(id=session_id), Item: item})

        with patch.object(quotes, "next_quote_number", AsyncMock(return_value="QUO000007")):
            quote = asyncio.run(quotes.create_quote(
                db,
                session_id,
                [QuoteLine(item_id=item.id, quantity=2, discount_amount=Decimal("50.00"))],
                content="Treatment plan",
            ))

        assert quote.number == "QUO000007"
        assert quote.status == "draft"
        assert quote.total == Decimal("200.00")
        assert len(quote.items) == 1
        line = quote.items[0]
        assert line.name == "Cleaning"
        assert line.base_price == Decimal("150.00")
        assert line.final_price == Decimal("200.00")
        db.flush.assert_awaited_once()

    def test_unknown_session(self):
        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(quotes.create_quote(_db({}), uuid.uuid4(), []))
        assert exc_info.value.code == "SESSION_NOT_FOUND"

    def test_invalid_status(self):
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(quotes.create_quote(_db({}), uuid.uuid4(), [], status="paid"))
        assert exc_info.value.code == "INVALID_STATUS"

    def test_unknown_item(self):
        db = _db({ClinicalSession: SimpleNamespace(id=uuid.uuid4())})
        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(quotes.create_quote(db, uuid.uuid4(), [QuoteLine(item_id=uuid.uuid4())]))
        assert exc_info.value.code == "ITEM_NOT_FOUND"

    def test_inactive_item(self):
        item = _item(active=False)
        db = _db({ClinicalSession: SimpleNamespace(id=uuid.uuid4()), Item: item})
        with pytest.raises(BusinessRuleError) as exc_info:
            asyncio.run(quotes.create_quote(db, uuid.uuid4(), [QuoteLine(item_id=item.id)]))
        assert exc_info.value.code == "ITEM_INACTIVE"


class TestQuoteItems:
    def _quote(self) -> Quote:
        line = QuoteItem(
            id=uuid.uuid4(), name="Cleaning", base_price=Decimal("150.00"), quantity=1,
            discount_amount=Decimal("0"), final_price=Decimal("150.00"),
        )
        return Quote(id=uuid.uuid4(), number="QUO000001", status="draft", items=[line],
                     total=Decimal("150.00"))

    def test_add_recomputes_total(self):
        quote = self._quote()
        item = _item(base_price="40.00")
        db = _db({Quote: quote, Item: item})

        asyncio.run(quotes.add_quote_item(db, quote.id, QuoteLine(item_id=item.id, quantity=3)))

        assert len(quote.items) == 2
        assert quote.total == Decimal("270.00")

    def test_remove_recomputes_total(self):
        quote = self._quote()
        db = _db({Quote: quote})

        asyncio.run(quotes.remove_quote_item(db, quote.id, quote.items[0].id))

        assert quote.items == []
        assert quote.total == Decimal("0.00")

    def test_remove_unknown_line(self):
        db = _db({Quote: self._quote()})
        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(quotes.remove_quote_item(db, uuid.uuid4(), uuid.uuid4()))
        assert exc_info.value.code == "QUOTE_ITEM_NOT_FOUND"

    def test_unknown_quote(self):
        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(quotes.remove_quote_item(_db({}), uuid.uuid4(), uuid.uuid4()))
        assert exc_info.value.code == "QUOTE_NOT_FOUND"

    def test_update_rejects_unknown_status(self):
        db = _db({Quote: self._quote()})
        with pytest.raises(BusinessRuleError):
            asyncio.run(quotes.update_quote(db, uuid.uuid4(), {"status": "paid"}))


class TestExpireQuotes:
    def test_marks_lapsed_draft_and_sent_as_expired(self):
        now = datetime(2025, 3, 1, tzinfo=UTC)
        compiled = expire_quotes_stmt(now).compile()
        sql = str(compiled)

        assert sql.startswith("UPDATE")
        assert "quote" in sql
        assert "expires_at" in sql
        assert compiled.params["status"] == "expired"
        assert compiled.params["expires_at_1"] == now
