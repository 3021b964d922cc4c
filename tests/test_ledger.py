"""
Tests for moneybridge/services/ledger.py — webhook to payment item/record materialization.
"""
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from moneybridge.models import IncomeWebhook, PaymentItem, PaymentRecord
from moneybridge.services.ledger import (
    build_item_name,
    build_record_notes,
    materialize_webhook,
    resolve_amount,
)


def _webhook(**overrides) -> IncomeWebhook:
    values = {
        "id": 1,
        "source_id": 1,
        "external_transaction_id": "TX-9",
        "raw_payload": {},
        "parsed_amount": Decimal("100"),
        "parsed_amount_twd": Decimal("3200"),
        "parsed_paid_at": datetime(2025, 8, 15, 3, 0, tzinfo=timezone.utc),
        "parsed_description": None,
        "parsed_payer_name": None,
        "parsed_order_id": None,
    }
    values.update(overrides)
    return IncomeWebhook(**values)


class TestResolveAmount:
    def test_prefers_home_currency_amount(self):
        assert resolve_amount(_webhook()) == Decimal("3200")

    def test_falls_back_to_parsed_amount(self):
        assert resolve_amount(_webhook(parsed_amount_twd=None)) == Decimal("100")

    def test_zero_when_nothing_parsed(self):
        assert resolve_amount(_webhook(parsed_amount=None, parsed_amount_twd=None)) == Decimal("0")


class TestNaming:
    def test_override_wins(self):
        wh = _webhook(parsed_description="Booking #1")
        assert build_item_name(wh, "Manual name", date(2025, 8, 15)) == "Manual name"

    def test_description_used(self):
        wh = _webhook(parsed_description="Booking #1")
        assert build_item_name(wh, None, date(2025, 8, 15)) == "Booking #1"

    def test_dated_placeholder(self):
        assert build_item_name(_webhook(), None, date(2025, 8, 15)) == "進帳 2025-08-15"

    def test_notes_joined(self):
        wh = _webhook(parsed_payer_name="Ann", parsed_order_id="ORD-1")
        assert build_record_notes(wh) == "付款方：Ann | 訂單號：ORD-1 | 交易ID：TX-9"

    def test_notes_empty(self):
        assert build_record_notes(_webhook(external_transaction_id=None)) is None


class TestMaterializeWebhook:
    @pytest.mark.asyncio
    async def test_creates_paid_income_item_and_record(self, db, project):
        webhook = _webhook(id=None, parsed_description="Airbnb payout")

        link = await materialize_webhook(db, webhook, project.id)

        item = await db.get(PaymentItem, link.payment_item_id)
        assert item.item_type == "income"
        assert item.payment_type == "single"
        assert item.status == "paid"
        assert item.source == "webhook"
        assert item.total_amount == Decimal("3200")
        assert item.paid_amount == item.total_amount
        assert item.start_date == date(2025, 8, 15)
        assert item.item_name == "Airbnb payout"

        record = await db.get(PaymentRecord, link.payment_record_id)
        assert record.item_id == item.id
        assert record.amount_paid == Decimal("3200")
        assert record.payment_date == date(2025, 8, 15)
        assert record.payment_method == "webhook"
        assert record.is_partial_payment is False

    @pytest.mark.asyncio
    async def test_missing_paid_at_uses_today(self, db, project):
        webhook = _webhook(id=None, parsed_paid_at=None)
        link = await materialize_webhook(db, webhook, project.id)
        item = await db.get(PaymentItem, link.payment_item_id)
        assert item.start_date == datetime.now(timezone.utc).date()
