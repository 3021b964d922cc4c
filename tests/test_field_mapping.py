"""
Tests for moneybridge/utils/field_mapping.py — JSON path lookup and payload parsing.
"""
from datetime import datetime, timezone
from decimal import Decimal

from moneybridge.utils.field_mapping import (
    _MISSING,
    get_value_by_path,
    parse_webhook_payload,
)

PAYLOAD = {
    "data": {
        "amount": "1500.50",
        "currency": "TWD",
        "tx": "TX-001",
        "paid_at": "2025-07-31T10:00:00Z",
        "payer": {"name": "王小明", "phone": "0912345678"},
        "note": None,
        "items": [{"sku": "A"}],
    }
}


class TestGetValueByPath:
    def test_dollar_prefixed_path(self):
        assert get_value_by_path(PAYLOAD, "$.data.amount") == "1500.50"

    def test_plain_path(self):
        assert get_value_by_path(PAYLOAD, "data.payer.name") == "王小明"

    def test_missing_key(self):
        assert get_value_by_path(PAYLOAD, "$.data.nope") is _MISSING

    def test_null_value_is_missing(self):
        assert get_value_by_path(PAYLOAD, "$.data.note") is _MISSING

    def test_walk_into_scalar_is_missing(self):
        assert get_value_by_path(PAYLOAD, "$.data.amount.value") is _MISSING

    def test_array_index_not_supported(self):
        assert get_value_by_path(PAYLOAD, "$.data.items.0.sku") is _MISSING

    def test_empty_path(self):
        assert get_value_by_path(PAYLOAD, "") is _MISSING
        assert get_value_by_path(PAYLOAD, "$") is _MISSING
        assert get_value_by_path(PAYLOAD, None) is _MISSING


class TestParseWebhookPayload:
    def test_full_mapping(self):
        mapping = {
            "amount": "$.data.amount",
            "currency": "$.data.currency",
            "transactionId": "$.data.tx",
            "paidAt": "$.data.paid_at",
            "payerName": "$.data.payer.name",
            "payerContact": "$.data.payer.phone",
        }
        parsed = parse_webhook_payload(PAYLOAD, mapping)

        assert parsed.amount == Decimal("1500.50")
        assert parsed.currency == "TWD"
        assert parsed.transaction_id == "TX-001"
        assert parsed.paid_at == datetime(2025, 7, 31, 10, 0, tzinfo=timezone.utc)
        assert parsed.payer_name == "王小明"
        assert parsed.payer_contact == "0912345678"
        assert parsed.description is None

    def test_empty_mapping_yields_nothing(self):
        parsed = parse_webhook_payload(PAYLOAD, {})
        assert parsed.to_dict() == {}

    def test_unmapped_fields_omitted_from_dict(self):
        parsed = parse_webhook_payload(PAYLOAD, {"transactionId": "$.data.tx"})
        assert parsed.to_dict() == {"transaction_id": "TX-001"}

    def test_numeric_amount(self):
        parsed = parse_webhook_payload({"amt": 500}, {"amount": "amt"})
        assert parsed.amount == Decimal("500")
        assert parsed.has_usable_amount

    def test_unparsable_amount_is_nan(self):
        """A garbage amount is reported, not silently zeroed."""
        parsed = parse_webhook_payload({"amt": "abc"}, {"amount": "amt"})
        assert parsed.amount is not None
        assert parsed.amount.is_nan()
        assert not parsed.has_usable_amount

    def test_numeric_transaction_id_becomes_text(self):
        parsed = parse_webhook_payload({"id": 12345}, {"transactionId": "$.id"})
        assert parsed.transaction_id == "12345"

    def test_object_value_serialized(self):
        parsed = parse_webhook_payload(PAYLOAD, {"description": "$.data.payer"})
        assert '"name"' in parsed.description

    def test_invalid_date_is_none(self):
        parsed = parse_webhook_payload({"d": "not a date"}, {"paidAt": "d"})
        assert parsed.paid_at is None

    def test_epoch_millis(self):
        parsed = parse_webhook_payload({"d": 1753956000000}, {"paidAt": "d"})
        assert parsed.paid_at == datetime(2025, 7, 31, 10, 0, tzinfo=timezone.utc)

    def test_naive_iso_treated_as_utc(self):
        parsed = parse_webhook_payload({"d": "2025-07-31T10:00:00"}, {"paidAt": "d"})
        assert parsed.paid_at.tzinfo is not None

    def test_non_object_payload(self):
        parsed = parse_webhook_payload([1, 2, 3], {"amount": "$.amount"})
        assert parsed.amount is None

    def test_non_string_path_ignored(self):
        parsed = parse_webhook_payload(PAYLOAD, {"amount": 42})
        assert parsed.amount is None
