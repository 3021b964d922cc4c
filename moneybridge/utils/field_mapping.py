"""
Payload field mapping - extracts canonical income fields from arbitrary JSON.

A mapping is {canonical_field: path}, where path is a dot-separated key path
optionally prefixed with "$." (e.g. "$.data.amount"). Paths walk objects by
key only; array indices and wildcards are not supported.
"""
import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

logger = logging.getLogger(__name__)

CANONICAL_FIELDS = (
    "amount",
    "currency",
    "transactionId",
    "paidAt",
    "description",
    "payerName",
    "payerContact",
    "orderId",
)

_MISSING = object()


@dataclass
class ParsedWebhookData:
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    description: Optional[str] = None
    payer_name: Optional[str] = None
    payer_contact: Optional[str] = None
    order_id: Optional[str] = None

    def to_dict(self) -> dict:
        """Only the fields that were actually extracted."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @property
    def has_usable_amount(self) -> bool:
        return self.amount is not None and self.amount.is_finite()


def get_value_by_path(obj: Any, path: Optional[str]) -> Any:
    """
    Resolve a "$.a.b.c" / "a.b.c" path against a parsed JSON object.
    Returns _MISSING when any step is absent or null.
    """
    if not path or obj is None:
        return _MISSING

    stripped = path.strip()
    if stripped.startswith("$"):
        stripped = stripped[1:]
        if stripped.startswith("."):
            stripped = stripped[1:]
    if not stripped:
        return _MISSING

    current = obj
    for key in stripped.split("."):
        if not isinstance(current, dict) or key not in current:
            return _MISSING
        current = current[key]
        if current is None:
            return _MISSING
    return current


def _to_decimal(raw: Any) -> Decimal:
    """Coerce to Decimal; unparsable input yields Decimal('NaN')."""
    if isinstance(raw, bool):
        return Decimal(int(raw))
    if isinstance(raw, (int, float, str)):
        try:
            return Decimal(str(raw).strip())
        except InvalidOperation:
            return Decimal("NaN")
    return Decimal("NaN")


def _to_datetime(raw: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings or epoch seconds/milliseconds; None if invalid."""
    try:
        if isinstance(raw, bool):
            return None
        if isinstance(raw, (int, float)):
            seconds = raw / 1000 if raw > 1e12 else raw
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        if isinstance(raw, str):
            text = raw.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
    except (ValueError, OverflowError, OSError):
        return None
    return None


def _to_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (dict, list, bool)):
        return json.dumps(raw, ensure_ascii=False)
    return str(raw)


def parse_webhook_payload(raw_payload: Any, field_mapping: Optional[dict]) -> ParsedWebhookData:
    """
    Apply a source's field mapping to a payload.
    Fields missing from the mapping or the payload are left as None.
    """
    mapping = field_mapping or {}
    result = ParsedWebhookData()

    def _lookup(field: str) -> Any:
        path = mapping.get(field)
        if not isinstance(path, str):
            return _MISSING
        return get_value_by_path(raw_payload, path)

    raw = _lookup("amount")
    if raw is not _MISSING:
        result.amount = _to_decimal(raw)

    raw = _lookup("paidAt")
    if raw is not _MISSING:
        result.paid_at = _to_datetime(raw)

    for field, attr in (
        ("currency", "currency"),
        ("transactionId", "transaction_id"),
        ("description", "description"),
        ("payerName", "payer_name"),
        ("payerContact", "payer_contact"),
        ("orderId", "order_id"),
    ):
        raw = _lookup(field)
        if raw is not _MISSING:
            setattr(result, attr, _to_text(raw))

    return result
