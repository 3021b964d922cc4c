"""
Ledger materialization - turns a reviewed income webhook into a payment item
plus a payment record.

Runs inside the caller's transaction and only flushes; the caller commits
together with the webhook's status change so both land or neither does.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from moneybridge.models.income_webhook import IncomeWebhook
from moneybridge.models.ledger import PaymentItem, PaymentRecord

logger = logging.getLogger(__name__)

ITEM_TYPE_INCOME = "income"
ITEM_SOURCE_WEBHOOK = "webhook"
PAYMENT_METHOD_WEBHOOK = "webhook"


@dataclass
class LedgerLink:
    payment_item_id: int
    payment_record_id: int


def resolve_amount(webhook: IncomeWebhook) -> Decimal:
    """Home-currency amount when known, else the raw parsed amount, else zero."""
    if webhook.parsed_amount_twd is not None:
        return Decimal(webhook.parsed_amount_twd)
    if webhook.parsed_amount is not None:
        return Decimal(webhook.parsed_amount)
    return Decimal("0")


def resolve_payment_date(webhook: IncomeWebhook) -> date:
    if webhook.parsed_paid_at is not None:
        return webhook.parsed_paid_at.date()
    return datetime.now(timezone.utc).date()


def build_item_name(webhook: IncomeWebhook, override: Optional[str], payment_date: date) -> str:
    if override:
        return override
    if webhook.parsed_description:
        return webhook.parsed_description[:255]
    return f"進帳 {payment_date.isoformat()}"


def build_record_notes(webhook: IncomeWebhook) -> Optional[str]:
    parts = []
    if webhook.parsed_payer_name:
        parts.append(f"付款方：{webhook.parsed_payer_name}")
    if webhook.parsed_order_id:
        parts.append(f"訂單號：{webhook.parsed_order_id}")
    if webhook.external_transaction_id:
        parts.append(f"交易ID：{webhook.external_transaction_id}")
    return " | ".join(parts) if parts else None


async def materialize_webhook(
    db: AsyncSession,
    webhook: IncomeWebhook,
    project_id: int,
    category_id: Optional[int] = None,
    item_name: Optional[str] = None,
) -> LedgerLink:
    """
    Create a fully-paid single income item and its payment record.
    Does not touch the webhook row.
    """
    amount = resolve_amount(webhook)
    payment_date = resolve_payment_date(webhook)

    item = PaymentItem(
        project_id=project_id,
        category_id=category_id,
        item_name=build_item_name(webhook, item_name, payment_date),
        total_amount=amount,
        item_type=ITEM_TYPE_INCOME,
        payment_type="single",
        start_date=payment_date,
        paid_amount=amount,
        status="paid",
        notes=webhook.parsed_description,
        source=ITEM_SOURCE_WEBHOOK,
    )
    db.add(item)
    await db.flush()

    record = PaymentRecord(
        item_id=item.id,
        amount_paid=amount,
        payment_date=payment_date,
        payment_method=PAYMENT_METHOD_WEBHOOK,
        is_partial_payment=False,
        notes=build_record_notes(webhook),
    )
    db.add(record)
    await db.flush()

    logger.info(
        "Materialized webhook %s into item=%s record=%s amount=%s",
        webhook.id, item.id, record.id, amount,
        extra={"webhook_id": webhook.id, "source_id": webhook.source_id},
    )
    return LedgerLink(payment_item_id=item.id, payment_record_id=record.id)
