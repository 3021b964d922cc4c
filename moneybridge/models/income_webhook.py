"""
IncomeWebhook model - one received (or PMS-synthesized) payment notification.
Raw evidence is kept verbatim so records can be re-parsed and audited.

Invariants:
- external_transaction_id is unique per source_id (the dedup key).
- linked_item_id / linked_record_id are set if and only if status == "confirmed".
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    Integer, String, Text, Boolean, DateTime, Numeric, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from moneybridge.database import Base

WEBHOOK_STATUSES = ("pending", "confirmed", "rejected")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IncomeWebhook(Base):
    __tablename__ = "income_webhooks"
    __table_args__ = (
        UniqueConstraint(
            "source_id", "external_transaction_id", name="income_webhooks_external_tx_uniq"
        ),
        Index("income_webhooks_source_id_idx", "source_id"),
        Index("income_webhooks_status_idx", "status"),
        Index("income_webhooks_created_at_idx", "created_at"),
        Index("income_webhooks_paid_at_idx", "parsed_paid_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("income_sources.id"), nullable=False
    )
    external_transaction_id: Mapped[Optional[str]] = mapped_column(String(255))

    # Raw evidence
    raw_payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    request_ip: Mapped[Optional[str]] = mapped_column(String(45))
    request_headers: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)
    # None when no signature could be evaluated
    signature_valid: Mapped[Optional[bool]] = mapped_column(Boolean)

    # Parsed projection
    parsed_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    parsed_currency: Mapped[Optional[str]] = mapped_column(String(10), default="TWD")
    parsed_amount_twd: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    exchange_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 6))
    parsed_description: Mapped[Optional[str]] = mapped_column(Text)
    parsed_paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    parsed_payer_name: Mapped[Optional[str]] = mapped_column(String(255))
    parsed_payer_contact: Mapped[Optional[str]] = mapped_column(String(255))
    parsed_order_id: Mapped[Optional[str]] = mapped_column(String(255))

    # Review state
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", server_default="pending"
    )  # pending, confirmed, rejected
    reviewed_by_user_id: Mapped[Optional[int]] = mapped_column(Integer)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_note: Mapped[Optional[str]] = mapped_column(Text)

    linked_item_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("payment_items.id")
    )
    linked_record_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("payment_records.id")
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self):
        return f"<IncomeWebhook(id={self.id}, source_id={self.source_id}, status={self.status})>"
