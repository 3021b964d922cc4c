"""
IncomeSource model - a registered ingestion endpoint for external payment notifications.
Secrets (api_token, webhook_secret) are stored Fernet-encrypted when ENCRYPTION_KEY is set.
Sources are never hard-deleted: webhook history must stay attributable.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import Integer, String, Text, Boolean, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from moneybridge.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IncomeSource(Base):
    __tablename__ = "income_sources"
    __table_args__ = (
        UniqueConstraint("source_key", name="income_sources_source_key_uniq"),
        Index("income_sources_is_active_idx", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_name: Mapped[str] = mapped_column(String(100), nullable=False)
    source_key: Mapped[str] = mapped_column(String(50), nullable=False)  # URL path segment
    source_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default="custom_api"
    )  # linepay, jkopay, airbnb, booking, custom_api, manual
    description: Mapped[Optional[str]] = mapped_column(Text)

    # Authentication
    auth_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="token"
    )  # token, hmac, both
    webhook_secret: Mapped[Optional[str]] = mapped_column(Text)  # HMAC-SHA256 key (encrypted)
    api_token: Mapped[Optional[str]] = mapped_column(Text)  # Bearer token (encrypted)

    # Empty list = any IP allowed
    allowed_ips: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    # Ledger destination for auto-confirmed deliveries
    default_project_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("payment_projects.id")
    )
    default_category_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("debt_categories.id")
    )

    # {canonical_field: "$.json.path"}
    field_mapping: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    default_currency: Mapped[str] = mapped_column(String(10), nullable=False, default="TWD")
    currency_conversion_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_confirm: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Denormalized stats - incremented atomically in SQL
    total_received: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    last_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self):
        return f"<IncomeSource(id={self.id}, key={self.source_key}, active={self.is_active})>"
