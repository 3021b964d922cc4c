"""
Ledger tables owned by the accounting side of the system.
Only the columns the income pipeline reads or writes are mapped here;
general CRUD over these tables lives elsewhere.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from sqlalchemy import Integer, String, Text, Boolean, Date, DateTime, Numeric, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from moneybridge.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentProject(Base):
    __tablename__ = "payment_projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class DebtCategory(Base):
    __tablename__ = "debt_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class PaymentItem(Base):
    __tablename__ = "payment_items"
    __table_args__ = (
        Index("payment_items_project_id_idx", "project_id"),
        Index("payment_items_item_type_idx", "item_type"),
        Index("payment_items_start_date_idx", "start_date"),
        Index("payment_items_source_idx", "source"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("payment_projects.id"))
    category_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("debt_categories.id"))
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    item_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="project"
    )  # project, home, income
    payment_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="single"
    )  # single, recurring, installment
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending, partial, paid
    notes: Mapped[Optional[str]] = mapped_column(Text)
    source: Mapped[str] = mapped_column(String(20), default="manual")  # manual, webhook, ...
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class PaymentRecord(Base):
    __tablename__ = "payment_records"
    __table_args__ = (
        Index("payment_records_item_id_idx", "payment_item_id"),
        Index("payment_records_payment_date_idx", "payment_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(
        "payment_item_id", Integer, ForeignKey("payment_items.id"), nullable=False
    )
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    is_partial_payment: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
