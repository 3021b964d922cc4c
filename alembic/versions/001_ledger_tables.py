"""Ledger tables the income pipeline writes into.

Revision ID: 001
Revises:
Create Date: 2025-07-01
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "payment_projects",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("project_name", sa.String(255), nullable=False),
        sa.Column("is_deleted", sa.Boolean, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "debt_categories",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("category_name", sa.String(255), nullable=False),
        sa.Column("is_deleted", sa.Boolean, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "payment_items",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.Integer, sa.ForeignKey("payment_projects.id")),
        sa.Column("category_id", sa.Integer, sa.ForeignKey("debt_categories.id")),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("item_type", sa.String(20), nullable=False, server_default="project"),
        sa.Column("payment_type", sa.String(20), nullable=False, server_default="single"),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("paid_amount", sa.Numeric(12, 2), server_default="0"),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("notes", sa.Text),
        sa.Column("source", sa.String(20), server_default="manual"),
        sa.Column("is_deleted", sa.Boolean, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("payment_items_project_id_idx", "payment_items", ["project_id"])
    op.create_index("payment_items_item_type_idx", "payment_items", ["item_type"])
    op.create_index("payment_items_start_date_idx", "payment_items", ["start_date"])
    op.create_index("payment_items_source_idx", "payment_items", ["source"])

    op.create_table(
        "payment_records",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "payment_item_id", sa.Integer, sa.ForeignKey("payment_items.id"), nullable=False
        ),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_date", sa.Date, nullable=False),
        sa.Column("payment_method", sa.String(50)),
        sa.Column("is_partial_payment", sa.Boolean, server_default=sa.false()),
        sa.Column("notes", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("payment_records_item_id_idx", "payment_records", ["payment_item_id"])
    op.create_index("payment_records_payment_date_idx", "payment_records", ["payment_date"])


def downgrade() -> None:
    op.drop_table("payment_records")
    op.drop_table("payment_items")
    op.drop_table("debt_categories")
    op.drop_table("payment_projects")
