"""Income sources and the webhook inbox.

Revision ID: 002
Revises: 001
Create Date: 2025-07-15
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "income_sources",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("source_name", sa.String(100), nullable=False),
        sa.Column("source_key", sa.String(50), nullable=False),
        sa.Column("source_type", sa.String(30), nullable=False, server_default="custom_api"),
        sa.Column("description", sa.Text),
        sa.Column("auth_type", sa.String(20), nullable=False, server_default="token"),
        sa.Column("webhook_secret", sa.Text),
        sa.Column("api_token", sa.Text),
        sa.Column("allowed_ips", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("default_project_id", sa.Integer, sa.ForeignKey("payment_projects.id")),
        sa.Column("default_category_id", sa.Integer, sa.ForeignKey("debt_categories.id")),
        sa.Column("field_mapping", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("default_currency", sa.String(10), nullable=False, server_default="TWD"),
        sa.Column("currency_conversion_enabled", sa.Boolean, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("auto_confirm", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("total_received", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_received_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("source_key", name="income_sources_source_key_uniq"),
    )
    op.create_index("income_sources_is_active_idx", "income_sources", ["is_active"])

    op.create_table(
        "income_webhooks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("source_id", sa.Integer, sa.ForeignKey("income_sources.id"), nullable=False),
        sa.Column("external_transaction_id", sa.String(255)),
        sa.Column("raw_payload", postgresql.JSONB, nullable=False),
        sa.Column("request_ip", sa.String(45)),
        sa.Column("request_headers", postgresql.JSONB, server_default="{}"),
        sa.Column("signature_valid", sa.Boolean),
        sa.Column("parsed_amount", sa.Numeric(12, 2)),
        sa.Column("parsed_currency", sa.String(10), server_default="TWD"),
        sa.Column("parsed_amount_twd", sa.Numeric(12, 2)),
        sa.Column("exchange_rate", sa.Numeric(10, 6)),
        sa.Column("parsed_description", sa.Text),
        sa.Column("parsed_paid_at", sa.DateTime(timezone=True)),
        sa.Column("parsed_payer_name", sa.String(255)),
        sa.Column("parsed_payer_contact", sa.String(255)),
        sa.Column("parsed_order_id", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reviewed_by_user_id", sa.Integer),
        sa.Column("reviewed_at", sa.DateTime(timezone=True)),
        sa.Column("review_note", sa.Text),
        sa.Column("linked_item_id", sa.Integer, sa.ForeignKey("payment_items.id")),
        sa.Column("linked_record_id", sa.Integer, sa.ForeignKey("payment_records.id")),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("error_message", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "source_id", "external_transaction_id", name="income_webhooks_external_tx_uniq"
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'rejected')", name="income_webhooks_status_check"
        ),
    )
    op.create_index("income_webhooks_source_id_idx", "income_webhooks", ["source_id"])
    op.create_index("income_webhooks_status_idx", "income_webhooks", ["status"])
    op.create_index("income_webhooks_created_at_idx", "income_webhooks", ["created_at"])
    op.create_index("income_webhooks_paid_at_idx", "income_webhooks", ["parsed_paid_at"])


def downgrade() -> None:
    op.drop_table("income_webhooks")
    op.drop_table("income_sources")
