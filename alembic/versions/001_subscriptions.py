"""Subscriptions schema

Revision ID: 001_subscriptions
Revises:
Create Date: 2026-10-19

Tables:
- subscriptions (lifecycle state, one row per remote subscription)
- checkout_intents (pending checkouts, TTL-bounded)
- system_configuration (key-value config, gateway credentials)
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "001_subscriptions"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    # ── subscriptions ──
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("application_id", sa.Integer(), nullable=True),
        sa.Column("plan_id", sa.String(64), nullable=False),
        sa.Column("external_plan_id", sa.String(64), nullable=True),
        sa.Column("payment_method", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("payment_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="active"),
        sa.Column("cancellation_source", sa.String(20), nullable=False, server_default="none"),
        sa.Column("payment_status", sa.String(10), nullable=False, server_default="paid"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("retry_period_end", sa.DateTime(), nullable=True),
        sa.Column("grace_period_end", sa.DateTime(), nullable=True),
        sa.Column("next_billing_date", sa.DateTime(), nullable=True),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(), nullable=True),
        sa.Column("last_payment_error", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("last_event_id", sa.String(255), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("billing_frequency", sa.String(20), nullable=False, server_default="monthly"),
        sa.Column("customer_data", JSON_TYPE, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("payment_method", "payment_id", name="uq_subscriptions_payment"),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_application_id", "subscriptions", ["application_id"])
    op.create_index("ix_subscriptions_payment_id", "subscriptions", ["payment_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])

    # ── checkout_intents ──
    op.create_table(
        "checkout_intents",
        sa.Column("session_key", sa.String(64), primary_key=True),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("plan", JSON_TYPE, nullable=False),
        sa.Column("customer_data", JSON_TYPE, nullable=False),
        sa.Column("checkout_data", JSON_TYPE, nullable=False),
        sa.Column("tax_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("remote_subscription_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_checkout_intents_remote_subscription_id", "checkout_intents", ["remote_subscription_id"])
    op.create_index("ix_checkout_intents_expires_at", "checkout_intents", ["expires_at"])

    # ── system_configuration ──
    op.create_table(
        "system_configuration",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", JSON_TYPE, nullable=False),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )


def downgrade() -> None:
    op.drop_table("system_configuration")
    op.drop_index("ix_checkout_intents_expires_at", table_name="checkout_intents")
    op.drop_index("ix_checkout_intents_remote_subscription_id", table_name="checkout_intents")
    op.drop_table("checkout_intents")
    op.drop_index("ix_subscriptions_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_payment_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_application_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_user_id", table_name="subscriptions")
    op.drop_table("subscriptions")
