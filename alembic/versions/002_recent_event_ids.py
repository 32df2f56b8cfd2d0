"""Recent webhook event ids per subscription

Revision ID: 002_recent_event_ids
Revises: 001_subscriptions
Create Date: 2026-10-20

Changes:
- subscriptions.recent_event_ids (JSON list) replaces subscriptions.last_event_id
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "002_recent_event_ids"
down_revision = "001_subscriptions"
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    with op.batch_alter_table("subscriptions") as batch:
        batch.add_column(sa.Column("recent_event_ids", JSON_TYPE, nullable=False, server_default="[]"))
        batch.drop_column("last_event_id")


def downgrade() -> None:
    with op.batch_alter_table("subscriptions") as batch:
        batch.add_column(sa.Column("last_event_id", sa.String(255), nullable=True))
        batch.drop_column("recent_event_ids")
