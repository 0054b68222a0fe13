"""race tables - providers, rfqs, broadcasts, responses, activity

Revision ID: 001_race_tables
Revises: None
Create Date: 2026-10-19

For databases already synced by startup.py: run `alembic stamp 001_race_tables`.
For new databases: run `alembic upgrade head`.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_race_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "providers",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("headline", sa.String(500)),
        sa.Column("timezone", sa.String(64)),
        sa.Column("tier", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False),
        sa.Column("current_order_count", sa.Integer),
        sa.Column("max_concurrent_orders", sa.Integer),
        sa.Column("day_rate", sa.Numeric(12, 2)),
        sa.Column("currency", sa.String(10)),
        sa.Column("categories", sa.JSON),
        sa.Column("skills", sa.JSON),
        sa.Column("completion_rate", sa.Float),
        sa.Column("response_time_hours", sa.Float),
        sa.Column("created_at", TS),
    )
    op.create_index("ix_providers_active_tier", "providers", ["is_active", "tier"])

    op.create_table(
        "rfqs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("buyer_id", sa.Integer, nullable=False),
        sa.Column("foundry_id", sa.Integer, nullable=False),
        sa.Column("rfq_type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("specifications", sa.JSON),
        sa.Column("budget_min", sa.Numeric(12, 2)),
        sa.Column("budget_max", sa.Numeric(12, 2)),
        sa.Column("deadline", TS),
        sa.Column("category", sa.String(100)),
        sa.Column("urgency", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("race_opens_at", TS),
        sa.Column("priority_holder_id", sa.Integer, sa.ForeignKey("providers.id")),
        sa.Column("priority_hold_expires_at", TS),
        sa.Column("awarded_to", sa.Integer, sa.ForeignKey("providers.id")),
        sa.Column("created_at", TS),
        sa.Column("updated_at", TS),
    )
    op.create_index("ix_rfqs_status", "rfqs", ["status"])
    op.create_index("ix_rfqs_buyer", "rfqs", ["buyer_id"])
    op.create_index("ix_rfqs_foundry_created", "rfqs", ["foundry_id", "created_at"])

    op.create_table(
        "rfq_broadcasts",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("rfq_id", sa.Integer, sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column("provider_id", sa.Integer, sa.ForeignKey("providers.id"), nullable=False),
        sa.Column("scheduled_at", TS, nullable=False),
        sa.Column("delivered_at", TS),
        sa.Column("viewed_at", TS),
        sa.Column("created_at", TS),
        sa.UniqueConstraint("rfq_id", "provider_id", name="uq_rfq_broadcasts_rfq_provider"),
    )
    op.create_index("ix_rfq_broadcasts_provider", "rfq_broadcasts", ["provider_id"])

    op.create_table(
        "rfq_responses",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("rfq_id", sa.Integer, sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column("provider_id", sa.Integer, sa.ForeignKey("providers.id"), nullable=False),
        sa.Column("response_type", sa.String(20), nullable=False),
        sa.Column("quoted_price", sa.Numeric(12, 2)),
        sa.Column("message", sa.Text),
        sa.Column("responded_at", TS, nullable=False),
        sa.UniqueConstraint("rfq_id", "provider_id", name="uq_rfq_responses_rfq_provider"),
    )
    op.create_index("ix_rfq_responses_rfq_type", "rfq_responses", ["rfq_id", "response_type"])
    op.create_index("ix_rfq_responses_provider", "rfq_responses", ["provider_id"])

    op.create_table(
        "race_activity",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("rfq_id", sa.Integer, sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column("actor_id", sa.Integer),
        sa.Column("activity_type", sa.String(50), nullable=False),
        sa.Column("detail", sa.Text),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_race_activity_rfq", "race_activity", ["rfq_id", "created_at"])


def downgrade() -> None:
    """Drop the race tables. Destructive, dev/test only."""
    for table in ("race_activity", "rfq_responses", "rfq_broadcasts", "rfqs", "providers"):
        op.drop_table(table)
