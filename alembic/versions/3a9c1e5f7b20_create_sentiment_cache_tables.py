"""create sentiment cache tables

Revision ID: 3a9c1e5f7b20
Revises:
Create Date: 2026-10-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "3a9c1e5f7b20"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ttl_cache_entries",
        sa.Column("cache_key", sa.String(length=512), primary_key=True),
        sa.Column("payload", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    # The sweep deletes by expires_at range
    op.create_index("ix_ttl_cache_entries_expires_at", "ttl_cache_entries", ["expires_at"], unique=False)

    op.create_table(
        "sentiment_score_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("underlying", sa.String(length=16), nullable=False),
        sa.Column("as_of_date", sa.Date(), nullable=False),
        sa.Column("composite_score", sa.Float(), nullable=False),
        sa.Column("finbert_score", sa.Float(), nullable=False),
        sa.Column("analyst_score", sa.Float(), nullable=False),
        sa.Column("momentum_score", sa.Float(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("trend", sa.String(length=16), nullable=False),
        sa.Column("news_count", sa.Integer(), nullable=False),
        sa.Column("analyst_count", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("underlying", "as_of_date", name="uq_sentiment_snapshot_underlying_date"),
    )
    op.create_index("ix_sentiment_score_snapshots_underlying", "sentiment_score_snapshots", ["underlying"], unique=False)
    op.create_index("ix_sentiment_score_snapshots_as_of_date", "sentiment_score_snapshots", ["as_of_date"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_sentiment_score_snapshots_as_of_date", table_name="sentiment_score_snapshots")
    op.drop_index("ix_sentiment_score_snapshots_underlying", table_name="sentiment_score_snapshots")
    op.drop_table("sentiment_score_snapshots")
    op.drop_index("ix_ttl_cache_entries_expires_at", table_name="ttl_cache_entries")
    op.drop_table("ttl_cache_entries")
