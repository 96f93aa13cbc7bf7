"""Initial schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def upgrade() -> None:
    # Create b2b_clients table
    op.create_table(
        "b2b_clients",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("api_key_hash", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("tier", sa.String(50), nullable=False, server_default="base"),
        sa.Column("daily_call_limit", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("api_key_hash"),
        sa.CheckConstraint(
            "status IN ('active', 'suspended', 'revoked')", name="ck_b2b_clients_status"
        ),
    )
    op.create_index("idx_b2b_clients_status", "b2b_clients", ["status"])

    # Create b2b_usage_records table (append-only)
    op.create_table(
        "b2b_usage_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column("endpoint", sa.String(255), nullable=False),
        sa.Column("request_params_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("response_bytes", sa.BigInteger(), nullable=False),
        sa.Column("latency_ms", sa.BigInteger(), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_usage_client_date", "b2b_usage_records", ["client_id", "usage_date"])
    op.create_index(
        "idx_usage_client_timestamp", "b2b_usage_records", ["client_id", "timestamp"]
    )

    # Create b2b_daily_usage table
    op.create_table(
        "b2b_daily_usage",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("call_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reset_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("client_id", "usage_date", name="uq_daily_usage_client_date"),
    )

    # Create price_observations table (written by ingestion)
    op.create_table(
        "price_observations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("category", sa.String(255), nullable=False),
        sa.Column("region", sa.String(50), nullable=True),
        sa.Column("brand", sa.String(255), nullable=True),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("observed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_observations_category_time", "price_observations", ["category", "observed_at"]
    )
    op.create_index(
        "idx_observations_region_time", "price_observations", ["region", "observed_at"]
    )


def downgrade() -> None:
    op.drop_table("price_observations")
    op.drop_table("b2b_daily_usage")
    op.drop_table("b2b_usage_records")
    op.drop_table("b2b_clients")
