"""Create market directory, observation and candle cache tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = "candle_cache"


def upgrade() -> None:
    # The schema itself is created by env.py before migrations run.

    # --- market directory ---
    op.create_table(
        "resources",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("slug", sa.Text, nullable=False, unique=True),
        sa.Column("name", sa.Text, nullable=False),
        schema=SCHEMA,
    )

    op.create_table(
        "market_groups",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("address", sa.Text, nullable=True),
        sa.Column("chain_id", sa.Integer, nullable=False),
        sa.Column("resource_id", sa.Integer, sa.ForeignKey(f"{SCHEMA}.resources.id"), nullable=True),
        sa.Column("is_cumulative", sa.Boolean, nullable=True),
        sa.UniqueConstraint("chain_id", "address"),
        schema=SCHEMA,
    )

    op.create_table(
        "markets",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "market_group_id",
            sa.Integer,
            sa.ForeignKey(f"{SCHEMA}.market_groups.id"),
            nullable=False,
        ),
        sa.Column("market_id", sa.Integer, nullable=False),
        sa.Column("start_timestamp", sa.BigInteger, nullable=True),
        sa.Column("end_timestamp", sa.BigInteger, nullable=True),
        sa.UniqueConstraint("market_group_id", "market_id"),
        schema=SCHEMA,
    )

    # --- observations ---
    op.create_table(
        "resource_prices",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("resource_id", sa.Integer, sa.ForeignKey(f"{SCHEMA}.resources.id"), nullable=False),
        sa.Column("timestamp", sa.BigInteger, nullable=False),
        sa.Column("block_number", sa.BigInteger, nullable=True),
        sa.Column("value", sa.Text, nullable=False),
        sa.Column("used", sa.Text, nullable=False),
        sa.Column("fee_paid", sa.Text, nullable=False),
        sa.UniqueConstraint("resource_id", "timestamp"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_resource_prices_timestamp", "resource_prices", ["timestamp"], schema=SCHEMA
    )

    op.create_table(
        "market_prices",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("chain_id", sa.Integer, nullable=False),
        sa.Column("address", sa.Text, nullable=False),
        sa.Column("market_id", sa.Integer, nullable=False),
        sa.Column("timestamp", sa.BigInteger, nullable=False),
        sa.Column("value", sa.Text, nullable=False),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_market_prices_timestamp", "market_prices", ["timestamp"], schema=SCHEMA
    )

    # --- candle cache ---
    op.create_table(
        "cache_candles",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("candle_type", sa.Text, nullable=False),
        sa.Column("interval", sa.Integer, nullable=False),
        sa.Column("market_idx", sa.Integer, nullable=False),
        sa.Column("resource_slug", sa.Text, nullable=False),
        sa.Column("timestamp", sa.BigInteger, nullable=False),
        sa.Column("end_timestamp", sa.BigInteger, nullable=False),
        sa.Column("last_updated_timestamp", sa.BigInteger, nullable=False),
        sa.Column("open", sa.Text, nullable=False),
        sa.Column("high", sa.Text, nullable=False),
        sa.Column("low", sa.Text, nullable=False),
        sa.Column("close", sa.Text, nullable=False),
        sa.Column("sum_fee_paid", sa.Text, nullable=True),
        sa.Column("sum_used", sa.Text, nullable=True),
        sa.Column("market_id", sa.Integer, nullable=True),
        sa.Column("address", sa.Text, nullable=True),
        sa.Column("chain_id", sa.Integer, nullable=True),
        sa.UniqueConstraint("candle_type", "interval", "market_idx", "resource_slug", "timestamp"),
        schema=SCHEMA,
    )

    op.create_table(
        "cache_params",
        sa.Column("param_name", sa.Text, primary_key=True),
        sa.Column("value", sa.Text, nullable=False),
        schema=SCHEMA,
    )


def downgrade() -> None:
    op.drop_table("cache_params", schema=SCHEMA)
    op.drop_table("cache_candles", schema=SCHEMA)
    op.drop_index("ix_market_prices_timestamp", table_name="market_prices", schema=SCHEMA)
    op.drop_table("market_prices", schema=SCHEMA)
    op.drop_index("ix_resource_prices_timestamp", table_name="resource_prices", schema=SCHEMA)
    op.drop_table("resource_prices", schema=SCHEMA)
    op.drop_table("markets", schema=SCHEMA)
    op.drop_table("market_groups", schema=SCHEMA)
    op.drop_table("resources", schema=SCHEMA)
