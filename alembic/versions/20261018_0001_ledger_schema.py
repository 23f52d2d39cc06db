"""Ledger, balances, distribution, snapshots and wallet directory.

Revision ID: 0001_ledger
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("hash", sa.String(128), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("network", sa.String(16), nullable=False),
        sa.Column("amount", sa.Numeric(30, 6), nullable=False),
        sa.Column("direction", sa.String(3), nullable=False),
        sa.Column("fee", sa.Numeric(38, 18), nullable=False),
        sa.Column("fee_savings", sa.Numeric(30, 6), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("indexed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("hash"),
    )
    op.create_index("idx_transactions_user_id", "transactions", ["user_id"])
    op.create_index("idx_transactions_user_created", "transactions", ["user_id", "created_at"])

    op.create_table(
        "wallet_balances",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("polygon_balance", sa.Numeric(30, 6), nullable=False),
        sa.Column("solana_balance", sa.Numeric(30, 6), nullable=False),
        sa.Column("tron_balance", sa.Numeric(30, 6), nullable=False),
        sa.Column("usd_equivalent", sa.Numeric(30, 6), nullable=False),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "wallet_address"),
    )
    op.create_index("idx_wallet_balances_user_id", "wallet_balances", ["user_id"])

    op.create_table(
        "network_distribution",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("network", sa.String(16), nullable=False),
        sa.Column("volume_usdc", sa.Numeric(30, 6), nullable=False),
        sa.Column("percent_usage", sa.Numeric(9, 4), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "network"),
    )

    op.create_table(
        "metrics_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metrics", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_metrics_snapshots_user_generated", "metrics_snapshots", ["user_id", "generated_at"]
    )

    op.create_table(
        "insight_messages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("insight_type", sa.String(32), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("risk_score", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_insight_messages_user_id", "insight_messages", ["user_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "wallet_connections",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("network", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "wallet_address", "network", name="uq_wallet_connections_user_wallet"
        ),
    )
    op.create_index(
        "idx_wallet_connections_user_active", "wallet_connections", ["user_id", "is_active"]
    )


def downgrade() -> None:
    op.drop_index("idx_wallet_connections_user_active", table_name="wallet_connections")
    op.drop_table("wallet_connections")
    op.drop_table("users")
    op.drop_index("idx_insight_messages_user_id", table_name="insight_messages")
    op.drop_table("insight_messages")
    op.drop_index("idx_metrics_snapshots_user_generated", table_name="metrics_snapshots")
    op.drop_table("metrics_snapshots")
    op.drop_table("network_distribution")
    op.drop_index("idx_wallet_balances_user_id", table_name="wallet_balances")
    op.drop_table("wallet_balances")
    op.drop_index("idx_transactions_user_created", table_name="transactions")
    op.drop_index("idx_transactions_user_id", table_name="transactions")
    op.drop_table("transactions")
