"""SQLAlchemy models for persistent storage.

This module defines the database schema for the USDC ledger, per-wallet
balances, per-network volume distribution, dashboard snapshots and the
user/wallet directory.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TransactionModel(Base):
    """Append-only ledger of detected USDC transfers."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # EVM transaction hash or Solana signature (up to 88 base58 chars)
    hash: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    network: Mapped[str] = mapped_column(String(16), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False)
    direction: Mapped[str] = mapped_column(String(3), nullable=False)
    # Native token units (MATIC/SOL/TRX)
    fee: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False, default=Decimal(0))
    fee_savings: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False, default=Decimal(0))
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    indexed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_transactions_user_id", "user_id"),
        Index("idx_transactions_user_created", "user_id", "created_at"),
    )


class WalletBalanceModel(Base):
    """Running per-network USDC balance of one user's wallet."""

    __tablename__ = "wallet_balances"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(64), primary_key=True)

    polygon_balance: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False, default=Decimal(0))
    solana_balance: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False, default=Decimal(0))
    tron_balance: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False, default=Decimal(0))
    usd_equivalent: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False, default=Decimal(0))

    last_active: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_wallet_balances_user_id", "user_id"),)


class NetworkDistributionModel(Base):
    """Cumulative confirmed volume and usage share per (user, network)."""

    __tablename__ = "network_distribution"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    network: Mapped[str] = mapped_column(String(16), primary_key=True)

    volume_usdc: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False, default=Decimal(0))
    percent_usage: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False, default=Decimal(0))

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MetricsSnapshotModel(Base):
    """Dashboard snapshot persisted at the end of each user's cycle."""

    __tablename__ = "metrics_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    metrics: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (Index("idx_metrics_snapshots_user_generated", "user_id", "generated_at"),)


class InsightMessageModel(Base):
    """Rule-based insight generated after each metrics refresh."""

    __tablename__ = "insight_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    insight_type: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_insight_messages_user_id", "user_id"),)


class UserModel(Base):
    """Account whose wallets are polled."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    last_active: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class WalletConnectionModel(Base):
    """A wallet a user registered for detection."""

    __tablename__ = "wallet_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    network: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "wallet_address", "network", name="uq_wallet_connections_user_wallet"),
        Index("idx_wallet_connections_user_active", "user_id", "is_active"),
    )
