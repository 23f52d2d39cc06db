"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from usdc_flow_tracker.chain.models import Network
from usdc_flow_tracker.ledger.models import Direction, Transaction, TransactionStatus
from usdc_flow_tracker.storage.database import DatabaseManager
from usdc_flow_tracker.storage.models import Base

POLYGON_WALLET = "0x742d35cc6634c0532925a3b844bc9e7595f5eae2"
SOLANA_WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
NOW = datetime(2026, 6, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def db_manager():
    """DatabaseManager over a fresh in-memory SQLite database."""
    db = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await db.init_schema_async()
    yield db
    await db.dispose_async()


@pytest.fixture
def make_tx() -> Callable[..., Transaction]:
    """Factory for canonical transactions with sensible defaults."""
    counter = {"n": 0}

    def _make(
        amount: str | Decimal = "10",
        *,
        network: Network = Network.POLYGON,
        direction: Direction = Direction.IN,
        status: TransactionStatus = TransactionStatus.CONFIRMED,
        created_at: datetime = NOW,
        user_id: str = "user-1",
        wallet_address: str = POLYGON_WALLET,
        tx_hash: str | None = None,
    ) -> Transaction:
        counter["n"] += 1
        return Transaction(
            hash=tx_hash or f"0x{counter['n']:064x}",
            user_id=user_id,
            wallet_address=wallet_address,
            network=network,
            amount=Decimal(amount),
            direction=direction,
            fee=Decimal(0),
            fee_savings=Decimal(amount) * Decimal("0.029"),
            status=status,
            created_at=created_at,
            confirmed_at=created_at if status == TransactionStatus.CONFIRMED else None,
        )

    return _make
