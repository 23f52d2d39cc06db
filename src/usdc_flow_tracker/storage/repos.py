"""Repository pattern implementations for data access.

This module provides data access abstractions for the transaction ledger,
wallet balances, network distribution, metrics snapshots, insight messages
and the user/wallet directory tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from usdc_flow_tracker.chain.models import Network
from usdc_flow_tracker.ledger.models import Direction, Transaction, TransactionStatus
from usdc_flow_tracker.storage.models import (
    InsightMessageModel,
    MetricsSnapshotModel,
    NetworkDistributionModel,
    TransactionModel,
    UserModel,
    WalletBalanceModel,
    WalletConnectionModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PERCENT_QUANTUM = Decimal("0.0001")

_BALANCE_COLUMNS = {
    Network.POLYGON: "polygon_balance",
    Network.SOLANA: "solana_balance",
    Network.TRON: "tron_balance",
}


class PersistenceError(Exception):
    """Raised when a ledger write fails in the store."""


class DuplicateKeyError(PersistenceError):
    """Raised when a transaction with the same hash is already stored."""

    def __init__(self, tx_hash: str) -> None:
        super().__init__(f"Transaction already stored: {tx_hash}")
        self.tx_hash = tx_hash


def _as_utc(ts: datetime) -> datetime:
    # SQLite drops tzinfo on DateTime(timezone=True) columns
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def _as_utc_or_none(ts: datetime | None) -> datetime | None:
    return _as_utc(ts) if ts is not None else None


def _insert(session: AsyncSession, model: Any) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def _transaction_from_model(model: TransactionModel) -> Transaction:
    return Transaction(
        hash=model.hash,
        user_id=model.user_id,
        wallet_address=model.wallet_address,
        network=Network(model.network),
        amount=Decimal(model.amount),
        direction=Direction(model.direction),
        fee=Decimal(model.fee),
        fee_savings=Decimal(model.fee_savings),
        status=TransactionStatus(model.status),
        created_at=_as_utc(model.created_at),
        confirmed_at=_as_utc_or_none(model.confirmed_at),
    )


class TransactionRepository:
    """Repository for the append-only transaction ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_hash(self, tx_hash: str) -> Transaction | None:
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.hash == tx_hash)
        )
        model = result.scalar_one_or_none()
        return _transaction_from_model(model) if model else None

    async def exists(self, tx_hash: str) -> bool:
        result = await self.session.execute(
            select(TransactionModel.id).where(TransactionModel.hash == tx_hash)
        )
        return result.first() is not None

    async def insert(self, tx: Transaction) -> Transaction:
        """Insert a transaction unless its hash is already stored.

        Raises:
            DuplicateKeyError: If a row with the same hash exists.
        """
        values = {
            "hash": tx.hash,
            "user_id": tx.user_id,
            "wallet_address": tx.wallet_address,
            "network": tx.network.value,
            "amount": tx.amount,
            "direction": tx.direction.value,
            "fee": tx.fee,
            "fee_savings": tx.fee_savings,
            "status": tx.status.value,
            "created_at": tx.created_at,
            "confirmed_at": tx.confirmed_at,
            "indexed_at": datetime.now(UTC),
        }
        stmt = _insert(self.session, TransactionModel).values(**values)
        stmt = stmt.on_conflict_do_nothing(index_elements=["hash"])
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise DuplicateKeyError(tx.hash)
        return tx

    async def list_for_user(self, user_id: str) -> list[Transaction]:
        """All of a user's transactions, oldest first."""
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.user_id == user_id)
            .order_by(TransactionModel.created_at.asc(), TransactionModel.id.asc())
        )
        return [_transaction_from_model(m) for m in result.scalars().all()]

    async def count_for_user(self, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(TransactionModel).where(TransactionModel.user_id == user_id)
        )
        return int(result.scalar_one())


@dataclass
class WalletBalanceDTO:
    """Data transfer object for a wallet's running balances."""

    user_id: str
    wallet_address: str
    polygon_balance: Decimal
    solana_balance: Decimal
    tron_balance: Decimal
    usd_equivalent: Decimal
    last_active: datetime

    @classmethod
    def from_model(cls, model: WalletBalanceModel) -> WalletBalanceDTO:
        return cls(
            user_id=model.user_id,
            wallet_address=model.wallet_address,
            polygon_balance=Decimal(model.polygon_balance),
            solana_balance=Decimal(model.solana_balance),
            tron_balance=Decimal(model.tron_balance),
            usd_equivalent=Decimal(model.usd_equivalent),
            last_active=_as_utc(model.last_active),
        )

    def balance_for(self, network: Network) -> Decimal:
        value: Decimal = getattr(self, _BALANCE_COLUMNS[network])
        return value


class WalletBalanceRepository:
    """Repository for per-wallet balances."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _select_one(user_id: str, wallet_address: str) -> Select[tuple[WalletBalanceModel]]:
        # Rows are incremented with bulk UPDATEs that bypass the identity map
        return (
            select(WalletBalanceModel)
            .where(
                WalletBalanceModel.user_id == user_id,
                WalletBalanceModel.wallet_address == wallet_address,
            )
            .execution_options(populate_existing=True)
        )

    async def get(self, user_id: str, wallet_address: str) -> WalletBalanceDTO | None:
        result = await self.session.execute(self._select_one(user_id, wallet_address))
        model = result.scalar_one_or_none()
        return WalletBalanceDTO.from_model(model) if model else None

    async def list_for_user(self, user_id: str) -> list[WalletBalanceDTO]:
        result = await self.session.execute(
            select(WalletBalanceModel)
            .where(WalletBalanceModel.user_id == user_id)
            .order_by(WalletBalanceModel.wallet_address.asc())
            .execution_options(populate_existing=True)
        )
        return [WalletBalanceDTO.from_model(m) for m in result.scalars().all()]

    async def apply_delta(
        self,
        user_id: str,
        wallet_address: str,
        network: Network,
        delta: Decimal,
        *,
        at: datetime | None = None,
    ) -> WalletBalanceDTO:
        """Add a signed amount to one network's balance of a wallet.

        The row is created if missing, then incremented server-side so
        concurrent updates to the same wallet do not lose writes. The
        USD equivalent is moved by the same delta.
        """
        at = at or datetime.now(UTC)
        zero = Decimal(0)
        stmt = _insert(self.session, WalletBalanceModel).values(
            user_id=user_id,
            wallet_address=wallet_address,
            polygon_balance=zero,
            solana_balance=zero,
            tron_balance=zero,
            usd_equivalent=zero,
            last_active=at,
        )
        await self.session.execute(
            stmt.on_conflict_do_nothing(index_elements=["user_id", "wallet_address"])
        )

        column = getattr(WalletBalanceModel, _BALANCE_COLUMNS[network])
        await self.session.execute(
            update(WalletBalanceModel)
            .where(
                WalletBalanceModel.user_id == user_id,
                WalletBalanceModel.wallet_address == wallet_address,
            )
            .values(
                {
                    column: column + delta,
                    WalletBalanceModel.usd_equivalent: WalletBalanceModel.usd_equivalent + delta,
                    WalletBalanceModel.last_active: at,
                }
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()

        result = await self.session.execute(self._select_one(user_id, wallet_address))
        return WalletBalanceDTO.from_model(result.scalar_one())


@dataclass
class NetworkDistributionDTO:
    """Data transfer object for a user's volume share on one network."""

    user_id: str
    network: Network
    volume_usdc: Decimal
    percent_usage: Decimal

    @classmethod
    def from_model(cls, model: NetworkDistributionModel) -> NetworkDistributionDTO:
        return cls(
            user_id=model.user_id,
            network=Network(model.network),
            volume_usdc=Decimal(model.volume_usdc),
            percent_usage=Decimal(model.percent_usage),
        )


class NetworkDistributionRepository:
    """Repository for per-network volume distribution."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_for_user(self, user_id: str) -> list[NetworkDistributionDTO]:
        result = await self.session.execute(
            select(NetworkDistributionModel)
            .where(NetworkDistributionModel.user_id == user_id)
            .order_by(NetworkDistributionModel.network.asc())
            .execution_options(populate_existing=True)
        )
        return [NetworkDistributionDTO.from_model(m) for m in result.scalars().all()]

    async def add_volume(self, user_id: str, network: Network, amount: Decimal) -> None:
        """Add to the cumulative volume of (user, network), creating the row if missing."""
        now = datetime.now(UTC)
        stmt = _insert(self.session, NetworkDistributionModel).values(
            user_id=user_id,
            network=network.value,
            volume_usdc=Decimal(0),
            percent_usage=Decimal(0),
            updated_at=now,
        )
        await self.session.execute(stmt.on_conflict_do_nothing(index_elements=["user_id", "network"]))
        await self.session.execute(
            update(NetworkDistributionModel)
            .where(
                NetworkDistributionModel.user_id == user_id,
                NetworkDistributionModel.network == network.value,
            )
            .values(
                volume_usdc=NetworkDistributionModel.volume_usdc + amount,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()

    async def recompute_percentages(self, user_id: str) -> list[NetworkDistributionDTO]:
        """Rewrite percent_usage of every row of a user from current volumes."""
        rows = await self.list_for_user(user_id)
        total = sum((r.volume_usdc for r in rows), Decimal(0))
        now = datetime.now(UTC)
        for row in rows:
            percent = (
                (row.volume_usdc / total * 100).quantize(PERCENT_QUANTUM) if total > 0 else Decimal(0)
            )
            await self.session.execute(
                update(NetworkDistributionModel)
                .where(
                    NetworkDistributionModel.user_id == user_id,
                    NetworkDistributionModel.network == row.network.value,
                )
                .values(percent_usage=percent, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            row.percent_usage = percent
        await self.session.flush()
        return rows


@dataclass
class MetricsSnapshotDTO:
    """Data transfer object for a persisted dashboard snapshot."""

    user_id: str
    generated_at: datetime
    metrics: dict[str, Any]

    @classmethod
    def from_model(cls, model: MetricsSnapshotModel) -> MetricsSnapshotDTO:
        return cls(
            user_id=model.user_id,
            generated_at=_as_utc(model.generated_at),
            metrics=dict(model.metrics),
        )


class MetricsSnapshotRepository:
    """Repository for persisted dashboard snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: MetricsSnapshotDTO) -> None:
        self.session.add(
            MetricsSnapshotModel(
                user_id=dto.user_id,
                generated_at=dto.generated_at,
                metrics=dto.metrics,
            )
        )
        await self.session.flush()

    async def get_latest(self, user_id: str) -> MetricsSnapshotDTO | None:
        result = await self.session.execute(
            select(MetricsSnapshotModel)
            .where(MetricsSnapshotModel.user_id == user_id)
            .order_by(MetricsSnapshotModel.generated_at.desc(), MetricsSnapshotModel.id.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return MetricsSnapshotDTO.from_model(model) if model else None


@dataclass
class InsightMessageDTO:
    """Data transfer object for an insight message."""

    user_id: str
    insight_type: str
    message: str
    risk_score: int
    created_at: datetime

    @classmethod
    def from_model(cls, model: InsightMessageModel) -> InsightMessageDTO:
        return cls(
            user_id=model.user_id,
            insight_type=model.insight_type,
            message=model.message,
            risk_score=model.risk_score,
            created_at=_as_utc(model.created_at),
        )


class InsightMessageRepository:
    """Repository for insight messages."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: InsightMessageDTO) -> None:
        self.session.add(
            InsightMessageModel(
                user_id=dto.user_id,
                insight_type=dto.insight_type,
                message=dto.message,
                risk_score=dto.risk_score,
                created_at=dto.created_at,
            )
        )
        await self.session.flush()

    async def list_for_user(self, user_id: str, *, limit: int = 20) -> list[InsightMessageDTO]:
        result = await self.session.execute(
            select(InsightMessageModel)
            .where(InsightMessageModel.user_id == user_id)
            .order_by(InsightMessageModel.created_at.desc(), InsightMessageModel.id.desc())
            .limit(limit)
        )
        return [InsightMessageDTO.from_model(m) for m in result.scalars().all()]


@dataclass
class UserDTO:
    """Data transfer object for a user."""

    id: str
    email: str | None
    last_active: datetime | None

    @classmethod
    def from_model(cls, model: UserModel) -> UserDTO:
        return cls(id=model.id, email=model.email, last_active=_as_utc_or_none(model.last_active))


class UserRepository:
    """Repository for users."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _select_one(user_id: str) -> Select[tuple[UserModel]]:
        return (
            select(UserModel)
            .where(UserModel.id == user_id)
            .execution_options(populate_existing=True)
        )

    async def get(self, user_id: str) -> UserDTO | None:
        result = await self.session.execute(self._select_one(user_id))
        model = result.scalar_one_or_none()
        return UserDTO.from_model(model) if model else None

    async def list_ids(self) -> list[str]:
        result = await self.session.execute(
            select(UserModel.id).order_by(UserModel.created_at.asc(), UserModel.id.asc())
        )
        return list(result.scalars().all())

    async def ensure(self, user_id: str, *, email: str | None = None) -> UserDTO:
        """Create the user if missing and return it."""
        stmt = _insert(self.session, UserModel).values(
            id=user_id, email=email, created_at=datetime.now(UTC)
        )
        await self.session.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))
        await self.session.flush()
        result = await self.session.execute(self._select_one(user_id))
        return UserDTO.from_model(result.scalar_one())

    async def touch_last_active(self, user_id: str, *, at: datetime | None = None) -> bool:
        """Set last_active; returns False if the user does not exist."""
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(last_active=at or datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return bool(result.rowcount)


@dataclass
class WalletConnectionDTO:
    """Data transfer object for a registered wallet."""

    user_id: str
    wallet_address: str
    network: Network
    is_active: bool

    @classmethod
    def from_model(cls, model: WalletConnectionModel) -> WalletConnectionDTO:
        return cls(
            user_id=model.user_id,
            wallet_address=model.wallet_address,
            network=Network(model.network),
            is_active=model.is_active,
        )


class WalletConnectionRepository:
    """Repository for wallets registered by users."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_active(self, user_id: str) -> list[WalletConnectionDTO]:
        result = await self.session.execute(
            select(WalletConnectionModel)
            .where(
                WalletConnectionModel.user_id == user_id,
                WalletConnectionModel.is_active.is_(True),
            )
            .order_by(WalletConnectionModel.id.asc())
        )
        return [WalletConnectionDTO.from_model(m) for m in result.scalars().all()]

    async def upsert(self, dto: WalletConnectionDTO) -> None:
        """Register a wallet, reactivating it if it was registered before."""
        values = {
            "user_id": dto.user_id,
            "wallet_address": dto.wallet_address,
            "network": dto.network.value,
            "is_active": dto.is_active,
            "created_at": datetime.now(UTC),
        }
        stmt = _insert(self.session, WalletConnectionModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "wallet_address", "network"],
            set_={"is_active": stmt.excluded.is_active},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def deactivate(self, user_id: str, wallet_address: str, network: Network) -> bool:
        result = await self.session.execute(
            update(WalletConnectionModel)
            .where(
                WalletConnectionModel.user_id == user_id,
                WalletConnectionModel.wallet_address == wallet_address,
                WalletConnectionModel.network == network.value,
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return bool(result.rowcount)
