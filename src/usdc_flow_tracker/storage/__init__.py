"""Storage layer for the USDC ledger and wallet directory."""

from usdc_flow_tracker.storage.database import DatabaseManager
from usdc_flow_tracker.storage.directory import SqlWalletDirectory, WalletDirectory
from usdc_flow_tracker.storage.models import (
    Base,
    InsightMessageModel,
    MetricsSnapshotModel,
    NetworkDistributionModel,
    TransactionModel,
    UserModel,
    WalletBalanceModel,
    WalletConnectionModel,
)
from usdc_flow_tracker.storage.repos import (
    DuplicateKeyError,
    InsightMessageDTO,
    InsightMessageRepository,
    MetricsSnapshotDTO,
    MetricsSnapshotRepository,
    NetworkDistributionDTO,
    NetworkDistributionRepository,
    PersistenceError,
    TransactionRepository,
    UserRepository,
    WalletBalanceDTO,
    WalletBalanceRepository,
    WalletConnectionRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "DuplicateKeyError",
    "InsightMessageDTO",
    "InsightMessageModel",
    "InsightMessageRepository",
    "MetricsSnapshotDTO",
    "MetricsSnapshotModel",
    "MetricsSnapshotRepository",
    "NetworkDistributionDTO",
    "NetworkDistributionModel",
    "NetworkDistributionRepository",
    "PersistenceError",
    "SqlWalletDirectory",
    "TransactionModel",
    "TransactionRepository",
    "UserModel",
    "UserRepository",
    "WalletBalanceDTO",
    "WalletBalanceModel",
    "WalletBalanceRepository",
    "WalletConnectionModel",
    "WalletConnectionRepository",
    "WalletDirectory",
]
