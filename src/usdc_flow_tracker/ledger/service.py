"""Deduplicating ledger writes with balance and distribution updates."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from usdc_flow_tracker.chain.models import Network, RawTransfer
from usdc_flow_tracker.ledger.models import Transaction
from usdc_flow_tracker.ledger.normalizer import NormalizationError, dedup_key, normalize
from usdc_flow_tracker.storage.database import DatabaseManager
from usdc_flow_tracker.storage.repos import (
    DuplicateKeyError,
    NetworkDistributionRepository,
    PersistenceError,
    TransactionRepository,
    WalletBalanceRepository,
)

logger = logging.getLogger(__name__)


class ProcessOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class ProcessResult:
    """Result of ingesting one raw transfer."""

    outcome: ProcessOutcome
    tx_hash: str
    transaction: Transaction | None = None
    error: str | None = None


class LedgerService:
    """Writes normalized transfers to the ledger exactly once per hash.

    Each transfer is handled in its own session: the insert, the wallet
    balance increment and the distribution update commit together or not
    at all.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def process_transaction(
        self,
        user_id: str,
        raw: RawTransfer,
        network: Network,
        wallet_address: str,
        *,
        now: datetime | None = None,
    ) -> ProcessResult:
        """Ingest one raw transfer for a user's wallet.

        Already-stored hashes are reported as duplicates with no side
        effects. Malformed records and store failures are reported as
        failed; nothing is raised.
        """
        tx_hash = dedup_key(raw)
        if not tx_hash:
            return ProcessResult(ProcessOutcome.FAILED, tx_hash, error="missing transaction hash")

        try:
            async with self._db.get_async_session() as session:
                transactions = TransactionRepository(session)
                if await transactions.exists(tx_hash):
                    return ProcessResult(ProcessOutcome.DUPLICATE, tx_hash)

                tx = normalize(raw, network, wallet_address, user_id, now=now)
                await transactions.insert(tx)

                if tx.is_confirmed:
                    await WalletBalanceRepository(session).apply_delta(
                        user_id,
                        wallet_address,
                        network,
                        tx.signed_amount,
                        at=tx.created_at,
                    )
                    distribution = NetworkDistributionRepository(session)
                    await distribution.add_volume(user_id, network, tx.amount)
                    await distribution.recompute_percentages(user_id)
        except DuplicateKeyError:
            # Lost the race against a concurrent insert of the same hash
            return ProcessResult(ProcessOutcome.DUPLICATE, tx_hash)
        except NormalizationError as e:
            logger.warning("Skipping malformed %s record %s: %s", network.value, tx_hash[:16], e)
            return ProcessResult(ProcessOutcome.FAILED, tx_hash, error=str(e))
        except SQLAlchemyError as e:
            error = PersistenceError(f"Failed to store transaction {tx_hash}: {e}")
            logger.error("%s", error)
            return ProcessResult(ProcessOutcome.FAILED, tx_hash, error=str(error))

        logger.debug(
            "Stored %s %s %s USDC (%s) for user %s",
            network.value,
            tx.direction.value,
            tx.amount,
            tx_hash[:16],
            user_id[:8],
        )
        return ProcessResult(ProcessOutcome.INSERTED, tx_hash, transaction=tx)

    async def process_transfers(
        self,
        user_id: str,
        transfers: Iterable[RawTransfer],
        network: Network,
        wallet_address: str,
    ) -> list[ProcessResult]:
        """Ingest transfers in the order given."""
        return [
            await self.process_transaction(user_id, raw, network, wallet_address) for raw in transfers
        ]

    async def list_transactions(self, user_id: str) -> list[Transaction]:
        async with self._db.get_async_session() as session:
            return await TransactionRepository(session).list_for_user(user_id)
