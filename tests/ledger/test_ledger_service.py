"""Tests for deduplicating ledger writes."""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from usdc_flow_tracker.chain.models import AccountTransfer, EvmTransfer, Network
from usdc_flow_tracker.ledger.service import LedgerService, ProcessOutcome
from usdc_flow_tracker.storage.database import DatabaseManager
from usdc_flow_tracker.storage.repos import (
    NetworkDistributionRepository,
    TransactionRepository,
    WalletBalanceRepository,
)

WALLET = "0x742d35cc6634c0532925a3b844bc9e7595f5eae2"
OTHER = "0x1111111111111111111111111111111111111111"
SOL_WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
USER = "user-1"


def _incoming(tx_hash: str, raw_value: int = 5_000_000) -> EvmTransfer:
    return EvmTransfer(
        hash=tx_hash,
        from_address=OTHER,
        to_address=WALLET,
        raw_value=raw_value,
        block_timestamp=datetime(2026, 2, 1, tzinfo=UTC),
    )


@pytest.fixture
def ledger(db_manager: DatabaseManager) -> LedgerService:
    return LedgerService(db_manager)


async def _balance(db: DatabaseManager, wallet: str = WALLET):
    async with db.get_async_session() as session:
        return await WalletBalanceRepository(session).get(USER, wallet)


class TestProcessTransaction:
    @pytest.mark.asyncio
    async def test_insert_updates_balance(
        self, ledger: LedgerService, db_manager: DatabaseManager
    ) -> None:
        result = await ledger.process_transaction(USER, _incoming("0xa"), Network.POLYGON, WALLET)

        assert result.outcome == ProcessOutcome.INSERTED
        assert result.transaction is not None
        balance = await _balance(db_manager)
        assert balance is not None
        assert balance.polygon_balance == Decimal("5")
        assert balance.usd_equivalent == Decimal("5")

    @pytest.mark.asyncio
    async def test_duplicate_is_idempotent(
        self, ledger: LedgerService, db_manager: DatabaseManager
    ) -> None:
        await ledger.process_transaction(USER, _incoming("0xa"), Network.POLYGON, WALLET)
        second = await ledger.process_transaction(USER, _incoming("0xa"), Network.POLYGON, WALLET)

        assert second.outcome == ProcessOutcome.DUPLICATE
        balance = await _balance(db_manager)
        assert balance.polygon_balance == Decimal("5")
        async with db_manager.get_async_session() as session:
            assert await TransactionRepository(session).count_for_user(USER) == 1

    @pytest.mark.asyncio
    async def test_outgoing_reduces_balance(
        self, ledger: LedgerService, db_manager: DatabaseManager
    ) -> None:
        await ledger.process_transaction(USER, _incoming("0xa", 10_000_000), Network.POLYGON, WALLET)
        outgoing = EvmTransfer(hash="0xb", from_address=WALLET, to_address=OTHER, raw_value=4_000_000)
        await ledger.process_transaction(USER, outgoing, Network.POLYGON, WALLET)

        balance = await _balance(db_manager)
        assert balance.polygon_balance == Decimal("6")
        assert balance.usd_equivalent == balance.polygon_balance + balance.solana_balance + balance.tron_balance

    @pytest.mark.asyncio
    async def test_failed_transaction_leaves_balance(
        self, ledger: LedgerService, db_manager: DatabaseManager
    ) -> None:
        raw = AccountTransfer(signature="5bad", err={"x": 1}, ui_amount=Decimal("3"))
        result = await ledger.process_transaction(USER, raw, Network.SOLANA, SOL_WALLET)

        assert result.outcome == ProcessOutcome.INSERTED
        assert await _balance(db_manager, SOL_WALLET) is None

    @pytest.mark.asyncio
    async def test_malformed_record_fails(self, ledger: LedgerService) -> None:
        result = await ledger.process_transaction(
            USER, AccountTransfer(signature="5sig"), Network.POLYGON, WALLET
        )
        assert result.outcome == ProcessOutcome.FAILED
        assert result.error

    @pytest.mark.asyncio
    async def test_missing_hash_fails(self, ledger: LedgerService) -> None:
        result = await ledger.process_transaction(USER, _incoming(""), Network.POLYGON, WALLET)
        assert result.outcome == ProcessOutcome.FAILED

    @pytest.mark.asyncio
    async def test_store_error_reported_as_failed(
        self, ledger: LedgerService, db_manager: DatabaseManager
    ) -> None:
        with patch.object(
            TransactionRepository,
            "insert",
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
        ):
            result = await ledger.process_transaction(USER, _incoming("0xa"), Network.POLYGON, WALLET)

        assert result.outcome == ProcessOutcome.FAILED
        async with db_manager.get_async_session() as session:
            assert await TransactionRepository(session).exists("0xa") is False


class TestDistribution:
    @pytest.mark.asyncio
    async def test_percentages_sum_to_hundred(
        self, ledger: LedgerService, db_manager: DatabaseManager
    ) -> None:
        await ledger.process_transaction(USER, _incoming("0xa", 30_000_000), Network.POLYGON, WALLET)
        sol = AccountTransfer(signature="5sig", ui_amount=Decimal("10"), destination=SOL_WALLET)
        await ledger.process_transaction(USER, sol, Network.SOLANA, SOL_WALLET)

        async with db_manager.get_async_session() as session:
            rows = await NetworkDistributionRepository(session).list_for_user(USER)

        by_network = {r.network: r for r in rows}
        assert by_network[Network.POLYGON].volume_usdc == Decimal("30")
        assert by_network[Network.POLYGON].percent_usage == Decimal("75")
        assert by_network[Network.SOLANA].percent_usage == Decimal("25")
        assert sum(r.percent_usage for r in rows) == Decimal("100")


class TestProcessTransfers:
    @pytest.mark.asyncio
    async def test_results_in_order(self, ledger: LedgerService) -> None:
        results = await ledger.process_transfers(
            USER,
            [_incoming("0xa"), _incoming("0xa"), _incoming("0xb")],
            Network.POLYGON,
            WALLET,
        )
        assert [r.outcome for r in results] == [
            ProcessOutcome.INSERTED,
            ProcessOutcome.DUPLICATE,
            ProcessOutcome.INSERTED,
        ]
        assert [t.hash for t in await ledger.list_transactions(USER)] == ["0xa", "0xb"]
