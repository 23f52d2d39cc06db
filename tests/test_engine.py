"""Tests for the detection engine."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from usdc_flow_tracker.chain.fetcher import FetchResult, FetchStatus
from usdc_flow_tracker.chain.models import EvmTransfer, Network, WalletRef
from usdc_flow_tracker.engine import DetectionEngine, EngineState
from usdc_flow_tracker.ledger.service import LedgerService
from usdc_flow_tracker.metrics.cache import ResultCache
from usdc_flow_tracker.storage.database import DatabaseManager
from usdc_flow_tracker.storage.repos import (
    InsightMessageRepository,
    MetricsSnapshotRepository,
)

WALLET = "0x742d35cc6634c0532925a3b844bc9e7595f5eae2"
OTHER = "0x1111111111111111111111111111111111111111"


def _transfer(tx_hash: str, raw_value: int = 5_000_000) -> EvmTransfer:
    return EvmTransfer(
        hash=tx_hash,
        from_address=OTHER,
        to_address=WALLET,
        raw_value=raw_value,
        block_timestamp=datetime.now(UTC),
    )


@pytest.fixture
def mock_directory() -> MagicMock:
    directory = MagicMock()
    directory.list_user_ids = AsyncMock(return_value=["user-1"])
    directory.list_active_wallets = AsyncMock(
        return_value=[WalletRef(address=WALLET, network=Network.POLYGON)]
    )
    directory.touch_last_active = AsyncMock()
    return directory


@pytest.fixture
def mock_fetcher() -> MagicMock:
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(
        return_value=FetchResult(
            network=Network.POLYGON,
            address=WALLET,
            transfers=(_transfer("0xa"), _transfer("0xb", 2_000_000)),
        )
    )
    fetcher.health_check = AsyncMock(return_value={Network.POLYGON: True, Network.SOLANA: False})
    fetcher.aclose = AsyncMock()
    return fetcher


@pytest.fixture
def engine(
    mock_directory: MagicMock, mock_fetcher: MagicMock, db_manager: DatabaseManager
) -> DetectionEngine:
    return DetectionEngine(
        directory=mock_directory,
        fetcher=mock_fetcher,
        ledger=LedgerService(db_manager),
        cache=ResultCache(ttl_seconds=300),
        db=db_manager,
        interval_minutes=60,
    )


class TestRunFullCycle:
    @pytest.mark.asyncio
    async def test_cycle_inserts_and_reports(
        self, engine: DetectionEngine, mock_directory: MagicMock
    ) -> None:
        report = await engine.run_full_cycle()

        assert report.users_processed == 1
        assert report.wallets_polled == 1
        assert report.inserted == 2
        assert report.duplicates == 0
        assert report.finished_at is not None
        mock_directory.touch_last_active.assert_awaited_once_with("user-1")
        assert engine.last_report is report

    @pytest.mark.asyncio
    async def test_second_cycle_is_idempotent(self, engine: DetectionEngine) -> None:
        await engine.run_full_cycle()
        report = await engine.run_full_cycle()

        assert report.inserted == 0
        assert report.duplicates == 2
        dashboard = await engine.get_dashboard("user-1")
        assert dashboard.metrics["analytics"]["transaction_count"] == 2
        assert dashboard.metrics["balances"]["polygon"] == pytest.approx(7.0)

    @pytest.mark.asyncio
    async def test_cycle_persists_snapshot_and_insight(
        self, engine: DetectionEngine, db_manager: DatabaseManager
    ) -> None:
        await engine.run_full_cycle()

        async with db_manager.get_async_session() as session:
            snapshot = await MetricsSnapshotRepository(session).get_latest("user-1")
            insights = await InsightMessageRepository(session).list_for_user("user-1")

        assert snapshot is not None
        assert snapshot.metrics["total_volume"]["total_volume"] == pytest.approx(7.0)
        assert [i.insight_type for i in insights] == ["suggestion"]

    @pytest.mark.asyncio
    async def test_user_failure_does_not_stop_cycle(
        self, engine: DetectionEngine, mock_directory: MagicMock
    ) -> None:
        mock_directory.list_user_ids.return_value = ["user-bad", "user-1"]

        async def wallets(user_id: str) -> list[WalletRef]:
            if user_id == "user-bad":
                raise RuntimeError("directory unavailable")
            return [WalletRef(address=WALLET, network=Network.POLYGON)]

        mock_directory.list_active_wallets.side_effect = wallets

        report = await engine.run_full_cycle()

        assert report.users_failed == 1
        assert report.users_processed == 1
        assert "user-bad" in report.errors
        assert report.inserted == 2

    @pytest.mark.asyncio
    async def test_directory_failure_recorded(
        self, engine: DetectionEngine, mock_directory: MagicMock
    ) -> None:
        mock_directory.list_user_ids.side_effect = RuntimeError("db down")

        report = await engine.run_full_cycle()

        assert report.users_processed == 0
        assert report.errors["*"] == "db down"

    @pytest.mark.asyncio
    async def test_fallback_counted(self, engine: DetectionEngine, mock_fetcher: MagicMock) -> None:
        mock_fetcher.fetch.return_value = FetchResult(
            network=Network.POLYGON,
            address=WALLET,
            status=FetchStatus.FALLBACK,
            failure_count=3,
        )

        report = await engine.run_full_cycle()

        assert report.fallbacks == 1
        assert report.inserted == 0
        assert report.users_processed == 1

    @pytest.mark.asyncio
    async def test_user_without_wallets_gets_zeroed_dashboard(
        self, engine: DetectionEngine, mock_directory: MagicMock
    ) -> None:
        mock_directory.list_active_wallets.return_value = []

        await engine.run_full_cycle()
        dashboard = await engine.get_dashboard("user-1")

        assert dashboard.metrics["analytics"]["total_volume"] == 0.0
        assert dashboard.metrics["insights"]["type"] == "welcome"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_when_idle_is_noop(self, engine: DetectionEngine) -> None:
        await engine.stop()
        assert engine.state == EngineState.IDLE

    @pytest.mark.asyncio
    async def test_start_runs_cycle_and_schedules_timer(self, engine: DetectionEngine) -> None:
        await engine.start()
        await engine.start()

        status = engine.status()
        assert status.running is True
        assert status.timer_active is True
        assert status.cycles_completed == 1
        assert status.last_run_at is not None

        await engine.stop()

        status = engine.status()
        assert status.running is False
        assert status.timer_active is False

    @pytest.mark.asyncio
    async def test_start_overrides_interval(self, engine: DetectionEngine) -> None:
        await engine.start(interval_minutes=30)
        assert engine.status().interval_minutes == 30
        await engine.stop()

    @pytest.mark.asyncio
    async def test_context_manager_releases_resources(
        self, engine: DetectionEngine, mock_fetcher: MagicMock
    ) -> None:
        async with engine as running:
            assert running.is_running

        assert engine.state == EngineState.IDLE
        mock_fetcher.aclose.assert_awaited_once()


class TestOnDemand:
    @pytest.mark.asyncio
    async def test_run_for_user(self, engine: DetectionEngine) -> None:
        assert await engine.run_for_user("user-1") is True

    @pytest.mark.asyncio
    async def test_run_for_user_failure(
        self, engine: DetectionEngine, mock_directory: MagicMock
    ) -> None:
        mock_directory.list_active_wallets.side_effect = RuntimeError("boom")
        assert await engine.run_for_user("user-1") is False

    @pytest.mark.asyncio
    async def test_dashboard_falls_back_to_empty_snapshot(
        self, engine: DetectionEngine, mock_directory: MagicMock
    ) -> None:
        mock_directory.list_active_wallets.side_effect = RuntimeError("boom")

        dashboard = await engine.get_dashboard("user-1")

        assert dashboard.user_id == "user-1"
        assert dashboard.metrics["insights"]["type"] == "system"

    @pytest.mark.asyncio
    async def test_dashboard_is_cached(
        self, engine: DetectionEngine, mock_directory: MagicMock
    ) -> None:
        first = await engine.get_dashboard("user-1")
        second = await engine.get_dashboard("user-1")

        assert first is second
        mock_directory.list_active_wallets.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_check_chain_health(self, engine: DetectionEngine) -> None:
        assert await engine.check_chain_health() == {"polygon": True, "solana": False}
