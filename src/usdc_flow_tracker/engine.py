"""Detection engine: the periodic cycle that drives the whole pipeline.

This module provides the DetectionEngine class that wires together the
wallet directory, guarded chain fetching, the ledger and the dashboard
metrics, and runs them on a repeating timer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from usdc_flow_tracker.chain.failures import FailureTracker
from usdc_flow_tracker.chain.fetcher import FetchStatus, TransferClient, TransferFetcher
from usdc_flow_tracker.chain.models import Network
from usdc_flow_tracker.chain.polygon import PolygonTransferClient
from usdc_flow_tracker.chain.solana import SolanaTransferClient
from usdc_flow_tracker.chain.tron import TronTransferClient
from usdc_flow_tracker.config import Settings, get_settings
from usdc_flow_tracker.ledger.service import LedgerService, ProcessOutcome
from usdc_flow_tracker.metrics.aggregator import MetricsSnapshot, build_snapshot, empty_snapshot
from usdc_flow_tracker.metrics.cache import ResultCache
from usdc_flow_tracker.storage.database import DatabaseManager
from usdc_flow_tracker.storage.directory import SqlWalletDirectory, WalletDirectory
from usdc_flow_tracker.storage.repos import (
    InsightMessageDTO,
    InsightMessageRepository,
    MetricsSnapshotDTO,
    MetricsSnapshotRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 5.0


class EngineState(str, Enum):
    """Engine lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"


@dataclass
class CycleReport:
    """Counters for one detection pass."""

    started_at: datetime
    finished_at: datetime | None = None
    users_processed: int = 0
    users_failed: int = 0
    wallets_polled: int = 0
    fetch_failures: int = 0
    fallbacks: int = 0
    inserted: int = 0
    duplicates: int = 0
    failed_records: int = 0
    errors: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class EngineStatus:
    """Point-in-time view of the engine."""

    running: bool
    timer_active: bool
    last_run_at: datetime | None
    cycles_completed: int
    cache_size: int
    interval_minutes: float


def _mask(user_id: str) -> str:
    return f"{user_id[:8]}****"


class DetectionEngine:
    """Runs detection cycles over every user's wallets.

    Cycle flow, per user:
        Wallet Directory → Guarded Fetch → Ledger → Metrics (cache + snapshot) → Insight

    Example:
        ```python
        from usdc_flow_tracker.config import get_settings
        from usdc_flow_tracker.engine import DetectionEngine

        engine = DetectionEngine.from_settings(get_settings())
        await engine.start()
        # Cycles repeat until stop() is called
        await engine.stop()
        await engine.aclose()
        ```
    """

    def __init__(
        self,
        *,
        directory: WalletDirectory,
        fetcher: TransferFetcher,
        ledger: LedgerService,
        cache: ResultCache,
        db: DatabaseManager,
        interval_minutes: float = DEFAULT_INTERVAL_MINUTES,
    ) -> None:
        self._directory = directory
        self._fetcher = fetcher
        self._ledger = ledger
        self._cache = cache
        self._db = db
        self._interval_minutes = interval_minutes

        self._state = EngineState.IDLE
        self._stop_event: asyncio.Event | None = None
        self._timer_task: asyncio.Task[None] | None = None

        self._last_run_at: datetime | None = None
        self._cycles_completed = 0
        self._last_report: CycleReport | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DetectionEngine:
        """Build every component from configuration.

        Raises:
            ConfigurationError: If a required endpoint or credential is missing.
        """
        settings = settings or get_settings()
        polygon_endpoint, solana_endpoint = settings.validate_requirements()
        detection = settings.detection

        clients: dict[Network, TransferClient] = {}
        clients[Network.POLYGON] = PolygonTransferClient(
            polygon_endpoint,
            usdc_contract_addresses=settings.polygon.usdc_contract_addresses,
            fallback_rpc_url=settings.polygon.fallback_rpc_url,
            max_transfers=detection.max_transfers,
            request_timeout=detection.request_timeout_seconds,
        )
        clients[Network.SOLANA] = SolanaTransferClient(
            solana_endpoint,
            max_transfers=detection.max_transfers,
            request_timeout=detection.request_timeout_seconds,
        )
        if settings.tron.enabled:
            clients[Network.TRON] = TronTransferClient(
                settings.tron.api_url,
                token_contract_address=settings.tron.token_contract_address,
                api_key=settings.tron.api_key.get_secret_value() if settings.tron.api_key else None,
                max_transfers=detection.max_transfers,
                request_timeout=detection.request_timeout_seconds,
            )

        tracker = FailureTracker(
            max_failures=detection.max_failures,
            recovery_seconds=detection.failure_recovery_seconds,
        )
        db = DatabaseManager(settings.database.url)
        redis = Redis.from_url(settings.redis.url) if settings.redis.url else None

        logger.debug("Engine configured for networks: %s", ", ".join(n.value for n in clients))
        return cls(
            directory=SqlWalletDirectory(db),
            fetcher=TransferFetcher(clients, tracker),
            ledger=LedgerService(db),
            cache=ResultCache(ttl_seconds=detection.dashboard_cache_ttl_seconds, redis=redis),
            db=db,
            interval_minutes=detection.interval_minutes,
        )

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == EngineState.RUNNING

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    def status(self) -> EngineStatus:
        return EngineStatus(
            running=self.is_running,
            timer_active=self._timer_task is not None and not self._timer_task.done(),
            last_run_at=self._last_run_at,
            cycles_completed=self._cycles_completed,
            cache_size=self._cache.size,
            interval_minutes=self._interval_minutes,
        )

    async def start(self, interval_minutes: float | None = None) -> None:
        """Run one cycle immediately, then repeat every interval.

        Calling start() while running does nothing.
        """
        if self._state == EngineState.RUNNING:
            logger.info("Detection engine already running")
            return

        if interval_minutes is not None:
            self._interval_minutes = interval_minutes
        self._state = EngineState.RUNNING
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        logger.info("Starting detection engine (every %.1f minutes)", self._interval_minutes)

        await self.run_full_cycle()

        if stop_event.is_set():
            return
        self._timer_task = asyncio.create_task(self._run_timer(stop_event))

    async def stop(self) -> None:
        """Prevent further cycles. A cycle already in progress runs to completion."""
        if self._state == EngineState.IDLE:
            return

        self._state = EngineState.IDLE
        if self._stop_event:
            self._stop_event.set()

        task = self._timer_task
        if task is not None and task is not asyncio.current_task():
            await task
        self._timer_task = None
        logger.info("Detection engine stopped")

    async def _run_timer(self, stop_event: asyncio.Event) -> None:
        interval = self._interval_minutes * 60
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass
            try:
                await self.run_full_cycle()
            except Exception as e:
                logger.error("Detection cycle failed: %s", e)

    async def run_full_cycle(self) -> CycleReport:
        """Process every user once, sequentially.

        A failure for one user is recorded in the report and does not stop
        the remaining users.
        """
        report = CycleReport(started_at=datetime.now(UTC))
        try:
            user_ids = await self._directory.list_user_ids()
        except Exception as e:
            logger.error("Could not list users: %s", e)
            report.errors["*"] = str(e)
            user_ids = []

        logger.info("Detection cycle started for %d users", len(user_ids))
        for user_id in user_ids:
            try:
                await self._process_user(user_id, report)
                report.users_processed += 1
            except Exception as e:
                report.users_failed += 1
                report.errors[user_id] = str(e)
                logger.error("Detection failed for user %s: %s", _mask(user_id), e)

        report.finished_at = datetime.now(UTC)
        self._last_run_at = report.finished_at
        self._cycles_completed += 1
        self._last_report = report
        logger.info(
            "Detection cycle finished: %d users, %d new transactions, %d duplicates, %d fallbacks",
            report.users_processed,
            report.inserted,
            report.duplicates,
            report.fallbacks,
        )
        return report

    async def run_for_user(self, user_id: str) -> bool:
        """Run the per-user steps outside the timer. Returns False on failure."""
        report = CycleReport(started_at=datetime.now(UTC))
        try:
            await self._process_user(user_id, report)
        except Exception as e:
            logger.error("Manual detection failed for user %s: %s", _mask(user_id), e)
            return False
        return True

    async def get_dashboard(self, user_id: str) -> MetricsSnapshot:
        """Cached dashboard for a user; a zeroed snapshot if it cannot be computed."""
        try:
            return await self._cache.get_or_compute(user_id, lambda: self._compute_snapshot(user_id))
        except Exception as e:
            logger.error("Dashboard calculation failed for user %s: %s", _mask(user_id), e)
            return empty_snapshot(user_id)

    async def check_chain_health(self) -> dict[str, bool]:
        health = await self._fetcher.health_check()
        return {network.value: ok for network, ok in health.items()}

    async def _process_user(self, user_id: str, report: CycleReport) -> None:
        wallets = await self._directory.list_active_wallets(user_id)
        if not wallets:
            logger.debug("No active wallets for user %s", _mask(user_id))

        for wallet in wallets:
            report.wallets_polled += 1
            result = await self._fetcher.fetch(wallet.address, wallet.network)
            if result.status == FetchStatus.FALLBACK:
                report.fallbacks += 1
            elif result.status == FetchStatus.FAILED:
                report.fetch_failures += 1

            outcomes = await self._ledger.process_transfers(
                user_id, result.transfers, wallet.network, wallet.address
            )
            for outcome in outcomes:
                if outcome.outcome == ProcessOutcome.INSERTED:
                    report.inserted += 1
                elif outcome.outcome == ProcessOutcome.DUPLICATE:
                    report.duplicates += 1
                else:
                    report.failed_records += 1

        snapshot = await self._refresh_metrics(user_id, len(wallets))
        await self._record_insight(user_id, snapshot)
        await self._directory.touch_last_active(user_id)

    async def _compute_snapshot(self, user_id: str, wallet_count: int | None = None) -> MetricsSnapshot:
        if wallet_count is None:
            wallet_count = len(await self._directory.list_active_wallets(user_id))
        transactions = await self._ledger.list_transactions(user_id)
        return build_snapshot(user_id, transactions, wallet_count)

    async def _refresh_metrics(self, user_id: str, wallet_count: int) -> MetricsSnapshot:
        await self._cache.invalidate(user_id)
        snapshot = await self._cache.get_or_compute(
            user_id, lambda: self._compute_snapshot(user_id, wallet_count)
        )
        async with self._db.get_async_session() as session:
            await MetricsSnapshotRepository(session).insert(
                MetricsSnapshotDTO(
                    user_id=user_id,
                    generated_at=snapshot.generated_at,
                    metrics=snapshot.to_dict(),
                )
            )
        return snapshot

    async def _record_insight(self, user_id: str, snapshot: MetricsSnapshot) -> None:
        insights: dict[str, Any] = snapshot.metrics.get("insights") or {}
        async with self._db.get_async_session() as session:
            await InsightMessageRepository(session).insert(
                InsightMessageDTO(
                    user_id=user_id,
                    insight_type=str(insights.get("type", "system")),
                    message=str(insights.get("message", "")),
                    risk_score=int(insights.get("risk_score", 0)),
                    created_at=snapshot.generated_at,
                )
            )

    async def init_schema(self) -> None:
        """Create missing tables (development databases; production uses alembic)."""
        await self._db.init_schema_async()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        await self._fetcher.aclose()
        await self._cache.aclose()
        await self._db.dispose_async()
        logger.debug("Resources cleaned up")

    async def aclose(self) -> None:
        """Stop cycles and release HTTP sessions, the database engine and Redis."""
        await self.stop()
        await self._cleanup()

    async def run(self) -> None:
        """Start the engine and block until stopped.

        Example:
            ```python
            engine = DetectionEngine.from_settings()
            try:
                await engine.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()
        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.aclose()

    async def __aenter__(self) -> DetectionEngine:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.aclose()
