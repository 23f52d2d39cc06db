"""Tests for the dashboard snapshot cache."""

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from usdc_flow_tracker.metrics.aggregator import MetricsSnapshot, build_snapshot
from usdc_flow_tracker.metrics.cache import ResultCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_redis() -> MagicMock:
    """Create a mock Redis client."""
    redis = MagicMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    redis.delete = AsyncMock()
    redis.aclose = AsyncMock()
    return redis


def _snapshot(user_id: str = "user-1", generated_at: datetime | None = None) -> MetricsSnapshot:
    return build_snapshot(user_id, [], 0, now=generated_at or datetime.now(UTC))


class TestLocalCache:
    @pytest.mark.asyncio
    async def test_hit_skips_compute(self, clock: FakeClock) -> None:
        cache = ResultCache(ttl_seconds=300, clock=clock)
        snapshot = _snapshot()
        compute = AsyncMock(return_value=snapshot)

        first = await cache.get_or_compute("user-1", compute)
        clock.now = 299
        second = await cache.get_or_compute("user-1", compute)

        assert first is snapshot
        assert second is snapshot
        compute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_recompute_after_expiry(self, clock: FakeClock) -> None:
        cache = ResultCache(ttl_seconds=300, clock=clock)
        compute = AsyncMock(side_effect=[_snapshot(), _snapshot()])

        first = await cache.get_or_compute("user-1", compute)
        clock.now = 300
        second = await cache.get_or_compute("user-1", compute)

        assert second is not first
        assert compute.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate(self, clock: FakeClock) -> None:
        cache = ResultCache(clock=clock)
        await cache.put("user-1", _snapshot())
        await cache.put("user-2", _snapshot("user-2"))

        await cache.invalidate("user-1")

        assert cache.get("user-1") is None
        assert cache.get("user-2") is not None
        assert cache.size == 1

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        cache = ResultCache()
        await cache.put("user-1", _snapshot())
        cache.clear()
        assert cache.size == 0


class TestSharedCache:
    @pytest.mark.asyncio
    async def test_put_mirrors_to_redis(self, mock_redis: MagicMock) -> None:
        cache = ResultCache(ttl_seconds=300, redis=mock_redis)
        await cache.put("user-1", _snapshot())

        mock_redis.set.assert_awaited_once()
        key, payload = mock_redis.set.await_args.args
        assert key == "usdc_flow:dashboard:user-1"
        assert json.loads(payload)["user_id"] == "user-1"
        assert mock_redis.set.await_args.kwargs["ex"] == 300

    @pytest.mark.asyncio
    async def test_local_miss_reads_redis(self, mock_redis: MagicMock) -> None:
        stored = _snapshot(generated_at=datetime.now(UTC) - timedelta(seconds=10))
        mock_redis.get.return_value = json.dumps(stored.to_dict()).encode()
        cache = ResultCache(ttl_seconds=300, redis=mock_redis)
        compute = AsyncMock()

        result = await cache.get_or_compute("user-1", compute)

        assert result.user_id == "user-1"
        assert result.generated_at == stored.generated_at
        compute.assert_not_awaited()
        assert cache.get("user-1") is not None

    @pytest.mark.asyncio
    async def test_stale_redis_entry_ignored(self, mock_redis: MagicMock) -> None:
        stored = _snapshot(generated_at=datetime.now(UTC) - timedelta(seconds=600))
        mock_redis.get.return_value = json.dumps(stored.to_dict())
        cache = ResultCache(ttl_seconds=300, redis=mock_redis)
        fresh = _snapshot()

        result = await cache.get_or_compute("user-1", AsyncMock(return_value=fresh))

        assert result is fresh

    @pytest.mark.asyncio
    async def test_redis_errors_ignored(self, mock_redis: MagicMock) -> None:
        mock_redis.get.side_effect = ConnectionError("redis down")
        mock_redis.set.side_effect = ConnectionError("redis down")
        mock_redis.delete.side_effect = ConnectionError("redis down")
        cache = ResultCache(redis=mock_redis)
        fresh = _snapshot()

        assert await cache.get_or_compute("user-1", AsyncMock(return_value=fresh)) is fresh
        await cache.invalidate("user-1")
        assert cache.size == 0

    @pytest.mark.asyncio
    async def test_invalidate_deletes_redis_key(self, mock_redis: MagicMock) -> None:
        cache = ResultCache(redis=mock_redis)
        await cache.invalidate("user-1")
        mock_redis.delete.assert_awaited_once_with("usdc_flow:dashboard:user-1")

    @pytest.mark.asyncio
    async def test_aclose(self, mock_redis: MagicMock) -> None:
        cache = ResultCache(redis=mock_redis)
        await cache.aclose()
        mock_redis.aclose.assert_awaited_once()
