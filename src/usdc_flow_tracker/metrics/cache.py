"""Per-user dashboard snapshot cache with TTL.

Snapshots are held in process memory. When a Redis client is supplied,
each stored snapshot is also written to Redis with the same TTL and read
back on a local miss, so several processes can share computed dashboards.
Redis errors never fail a lookup.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from redis.asyncio import Redis

from usdc_flow_tracker.metrics.aggregator import MetricsSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
DEFAULT_CACHE_PREFIX = "usdc_flow:dashboard:"


class ResultCache:
    """TTL cache of MetricsSnapshot keyed by user id."""

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        redis: Redis | None = None,
        cache_prefix: str = DEFAULT_CACHE_PREFIX,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._redis = redis
        self._cache_prefix = cache_prefix
        self._clock = clock
        self._entries: dict[str, tuple[MetricsSnapshot, float]] = {}

    @property
    def size(self) -> int:
        return len(self._entries)

    def _cache_key(self, user_id: str) -> str:
        return f"{self._cache_prefix}{user_id}"

    def get(self, user_id: str) -> MetricsSnapshot | None:
        """Return the locally cached snapshot if still fresh."""
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        snapshot, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[user_id]
            return None
        return snapshot

    async def get_or_compute(
        self,
        user_id: str,
        compute: Callable[[], Awaitable[MetricsSnapshot]],
    ) -> MetricsSnapshot:
        """Return the cached snapshot, or compute, store and return a new one."""
        cached = self.get(user_id)
        if cached is not None:
            return cached

        shared = await self._get_shared(user_id)
        if shared is not None:
            return shared

        snapshot = await compute()
        await self.put(user_id, snapshot)
        return snapshot

    async def put(self, user_id: str, snapshot: MetricsSnapshot) -> None:
        self._entries[user_id] = (snapshot, self._clock())
        await self._set_shared(user_id, snapshot)

    async def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)
        if not self._redis:
            return
        try:
            await self._redis.delete(self._cache_key(user_id))
        except Exception as e:
            logger.warning("Cache delete failed for user %s: %s", user_id[:8], e)
        logger.debug("Cleared dashboard cache for user %s", user_id[:8])

    def clear(self) -> None:
        """Drop every locally cached snapshot."""
        self._entries.clear()

    async def _get_shared(self, user_id: str) -> MetricsSnapshot | None:
        if not self._redis:
            return None
        try:
            cached = await self._redis.get(self._cache_key(user_id))
            if cached is None:
                return None
            data = json.loads(cached if isinstance(cached, str) else cached.decode())
            snapshot = MetricsSnapshot.from_dict(data)
        except Exception as e:
            logger.warning("Failed to read cached dashboard for user %s: %s", user_id[:8], e)
            return None

        age = (datetime.now(UTC) - snapshot.generated_at).total_seconds()
        if age >= self.ttl_seconds:
            return None
        # Local entry expires together with the shared one
        self._entries[user_id] = (snapshot, self._clock() - max(0.0, age))
        return snapshot

    async def _set_shared(self, user_id: str, snapshot: MetricsSnapshot) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(
                self._cache_key(user_id),
                json.dumps(snapshot.to_dict()),
                ex=max(1, int(self.ttl_seconds)),
            )
        except Exception as e:
            logger.warning("Cache set failed for user %s: %s", user_id[:8], e)

    async def aclose(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
