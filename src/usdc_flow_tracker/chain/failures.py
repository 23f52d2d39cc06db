"""Consecutive-failure tracking per (network, address).

Once a key reaches the failure threshold, callers are told to short-circuit
to the fallback result instead of calling the network. After a recovery
interval one probe call is let through so that a success can be observed
and the key reset.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from usdc_flow_tracker.chain.models import Network, canonical_address

logger = logging.getLogger(__name__)

DEFAULT_MAX_FAILURES = 3
DEFAULT_RECOVERY_SECONDS = 600.0


@dataclass(frozen=True)
class FailureKey:
    """Tracker key for a single wallet on a single network."""

    network: Network
    address: str

    @classmethod
    def of(cls, network: Network, address: str) -> FailureKey:
        return cls(network=network, address=canonical_address(address, network))


@dataclass
class _Entry:
    count: int
    last_failure_at: float


class FailureTracker:
    """In-memory map of consecutive fetch failures.

    Counts are not persisted and reset on process restart.
    """

    def __init__(
        self,
        *,
        max_failures: int = DEFAULT_MAX_FAILURES,
        recovery_seconds: float = DEFAULT_RECOVERY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_failures < 1:
            raise ValueError("max_failures must be at least 1")
        self.max_failures = max_failures
        self.recovery_seconds = recovery_seconds
        self._clock = clock
        self._entries: dict[FailureKey, _Entry] = {}
        self._lock = threading.Lock()

    def record_failure(self, key: FailureKey) -> int:
        """Increment the failure count for a key and return the new count."""
        with self._lock:
            entry = self._entries.get(key)
            now = self._clock()
            if entry is None:
                entry = _Entry(count=0, last_failure_at=now)
                self._entries[key] = entry
            entry.count += 1
            entry.last_failure_at = now
            count = entry.count
        if count == self.max_failures:
            logger.warning(
                "Failure threshold reached for %s %s (%d consecutive failures)",
                key.network.value,
                key.address[:10],
                count,
            )
        return count

    def record_success(self, key: FailureKey) -> None:
        """Forget all failures recorded for a key."""
        with self._lock:
            removed = self._entries.pop(key, None)
        if removed is not None and removed.count >= self.max_failures:
            logger.info("Fetches recovered for %s %s", key.network.value, key.address[:10])

    def failure_count(self, key: FailureKey) -> int:
        with self._lock:
            entry = self._entries.get(key)
            return entry.count if entry else 0

    def should_short_circuit(self, key: FailureKey) -> bool:
        """Return True when a fetch for this key should skip the network call.

        A key at or above the threshold short-circuits until the recovery
        interval has elapsed since its last failure; then a single probe is
        allowed and the interval restarts.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.count < self.max_failures:
                return False
            now = self._clock()
            if now - entry.last_failure_at >= self.recovery_seconds:
                entry.last_failure_at = now
                return False
            return True

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
