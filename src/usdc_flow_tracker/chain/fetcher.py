"""Failure-guarded transfer fetching across chain clients.

TransferFetcher is the only caller of the chain clients during a detection
cycle. It consults the FailureTracker before every call and converts client
errors into FetchResult values so a bad upstream never aborts a cycle.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from usdc_flow_tracker.chain.failures import FailureKey, FailureTracker
from usdc_flow_tracker.chain.models import Network, RawTransfer, TransientFetchError

logger = logging.getLogger(__name__)


class TransferClient(Protocol):
    """Interface implemented by every chain client."""

    network: Network

    async def fetch_transfers(self, address: str) -> Sequence[RawTransfer]: ...

    async def health_check(self) -> bool: ...

    async def aclose(self) -> None: ...


class FetchStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one guarded fetch."""

    network: Network
    address: str
    transfers: Sequence[RawTransfer] = field(default_factory=tuple)
    status: FetchStatus = FetchStatus.OK
    failure_count: int = 0

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.OK


class TransferFetcher:
    """Routes fetches to the client for a network, guarded by a FailureTracker."""

    def __init__(
        self,
        clients: Mapping[Network, TransferClient],
        tracker: FailureTracker,
    ) -> None:
        self._clients = dict(clients)
        self.tracker = tracker

    def _fallback(self, key: FailureKey) -> Sequence[RawTransfer]:
        logger.warning(
            "Fallback engaged for %s %s after %d failures",
            key.network.value,
            key.address[:10],
            self.tracker.failure_count(key),
        )
        return ()

    async def fetch(self, address: str, network: Network) -> FetchResult:
        """Fetch transfers for one wallet.

        Never raises for errors from the client; every failure is counted
        against the wallet.
        """
        client = self._clients.get(network)
        if client is None:
            logger.warning("No client configured for network %s", network.value)
            return FetchResult(network=network, address=address, status=FetchStatus.FAILED)

        key = FailureKey.of(network, address)
        if self.tracker.should_short_circuit(key):
            return FetchResult(
                network=network,
                address=address,
                transfers=self._fallback(key),
                status=FetchStatus.FALLBACK,
                failure_count=self.tracker.failure_count(key),
            )

        try:
            transfers = await client.fetch_transfers(address)
        except TransientFetchError as e:
            logger.warning("Fetch failed for %s %s: %s", network.value, address[:10], e)
            return self._failed(key, address)
        except Exception:
            # Client bugs count against the wallet like upstream failures
            logger.exception("Unexpected error fetching %s %s", network.value, address[:10])
            return self._failed(key, address)

        self.tracker.record_success(key)
        return FetchResult(network=network, address=address, transfers=tuple(transfers))

    def _failed(self, key: FailureKey, address: str) -> FetchResult:
        count = self.tracker.record_failure(key)
        logger.debug(
            "%s %s at %d/%d failures",
            key.network.value,
            address[:10],
            count,
            self.tracker.max_failures,
        )
        if count >= self.tracker.max_failures:
            return FetchResult(
                network=key.network,
                address=address,
                transfers=self._fallback(key),
                status=FetchStatus.FALLBACK,
                failure_count=count,
            )
        return FetchResult(
            network=key.network,
            address=address,
            status=FetchStatus.FAILED,
            failure_count=count,
        )

    async def health_check(self) -> dict[Network, bool]:
        """Run every client's health check."""
        return {network: await client.health_check() for network, client in self._clients.items()}

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
