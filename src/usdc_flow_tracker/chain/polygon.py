"""Polygon USDC transfer client with rate limiting, retry and failover.

Transfers are fetched with the `alchemy_getAssetTransfers` JSON-RPC
method through web3's async HTTP provider:
- Rate limiting to respect provider limits
- Retry logic with exponential backoff
- Failover to secondary RPC URL
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any

from aiohttp import ClientError
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.providers import AsyncHTTPProvider
from web3.types import RPCEndpoint

from usdc_flow_tracker.chain.models import (
    PARSE_ERRORS,
    EvmTransfer,
    Network,
    TransientFetchError,
)
from usdc_flow_tracker.chain.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MAX_TRANSFERS = 100
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 30

ASSET_TRANSFERS_METHOD = RPCEndpoint("alchemy_getAssetTransfers")
BLOCK_NUMBER_METHOD = RPCEndpoint("eth_blockNumber")


class PolygonClientError(TransientFetchError):
    """Raised when the Polygon transfer API fails after retries and failover."""


class _RPCResponseError(Exception):
    """An `error` object returned in a JSON-RPC response body."""


# ValueError covers bodies that fail to decode as JSON
_RETRYABLE_ERRORS = (Web3Exception, ClientError, TimeoutError, ValueError, _RPCResponseError)


class PolygonTransferClient:
    """Polygon USDC transfer client.

    Example:
        ```python
        client = PolygonTransferClient(
            "https://polygon-mainnet.g.alchemy.com/v2/<key>",
            usdc_contract_addresses=("0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",),
        )
        transfers = await client.fetch_transfers("0x...")
        ```
    """

    network = Network.POLYGON

    def __init__(
        self,
        rpc_url: str,
        *,
        usdc_contract_addresses: Sequence[str],
        fallback_rpc_url: str | None = None,
        max_transfers: int = DEFAULT_MAX_TRANSFERS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the Polygon client.

        Args:
            rpc_url: Primary JSON-RPC endpoint URL.
            usdc_contract_addresses: Token contracts to include in transfer queries.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            max_transfers: Upper bound on transfers returned per request.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum retry attempts on failure.
            retry_delay_seconds: Initial delay between retries.
            request_timeout: Per-request timeout in seconds.
        """
        self._contracts = list(usdc_contract_addresses)
        self._max_transfers = max_transfers
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay_seconds
        self._request_timeout = request_timeout

        self._w3 = self._new_web3_client(rpc_url)
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = self._new_web3_client(fallback_rpc_url)

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        return AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": self._request_timeout})
        )

    def _should_try_primary(self) -> bool:
        """Check if we should try the primary RPC."""
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _request_once(
        self,
        w3: AsyncWeb3[AsyncHTTPProvider],
        method: RPCEndpoint,
        params: list[Any],
    ) -> Any:
        response = await w3.provider.make_request(method, params)
        if not isinstance(response, dict):
            raise _RPCResponseError(f"expected a JSON-RPC object, got {type(response).__name__}")
        error = response.get("error")
        if error:
            raise _RPCResponseError(str(error))
        return response.get("result")

    async def _call_endpoint(
        self,
        w3: AsyncWeb3[AsyncHTTPProvider],
        label: str,
        method: RPCEndpoint,
        params: list[Any],
    ) -> Any:
        """Call one endpoint with exponential backoff; re-raises the last error."""
        delay = self._retry_delay
        attempt = 1
        while True:
            try:
                return await self._request_once(w3, method, params)
            except _RETRYABLE_ERRORS as e:
                logger.warning(
                    "%s RPC %s failed (attempt %d/%d): %s",
                    label,
                    method,
                    attempt,
                    self._max_retries,
                    e,
                )
                if attempt >= self._max_retries:
                    raise
            await asyncio.sleep(delay)
            delay *= 2
            attempt += 1

    async def _execute_with_retry(
        self,
        method: RPCEndpoint,
        params: list[Any],
        *,
        address: str,
    ) -> Any:
        """Execute a JSON-RPC call on the primary endpoint, failing over to the fallback.

        Raises:
            PolygonClientError: If every attempt on every usable endpoint fails.
        """
        await self._rate_limiter.acquire()

        last_error: Exception | None = None
        if self._should_try_primary():
            try:
                result = await self._call_endpoint(self._w3, "Primary", method, params)
            except _RETRYABLE_ERRORS as e:
                last_error = e
                self._primary_healthy = False
                self._last_primary_check = time.monotonic()
            else:
                self._primary_healthy = True
                return result

        if self._w3_fallback is not None:
            try:
                result = await self._call_endpoint(self._w3_fallback, "Fallback", method, params)
            except _RETRYABLE_ERRORS as e:
                last_error = e
            else:
                logger.info("Fallback RPC served %s", method)
                return result

        raise PolygonClientError(
            f"RPC call {method} failed after all retries: {last_error}",
            network=self.network,
            address=address,
        ) from last_error

    def _transfer_params(self, address: str) -> dict[str, Any]:
        return {
            "toAddress": address,
            "category": ["erc20"],
            "contractAddresses": self._contracts,
            "maxCount": hex(self._max_transfers),
            "withMetadata": True,
            "excludeZeroValue": True,
        }

    async def fetch_transfers(self, address: str) -> list[EvmTransfer]:
        """Fetch the most recent incoming USDC transfers for a wallet.

        Args:
            address: Wallet address (case-insensitive).

        Returns:
            Transfers in the order returned by the API, at most `max_transfers`.

        Raises:
            PolygonClientError: On transport failure, an error response or a
                result without a list of transfer objects.
        """
        address = address.lower()
        result = await self._execute_with_retry(
            ASSET_TRANSFERS_METHOD,
            [self._transfer_params(address)],
            address=address,
        )
        if result is None:
            return []
        transfers = result.get("transfers", []) if isinstance(result, dict) else None
        if not isinstance(transfers, list) or not all(isinstance(t, dict) for t in transfers):
            raise PolygonClientError(
                f"{ASSET_TRANSFERS_METHOD} returned a malformed result",
                network=self.network,
                address=address,
            )
        try:
            return [EvmTransfer.from_alchemy(t) for t in transfers[: self._max_transfers]]
        except PARSE_ERRORS as e:
            raise PolygonClientError(
                f"Unparseable transfer in {ASSET_TRANSFERS_METHOD} result: {e}",
                network=self.network,
                address=address,
            ) from e

    async def health_check(self) -> bool:
        """Check if the client can reach the RPC.

        Returns:
            True if healthy, False otherwise.
        """
        try:
            await self._execute_with_retry(BLOCK_NUMBER_METHOD, [], address="")
            return True
        except PolygonClientError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions to avoid leaked aiohttp sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
