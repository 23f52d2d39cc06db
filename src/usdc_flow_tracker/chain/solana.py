"""Solana signature client over JSON-RPC.

Uses `getSignaturesForAddress` to list the most recent signatures that
touched a wallet. Solana addresses are base58 and case-sensitive, so they
are passed through unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from usdc_flow_tracker.chain.models import (
    PARSE_ERRORS,
    AccountTransfer,
    Network,
    TransientFetchError,
)
from usdc_flow_tracker.chain.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRANSFERS = 100
DEFAULT_MAX_REQUESTS_PER_SECOND = 10
DEFAULT_REQUEST_TIMEOUT = 30
HEALTH_CHECK_TIMEOUT = 5

# getSignaturesForAddress rejects larger limits
MAX_SIGNATURES_LIMIT = 1000


class SolanaClientError(TransientFetchError):
    """Raised when the Solana RPC returns an error or cannot be reached."""


class SolanaTransferClient:
    """Fetches signature records for Solana wallets."""

    network = Network.SOLANA

    def __init__(
        self,
        rpc_url: str,
        *,
        max_transfers: int = DEFAULT_MAX_TRANSFERS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._limit = min(max_transfers, MAX_SIGNATURES_LIMIT)
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._rate_limiter = RateLimiter.create(max_requests_per_second)
        self._session = session
        self._owns_session = session is None
        self._request_id = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _call(
        self,
        method: str,
        params: list[Any],
        *,
        address: str,
        timeout: aiohttp.ClientTimeout | None = None,
    ) -> Any:
        """Issue one JSON-RPC call and return its `result`.

        Raises:
            SolanaClientError: On transport failure, non-200 status, a body
                that is not a JSON object or an `error` object in the response.
        """
        await self._rate_limiter.acquire()
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        session = await self._get_session()
        try:
            async with session.post(
                self._rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=timeout or self._timeout,
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    raise SolanaClientError(
                        f"{method} returned HTTP {response.status}: {text[:200]}",
                        network=self.network,
                        address=address,
                    )
                body = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SolanaClientError(
                f"{method} request failed: {e}", network=self.network, address=address
            ) from e
        except ValueError as e:
            raise SolanaClientError(
                f"{method} returned undecodable body: {e}", network=self.network, address=address
            ) from e

        if not isinstance(body, dict):
            raise SolanaClientError(
                f"{method} returned {type(body).__name__} instead of an object",
                network=self.network,
                address=address,
            )
        if body.get("error"):
            raise SolanaClientError(
                f"{method} returned error: {body['error']}",
                network=self.network,
                address=address,
            )
        return body.get("result")

    async def fetch_transfers(self, address: str) -> list[AccountTransfer]:
        """Fetch the most recent signature records for a wallet.

        Raises:
            SolanaClientError: On transport failure, an error response or a
                result that is not a list of signature objects.
        """
        result = await self._call(
            "getSignaturesForAddress",
            [address, {"limit": self._limit}],
            address=address,
        )
        records = result if result is not None else []
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise SolanaClientError(
                "getSignaturesForAddress returned a malformed result",
                network=self.network,
                address=address,
            )
        logger.debug("Solana returned %d signatures for %s", len(records), address[:10])
        try:
            return [AccountTransfer.from_signature_info(r) for r in records[: self._limit]]
        except PARSE_ERRORS as e:
            raise SolanaClientError(
                f"Unparseable signature record: {e}", network=self.network, address=address
            ) from e

    async def health_check(self) -> bool:
        try:
            result = await self._call(
                "getHealth",
                [],
                address="",
                timeout=aiohttp.ClientTimeout(total=HEALTH_CHECK_TIMEOUT),
            )
        except SolanaClientError as e:
            logger.warning("Solana health check failed: %s", e)
            return False
        return result == "ok"

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
