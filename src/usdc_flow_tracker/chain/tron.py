"""TronGrid TRC20 transfer client.

Lists a wallet's TRC20 transactions and keeps those for the configured
stablecoin contract. Tron addresses are base58 and passed through unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from usdc_flow_tracker.chain.models import (
    PARSE_ERRORS,
    EvmTransfer,
    Network,
    TransientFetchError,
)
from usdc_flow_tracker.chain.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRANSFERS = 100
DEFAULT_MAX_REQUESTS_PER_SECOND = 10
DEFAULT_REQUEST_TIMEOUT = 30
HEALTH_CHECK_TIMEOUT = 5

# TronGrid page size cap
MAX_PAGE_LIMIT = 200


class TronClientError(TransientFetchError):
    """Raised when TronGrid returns an error or cannot be reached."""


def _token_address(record: dict[str, Any]) -> str | None:
    token_info = record.get("token_info")
    return token_info.get("address") if isinstance(token_info, dict) else None


class TronTransferClient:
    """Fetches TRC20 stablecoin transfers for Tron wallets."""

    network = Network.TRON

    def __init__(
        self,
        api_url: str,
        *,
        token_contract_address: str,
        api_key: str | None = None,
        max_transfers: int = DEFAULT_MAX_TRANSFERS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._contract = token_contract_address
        self._headers = {"Accept": "application/json"}
        if api_key:
            self._headers["TRON-PRO-API-KEY"] = api_key
        self._limit = min(max_transfers, MAX_PAGE_LIMIT)
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._rate_limiter = RateLimiter.create(max_requests_per_second)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None,
        *,
        address: str,
        timeout: aiohttp.ClientTimeout | None = None,
    ) -> dict[str, Any]:
        await self._rate_limiter.acquire()
        session = await self._get_session()
        try:
            async with session.get(
                f"{self._api_url}{path}",
                params=params,
                headers=self._headers,
                timeout=timeout or self._timeout,
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    raise TronClientError(
                        f"GET {path} returned HTTP {response.status}: {text[:200]}",
                        network=self.network,
                        address=address,
                    )
                body = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TronClientError(
                f"GET {path} failed: {e}", network=self.network, address=address
            ) from e
        except ValueError as e:
            raise TronClientError(
                f"GET {path} returned undecodable body: {e}", network=self.network, address=address
            ) from e

        if not isinstance(body, dict):
            raise TronClientError(
                f"GET {path} returned {type(body).__name__} instead of an object",
                network=self.network,
                address=address,
            )
        if body.get("success") is False or body.get("Error"):
            raise TronClientError(
                f"GET {path} returned error: {body.get('error') or body.get('Error')}",
                network=self.network,
                address=address,
            )
        return body

    async def fetch_transfers(self, address: str) -> list[EvmTransfer]:
        """Fetch recent TRC20 transfers of the watched contract for a wallet.

        Raises:
            TronClientError: On transport failure, an error response or a
                `data` field that is not a list of transaction objects.
        """
        body = await self._get(
            f"/v1/accounts/{address}/transactions/trc20",
            {"limit": self._limit, "contract_address": self._contract, "only_confirmed": "true"},
            address=address,
        )
        records = body.get("data")
        if records is None:
            records = []
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise TronClientError(
                "TRC20 transaction listing returned malformed data",
                network=self.network,
                address=address,
            )
        try:
            transfers = [
                EvmTransfer.from_trongrid(r)
                for r in records
                if _token_address(r) == self._contract
            ]
        except PARSE_ERRORS as e:
            raise TronClientError(
                f"Unparseable TRC20 record: {e}", network=self.network, address=address
            ) from e
        return transfers[: self._limit]

    async def health_check(self) -> bool:
        try:
            body = await self._get(
                "/wallet/getnowblock",
                None,
                address="",
                timeout=aiohttp.ClientTimeout(total=HEALTH_CHECK_TIMEOUT),
            )
        except TronClientError as e:
            logger.warning("Tron health check failed: %s", e)
            return False
        return bool(body.get("blockID"))

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
