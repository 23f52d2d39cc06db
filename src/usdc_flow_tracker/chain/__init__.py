"""Chain clients and guarded transfer fetching."""

from usdc_flow_tracker.chain.failures import FailureKey, FailureTracker
from usdc_flow_tracker.chain.fetcher import FetchResult, FetchStatus, TransferClient, TransferFetcher
from usdc_flow_tracker.chain.models import (
    USDC_DECIMALS,
    AccountTransfer,
    EvmTransfer,
    Network,
    RawTransfer,
    TransientFetchError,
    WalletRef,
)
from usdc_flow_tracker.chain.polygon import PolygonClientError, PolygonTransferClient
from usdc_flow_tracker.chain.solana import SolanaClientError, SolanaTransferClient
from usdc_flow_tracker.chain.tron import TronClientError, TronTransferClient

__all__ = [
    "USDC_DECIMALS",
    "AccountTransfer",
    "EvmTransfer",
    "FailureKey",
    "FailureTracker",
    "FetchResult",
    "FetchStatus",
    "Network",
    "PolygonClientError",
    "PolygonTransferClient",
    "RawTransfer",
    "SolanaClientError",
    "SolanaTransferClient",
    "TransferClient",
    "TransferFetcher",
    "TransientFetchError",
    "TronClientError",
    "TronTransferClient",
    "WalletRef",
]
