"""Maps raw chain records into canonical Transactions.

Each raw variant has its own normalization function. The network tag picks
the function, and a record whose shape does not match its network is
rejected rather than probed.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal

from usdc_flow_tracker.chain.models import AccountTransfer, EvmTransfer, Network, RawTransfer
from usdc_flow_tracker.ledger.models import Direction, Transaction, TransactionStatus

# Flat card-processing rate used for the fee-savings estimate
TRADITIONAL_FEE_RATE = Decimal("0.029")

WEI_PER_NATIVE = Decimal(10) ** 18


class NormalizationError(ValueError):
    """Raised when a raw record cannot be mapped to a Transaction."""


def extract_amount(raw: RawTransfer) -> Decimal:
    """USDC amount carried by a raw record.

    EVM values are fixed-point integers scaled by the token decimals;
    account records carry a pre-scaled UI amount.
    """
    if isinstance(raw, EvmTransfer):
        if raw.raw_value is None:
            return Decimal(0)
        return Decimal(raw.raw_value) / (Decimal(10) ** raw.decimals)
    return raw.ui_amount if raw.ui_amount is not None else Decimal(0)


def determine_direction(to_address: str | None, from_address: str | None, observer: str) -> Direction:
    """Direction relative to the observing wallet.

    A record matching neither side defaults to incoming.
    """
    observer_lc = observer.lower()
    if to_address and to_address.lower() == observer_lc:
        return Direction.IN
    if from_address and from_address.lower() == observer_lc:
        return Direction.OUT
    return Direction.IN


def extract_fee(raw: RawTransfer) -> Decimal:
    """Network fee in native token units; zero when gas data is absent."""
    if isinstance(raw, EvmTransfer) and raw.gas_used is not None and raw.gas_price is not None:
        return Decimal(raw.gas_used) * Decimal(raw.gas_price) / WEI_PER_NATIVE
    return Decimal(0)


def calculate_fee_savings(amount: Decimal, fee: Decimal) -> Decimal:
    return max(Decimal(0), amount * TRADITIONAL_FEE_RATE - fee)


def _normalize_evm(
    raw: RawTransfer, network: Network, observer: str, user_id: str, now: datetime
) -> Transaction:
    if not isinstance(raw, EvmTransfer):
        raise NormalizationError(f"{network.value} expects an EVM transfer, got {type(raw).__name__}")
    if not raw.hash:
        raise NormalizationError("EVM transfer has no transaction hash")
    amount = extract_amount(raw)
    fee = extract_fee(raw)
    created_at = raw.block_timestamp or now
    return Transaction(
        hash=raw.hash,
        user_id=user_id,
        wallet_address=observer,
        network=network,
        amount=amount,
        direction=determine_direction(raw.to_address, raw.from_address, observer),
        fee=fee,
        fee_savings=calculate_fee_savings(amount, fee),
        status=TransactionStatus.CONFIRMED,
        created_at=created_at,
        confirmed_at=created_at,
    )


def _normalize_account(
    raw: RawTransfer, network: Network, observer: str, user_id: str, now: datetime
) -> Transaction:
    if not isinstance(raw, AccountTransfer):
        raise NormalizationError(f"{network.value} expects a signature record, got {type(raw).__name__}")
    if not raw.signature:
        raise NormalizationError("Signature record has no signature")
    amount = extract_amount(raw)
    fee = extract_fee(raw)
    created_at = raw.block_time or now
    status = TransactionStatus.FAILED if raw.failed else TransactionStatus.CONFIRMED
    return Transaction(
        hash=raw.signature,
        user_id=user_id,
        wallet_address=observer,
        network=network,
        amount=amount,
        direction=determine_direction(raw.destination, raw.source, observer),
        fee=fee,
        fee_savings=calculate_fee_savings(amount, fee),
        status=status,
        created_at=created_at,
        confirmed_at=created_at if status == TransactionStatus.CONFIRMED else None,
    )


_NORMALIZERS: dict[Network, Callable[[RawTransfer, Network, str, str, datetime], Transaction]] = {
    Network.POLYGON: _normalize_evm,
    Network.TRON: _normalize_evm,
    Network.SOLANA: _normalize_account,
}


def dedup_key(raw: RawTransfer) -> str:
    """Unique ledger key of a raw record."""
    return raw.hash if isinstance(raw, EvmTransfer) else raw.signature


def normalize(
    raw: RawTransfer,
    network: Network,
    observer_wallet: str,
    user_id: str,
    *,
    now: datetime | None = None,
) -> Transaction:
    """Convert a raw chain record into a Transaction.

    Args:
        raw: Record returned by the chain client for `network`.
        network: Network the record was fetched from.
        observer_wallet: The user's wallet the record was fetched for.
        user_id: Owner of the wallet.
        now: Timestamp used when the record carries no block time.

    Raises:
        NormalizationError: If the record shape does not match the network
            or its key is missing.
    """
    normalizer = _NORMALIZERS.get(network)
    if normalizer is None:
        raise NormalizationError(f"Unsupported network: {network}")
    return normalizer(raw, network, observer_wallet, user_id, now or datetime.now(UTC))
