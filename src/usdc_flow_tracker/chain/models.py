"""Raw transfer records as returned by each chain's indexing API.

Two structurally different shapes exist: EVM asset-transfer events
(Polygon, and TRC20 on Tron which shares the same from/to/value layout)
and account-signature records (Solana). Both are parsed once at the
client boundary so downstream code never probes dict keys.
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

USDC_DECIMALS = 6

# Raised by the from_* constructors on records with unexpected field types
PARSE_ERRORS = (AttributeError, TypeError, ValueError, OverflowError, OSError)


class Network(str, Enum):
    """Supported chains."""

    POLYGON = "polygon"
    SOLANA = "solana"
    TRON = "tron"


def canonical_address(address: str, network: Network) -> str:
    """EVM addresses are case-insensitive; base58 addresses are not."""
    address = address.strip()
    return address.lower() if network == Network.POLYGON else address


class TransientFetchError(Exception):
    """Raised when a chain API call fails at transport or application level."""

    def __init__(self, message: str, *, network: Network, address: str) -> None:
        super().__init__(message)
        self.network = network
        self.address = address


def _parse_int(value: Any) -> int | None:
    """Parse an integer that may arrive as int, decimal string or 0x-hex string."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        if isinstance(value, str):
            return int(value, 0) if value.lower().startswith("0x") else int(Decimal(value))
        return int(value)
    except (ValueError, TypeError, InvalidOperation):
        return None


def _parse_iso_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    with contextlib.suppress(ValueError):
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return ts if ts.tzinfo else ts.replace(tzinfo=UTC)
    return None


@dataclass(frozen=True)
class EvmTransfer:
    """An ERC20/TRC20-style token transfer event."""

    hash: str
    from_address: str | None
    to_address: str | None
    raw_value: int | None
    decimals: int = USDC_DECIMALS
    block_number: int | None = None
    block_timestamp: datetime | None = None
    gas_used: int | None = None
    gas_price: int | None = None

    @classmethod
    def from_alchemy(cls, data: dict[str, Any]) -> EvmTransfer:
        """Create an EvmTransfer from an `alchemy_getAssetTransfers` entry."""
        raw_contract = data.get("rawContract") or {}
        metadata = data.get("metadata") or {}
        decimals = _parse_int(raw_contract.get("decimal"))
        return cls(
            hash=str(data.get("hash") or data.get("uniqueId") or ""),
            from_address=data.get("from"),
            to_address=data.get("to"),
            raw_value=_parse_int(raw_contract.get("value")),
            decimals=decimals if decimals is not None else USDC_DECIMALS,
            block_number=_parse_int(data.get("blockNum")),
            block_timestamp=_parse_iso_timestamp(metadata.get("blockTimestamp")),
            gas_used=_parse_int(data.get("gasUsed")),
            gas_price=_parse_int(data.get("gasPrice")),
        )

    @classmethod
    def from_trongrid(cls, data: dict[str, Any]) -> EvmTransfer:
        """Create an EvmTransfer from a TronGrid TRC20 transaction entry."""
        token_info = data.get("token_info") or {}
        decimals = _parse_int(token_info.get("decimals"))
        block_ms = _parse_int(data.get("block_timestamp"))
        return cls(
            hash=str(data.get("transaction_id") or ""),
            from_address=data.get("from"),
            to_address=data.get("to"),
            raw_value=_parse_int(data.get("value")),
            decimals=decimals if decimals is not None else USDC_DECIMALS,
            block_timestamp=(
                datetime.fromtimestamp(block_ms / 1000.0, tz=UTC) if block_ms is not None else None
            ),
        )


@dataclass(frozen=True)
class AccountTransfer:
    """A signature record for an account-based chain."""

    signature: str
    slot: int | None = None
    block_time: datetime | None = None
    err: Any = None
    confirmation_status: str | None = None
    memo: str | None = None
    ui_amount: Decimal | None = None
    source: str | None = None
    destination: str | None = None

    @property
    def failed(self) -> bool:
        return self.err is not None

    @classmethod
    def from_signature_info(cls, data: dict[str, Any]) -> AccountTransfer:
        """Create an AccountTransfer from a `getSignaturesForAddress` entry.

        Parsed-transfer fields (`tokenAmount`, `source`, `destination`) are
        picked up when an enriched indexer returns them.
        """
        block_time = _parse_int(data.get("blockTime"))
        token_amount = data.get("tokenAmount") or {}
        ui_amount_raw = token_amount.get("uiAmount") if isinstance(token_amount, dict) else None
        ui_amount: Decimal | None = None
        if ui_amount_raw is not None:
            with contextlib.suppress(InvalidOperation, ValueError, TypeError):
                ui_amount = Decimal(str(ui_amount_raw))
        return cls(
            signature=str(data.get("signature") or ""),
            slot=_parse_int(data.get("slot")),
            block_time=(
                datetime.fromtimestamp(block_time, tz=UTC) if block_time is not None else None
            ),
            err=data.get("err"),
            confirmation_status=data.get("confirmationStatus"),
            memo=data.get("memo"),
            ui_amount=ui_amount,
            source=data.get("source") or data.get("from"),
            destination=data.get("destination") or data.get("to"),
        )


RawTransfer = EvmTransfer | AccountTransfer


@dataclass(frozen=True)
class WalletRef:
    """An active wallet registered to a user."""

    address: str
    network: Network
