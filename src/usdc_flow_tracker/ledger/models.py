"""Canonical ledger records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from usdc_flow_tracker.chain.models import Network


class Direction(str, Enum):
    IN = "in"
    OUT = "out"


class TransactionStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class Transaction:
    """A normalized USDC movement observed for one of a user's wallets.

    `hash` is the dedup key: the EVM transaction hash or the Solana
    signature. Stored transactions are never updated.
    """

    hash: str
    user_id: str
    wallet_address: str
    network: Network
    amount: Decimal
    direction: Direction
    fee: Decimal
    fee_savings: Decimal
    status: TransactionStatus
    created_at: datetime
    confirmed_at: datetime | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == TransactionStatus.CONFIRMED

    @property
    def signed_amount(self) -> Decimal:
        """Amount with outgoing transfers negated."""
        return self.amount if self.direction == Direction.IN else -self.amount
