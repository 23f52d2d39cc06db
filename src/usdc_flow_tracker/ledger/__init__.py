"""Transaction normalization and ledger updates."""

from usdc_flow_tracker.ledger.models import Direction, Transaction, TransactionStatus
from usdc_flow_tracker.ledger.normalizer import NormalizationError, normalize

__all__ = [
    "Direction",
    "NormalizationError",
    "Transaction",
    "TransactionStatus",
    "normalize",
]
