"""Dashboard metrics and their cache."""

from usdc_flow_tracker.metrics.aggregator import (
    SECTIONS,
    MetricsSnapshot,
    build_snapshot,
    empty_snapshot,
)
from usdc_flow_tracker.metrics.cache import ResultCache

__all__ = [
    "SECTIONS",
    "MetricsSnapshot",
    "ResultCache",
    "build_snapshot",
    "empty_snapshot",
]
