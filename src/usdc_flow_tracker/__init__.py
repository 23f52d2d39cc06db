"""USDC Flow Tracker - multi-chain USDC transfer detection, ledger and dashboard metrics."""

__version__ = "0.1.0"
