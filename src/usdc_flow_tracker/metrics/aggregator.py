"""Dashboard metrics computed from a user's ledger.

Every function here is pure: it takes the user's transactions (and the
reference time `now`) and returns a JSON-serializable mapping. All of them
accept an empty transaction list and return zeroed values.

Volume figures count only transactions that did not fail. Balance figures
(`balances`, `digital_vault`, `user_balances`) net outgoing transfers
against incoming ones so they agree with the stored wallet balances.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from usdc_flow_tracker.chain.models import Network
from usdc_flow_tracker.ledger.models import Direction, Transaction, TransactionStatus

TRADITIONAL_FEE_RATE = Decimal("0.029")
TRADITIONAL_FIXED_FEE = Decimal("0.30")
BLOCKCHAIN_FEE_RATE = Decimal("0.001")

HIGH_VOLUME_THRESHOLD = Decimal(10000)
POWER_USER_TX_COUNT = 50

RECENT_TRANSACTIONS_LIMIT = 20

DAY = timedelta(days=1)
WEEK = timedelta(days=7)
MONTH = timedelta(days=30)

SECTIONS = (
    "balances",
    "analytics",
    "insights",
    "velocity",
    "precision",
    "magnitude",
    "networks",
    "capital_flow",
    "fee_comparison",
    "mrr",
    "digital_vault",
    "transaction_activity",
    "ai_insights",
    "total_volume",
    "weekly_transactions",
    "monthly_transactions",
    "largest_payment",
    "average_payment",
    "orders",
    "revenue",
    "user_balances",
    "network_distribution",
    "volume_overview",
    "comprehensive_fees",
    "recent_transactions_detailed",
    "ready_to_ship",
    "new_orders",
    "total_customers",
    "total_usdc_paid_out",
    "billing_history",
)


def round_half_up(value: float | Decimal) -> int:
    """Round to the nearest integer with halves rounded up."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _f(value: Decimal) -> float:
    return float(value)


def _succeeded(txs: Sequence[Transaction]) -> list[Transaction]:
    return [t for t in txs if t.status != TransactionStatus.FAILED]


def _volume(txs: Sequence[Transaction]) -> Decimal:
    return sum((t.amount for t in _succeeded(txs)), Decimal(0))


def _success_rate(txs: Sequence[Transaction]) -> float:
    if not txs:
        return 0.0
    return len(_succeeded(txs)) / len(txs) * 100


def _since(txs: Sequence[Transaction], now: datetime, window: timedelta) -> list[Transaction]:
    cutoff = now - window
    return [t for t in txs if t.created_at >= cutoff]


def _signed_by_network(txs: Sequence[Transaction]) -> dict[str, Decimal]:
    breakdown: dict[str, Decimal] = {}
    for tx in _succeeded(txs):
        breakdown[tx.network.value] = breakdown.get(tx.network.value, Decimal(0)) + tx.signed_amount
    return breakdown


def _amounts(txs: Sequence[Transaction]) -> list[Decimal]:
    return [t.amount for t in txs]


def calculate_balances(txs: Sequence[Transaction], wallet_count: int) -> dict[str, Any]:
    breakdown = _signed_by_network(txs)
    result: dict[str, Any] = {
        network.value: _f(breakdown.get(network.value, Decimal(0))) for network in Network
    }
    result["total"] = _f(sum(breakdown.values(), Decimal(0)))
    result["network_breakdown"] = {k: _f(v) for k, v in sorted(breakdown.items())}
    result["wallet_count"] = wallet_count
    return result


def calculate_analytics(txs: Sequence[Transaction], now: datetime) -> dict[str, Any]:
    volume = _volume(txs)
    amounts = _amounts(txs)
    return {
        "total_volume": _f(volume),
        "transaction_count": len(txs),
        "success_rate": _success_rate(txs),
        "volume_24h": _f(_volume(_since(txs, now, DAY))),
        "average_transaction_size": _f(volume / len(txs)) if txs else 0.0,
        "largest_transaction": _f(max(amounts)) if amounts else 0.0,
        "smallest_transaction": _f(min(amounts)) if amounts else 0.0,
    }


def calculate_velocity(txs: Sequence[Transaction], now: datetime) -> dict[str, Any]:
    recent = _since(txs, now, MONTH)
    if txs:
        oldest = min(t.created_at for t in txs)
        days_since_first = max(1, math.ceil((now - oldest).total_seconds() / DAY.total_seconds()))
    else:
        days_since_first = 1
    return {
        "total_executions": len(txs),
        "daily_average": round_half_up(len(recent) / 30),
        "recent_count": len(recent),
        "velocity": round_half_up(len(txs) / days_since_first),
    }


def calculate_precision(txs: Sequence[Transaction]) -> dict[str, Any]:
    successful = len(_succeeded(txs))
    return {
        "precision_percentage": _success_rate(txs),
        "successful_count": successful,
        "total_count": len(txs),
        "failed_count": len(txs) - successful,
    }


def calculate_magnitude(txs: Sequence[Transaction]) -> dict[str, Any]:
    # Overlaps with analytics; dashboard consumers read both keys.
    volume = _volume(txs)
    amounts = _amounts(txs)
    return {
        "average_amount": _f(volume / len(txs)) if txs else 0.0,
        "total_volume": _f(volume),
        "transaction_count": len(txs),
        "largest_transaction": _f(max(amounts)) if amounts else 0.0,
        "smallest_transaction": _f(min(amounts)) if amounts else 0.0,
    }


def calculate_network_distribution(txs: Sequence[Transaction]) -> dict[str, Any]:
    volumes: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    for tx in txs:
        key = tx.network.value
        counts[key] = counts.get(key, 0) + 1
        volumes.setdefault(key, Decimal(0))
        if tx.status != TransactionStatus.FAILED:
            volumes[key] += tx.amount
    total = sum(volumes.values(), Decimal(0))
    networks = [
        {
            "network": network,
            "volume_usdc": _f(volumes[network]),
            "transaction_count": counts[network],
            "percent_usage": _f(volumes[network] / total * 100) if total > 0 else 0.0,
        }
        for network in sorted(volumes)
    ]
    return {"networks": networks, "total_volume": _f(total), "total_transactions": len(txs)}


def calculate_capital_flow(txs: Sequence[Transaction]) -> dict[str, Any]:
    succeeded = _succeeded(txs)
    received = sum((t.amount for t in succeeded if t.direction == Direction.IN), Decimal(0))
    paid_out = sum((t.amount for t in succeeded if t.direction == Direction.OUT), Decimal(0))
    net = received - paid_out
    return {
        "total_received": _f(received),
        "total_paid_out": _f(paid_out),
        "net_flow": _f(net),
        "flow_percentage": _f(net / received * 100) if received > 0 else 0.0,
    }


def _fee_model(volume: Decimal) -> tuple[Decimal, Decimal, Decimal, float]:
    traditional = volume * TRADITIONAL_FEE_RATE + TRADITIONAL_FIXED_FEE
    blockchain = volume * BLOCKCHAIN_FEE_RATE
    savings = traditional - blockchain
    percentage = _f(savings / traditional * 100) if traditional > 0 else 0.0
    return traditional, blockchain, savings, percentage


def calculate_fee_comparison(txs: Sequence[Transaction]) -> dict[str, Any]:
    traditional, blockchain, savings, percentage = _fee_model(_volume(txs))
    return {
        "traditional_fees": _f(traditional),
        "blockchain_fees": _f(blockchain),
        "total_savings": _f(savings),
        "savings_percentage": percentage,
        "traditional_rate": _f(TRADITIONAL_FEE_RATE * 100),
        "blockchain_rate": _f(BLOCKCHAIN_FEE_RATE * 100),
        "comparison_data": {
            "labels": ["Traditional Fees", "Blockchain Fees"],
            "values": [_f(traditional), _f(blockchain)],
            "savings": _f(savings),
        },
    }


def calculate_comprehensive_fees(txs: Sequence[Transaction]) -> dict[str, Any]:
    traditional, blockchain, savings, percentage = _fee_model(_volume(txs))
    return {
        "traditional_fees": _f(traditional),
        "blockchain_fees": _f(blockchain),
        "total_savings": _f(savings),
        "savings_percentage": percentage,
    }


def calculate_mrr(txs: Sequence[Transaction], now: datetime) -> dict[str, Any]:
    monthly = _since(txs, now, MONTH)
    revenue = _volume(monthly)
    return {
        "monthly_revenue": _f(revenue),
        "annual_revenue": _f(revenue * 12),
        "transaction_count_monthly": len(monthly),
        "average_monthly_transaction": _f(revenue / len(monthly)) if monthly else 0.0,
    }


def generate_insights(txs: Sequence[Transaction]) -> dict[str, Any]:
    """Rule-based insight selected by volume and transaction-count thresholds."""
    volume = _volume(txs)
    count = len(txs)
    if volume > HIGH_VOLUME_THRESHOLD:
        insight_type, risk_score = "achievement", 95
        message = (
            "High volume detected! You're in the top tier of users. "
            "Consider exploring Pro features for advanced analytics."
        )
    elif count == 0:
        insight_type, risk_score = "welcome", 80
        message = (
            "Welcome! Ready to make your first transaction? "
            "Transfers are detected automatically once a wallet is connected."
        )
    elif count > POWER_USER_TX_COUNT:
        insight_type, risk_score = "congratulations", 90
        message = "You're a power user! Your transaction efficiency is excellent. Keep up the great work!"
    else:
        insight_type, risk_score = "suggestion", 85
        message = "Your transaction activity is growing. Consider setting up automated payments to save time."
    return {
        "message": message,
        "type": insight_type,
        "risk_score": risk_score,
        "total_volume": _f(volume),
        "transaction_count": count,
        "success_rate": _success_rate(txs),
    }


def _ai_insight_message(trend_direction: str, success_rate: float, risk_score: float) -> str:
    if success_rate > 95 and risk_score > 90:
        return "Excellent performance! Your transaction success rate is outstanding."
    if trend_direction == "increasing":
        return "Great progress! Your transaction volume is growing steadily."
    if success_rate > 85:
        return "Good performance! Consider optimizing for even better results."
    return "Keep improving! Focus on transaction success rates for better performance."


def calculate_ai_insights(txs: Sequence[Transaction]) -> dict[str, Any]:
    """Trend and risk heuristics over the chronologically split transaction set."""
    if not txs:
        return {
            "total_volume_30d": 0.0,
            "average_transaction_size": 0.0,
            "success_rate": 0.0,
            "trend_direction": "stable",
            "trend_percentage": 0.0,
            "risk_score": 85.0,
            "predicted_next_month_volume": 0.0,
            "confidence_level": 60,
            "insight_message": "Insufficient data for AI analysis",
        }

    volume = _volume(txs)
    success_rate = _success_rate(txs)
    ordered = sorted(txs, key=lambda t: t.created_at)
    mid = len(ordered) // 2
    first_half, second_half = ordered[:mid], ordered[mid:]
    first_avg = sum(_amounts(first_half), Decimal(0)) / len(first_half) if first_half else Decimal(0)
    second_avg = sum(_amounts(second_half), Decimal(0)) / len(second_half) if second_half else Decimal(0)

    trend_direction = "increasing" if second_avg > first_avg else "decreasing"
    trend_percentage = _f((second_avg - first_avg) / first_avg * 100) if first_avg > 0 else 0.0
    risk_score = max(0.0, min(100.0, 85 + (success_rate - 95) * 3 + min(5.0, len(txs) / 10)))
    predicted = _f(volume) * (1 + trend_percentage / 100)

    return {
        "total_volume_30d": _f(volume),
        "average_transaction_size": _f(volume / len(txs)),
        "success_rate": success_rate,
        "trend_direction": trend_direction,
        "trend_percentage": abs(trend_percentage),
        "risk_score": risk_score,
        "predicted_next_month_volume": max(0.0, predicted),
        "confidence_level": min(95, 60 + len(txs)),
        "insight_message": _ai_insight_message(trend_direction, success_rate, risk_score),
    }


def calculate_digital_vault(txs: Sequence[Transaction], wallet_count: int, now: datetime) -> dict[str, Any]:
    breakdown = _signed_by_network(txs)
    return {
        "total_balance": _f(sum(breakdown.values(), Decimal(0))),
        "network_breakdown": {k: _f(v) for k, v in sorted(breakdown.items())},
        "unique_wallets": wallet_count,
        "last_updated": now.isoformat(),
    }


def calculate_transaction_activity(txs: Sequence[Transaction], now: datetime) -> dict[str, Any]:
    monthly = _since(txs, now, MONTH)
    return {
        "total_transactions": len(txs),
        "successful_transactions": len(_succeeded(txs)),
        "success_rate": _success_rate(txs),
        "weekly_transactions": len(_since(txs, now, WEEK)),
        "monthly_transactions": len(monthly),
        "average_daily_transactions": len(monthly) / 30,
    }


def calculate_user_balances(txs: Sequence[Transaction], user_id: str) -> dict[str, Any]:
    breakdown = _signed_by_network(txs)
    return {
        "total_balance": _f(sum(breakdown.values(), Decimal(0))),
        "network_balances": {k: _f(v) for k, v in sorted(breakdown.items())},
        "user_id": user_id,
    }


def calculate_volume_overview(txs: Sequence[Transaction]) -> dict[str, Any]:
    volume = _volume(txs)
    return {
        "total_volume": _f(volume),
        "transaction_count": len(txs),
        "average_volume": _f(volume / len(txs)) if txs else 0.0,
        "volume_trend": "stable",
    }


def _newest_first(txs: Sequence[Transaction]) -> list[Transaction]:
    return sorted(txs, key=lambda t: t.created_at, reverse=True)


def calculate_recent_transactions_detailed(txs: Sequence[Transaction]) -> dict[str, Any]:
    return {
        "recent_transactions": [
            {
                "hash": t.hash,
                "amount": _f(t.amount),
                "network": t.network.value,
                "status": t.status.value,
                "direction": t.direction.value,
                "wallet_address": t.wallet_address,
                "timestamp": t.created_at.isoformat(),
            }
            for t in _newest_first(txs)[:RECENT_TRANSACTIONS_LIMIT]
        ]
    }


def calculate_billing_history(txs: Sequence[Transaction]) -> dict[str, Any]:
    return {
        "billing_history": [
            {
                "id": t.hash,
                "amount": _f(t.amount),
                "status": t.status.value,
                "date": t.created_at.isoformat(),
                "network": t.network.value,
            }
            for t in _newest_first(txs)
        ]
    }


def calculate_total_usdc_paid_out(txs: Sequence[Transaction]) -> float:
    return _f(sum((t.amount for t in _succeeded(txs) if t.direction == Direction.OUT), Decimal(0)))


def calculate_total_customers(txs: Sequence[Transaction]) -> dict[str, Any]:
    # Counterparties are not stored; distinct receiving/sending wallets stand in.
    return {"total_customers": len({t.wallet_address for t in txs})}


@dataclass(frozen=True)
class MetricsSnapshot:
    """Full dashboard for one user at one point in time."""

    user_id: str
    generated_at: datetime
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {**self.metrics, "user_id": self.user_id, "generated_at": self.generated_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MetricsSnapshot:
        metrics = {k: v for k, v in data.items() if k not in ("user_id", "generated_at")}
        return cls(
            user_id=str(data["user_id"]),
            generated_at=datetime.fromisoformat(data["generated_at"]),
            metrics=metrics,
        )


def compute_metrics(
    user_id: str,
    txs: Sequence[Transaction],
    wallet_count: int,
    now: datetime,
) -> dict[str, Any]:
    """Compute every dashboard section."""
    total_volume = _f(_volume(txs))
    amounts = _amounts(txs)
    network_distribution = calculate_network_distribution(txs)
    return {
        "balances": calculate_balances(txs, wallet_count),
        "analytics": calculate_analytics(txs, now),
        "insights": generate_insights(txs),
        "velocity": calculate_velocity(txs, now),
        "precision": calculate_precision(txs),
        "magnitude": calculate_magnitude(txs),
        "networks": network_distribution,
        "capital_flow": calculate_capital_flow(txs),
        "fee_comparison": calculate_fee_comparison(txs),
        "mrr": calculate_mrr(txs, now),
        "digital_vault": calculate_digital_vault(txs, wallet_count, now),
        "transaction_activity": calculate_transaction_activity(txs, now),
        "ai_insights": calculate_ai_insights(txs),
        "total_volume": {"total_volume": total_volume},
        "weekly_transactions": {"weekly_transactions": len(_since(txs, now, WEEK))},
        "monthly_transactions": {"monthly_transactions": len(_since(txs, now, MONTH))},
        "largest_payment": {"largest_payment": _f(max(amounts)) if amounts else 0.0},
        "average_payment": {"average_payment": total_volume / len(txs) if txs else 0.0},
        "orders": {"total_orders": len(txs)},
        "revenue": {"total_revenue": total_volume},
        "user_balances": calculate_user_balances(txs, user_id),
        "network_distribution": network_distribution,
        "volume_overview": calculate_volume_overview(txs),
        "comprehensive_fees": calculate_comprehensive_fees(txs),
        "recent_transactions_detailed": calculate_recent_transactions_detailed(txs),
        "ready_to_ship": {"ready_to_ship": sum(1 for t in txs if t.is_confirmed)},
        "new_orders": {"new_orders": len(_since(txs, now, DAY))},
        "total_customers": calculate_total_customers(txs),
        "total_usdc_paid_out": calculate_total_usdc_paid_out(txs),
        "billing_history": calculate_billing_history(txs),
    }


def build_snapshot(
    user_id: str,
    transactions: Sequence[Transaction],
    wallet_count: int,
    now: datetime | None = None,
) -> MetricsSnapshot:
    """Build the dashboard snapshot for a user's full transaction set."""
    now = now or datetime.now(UTC)
    return MetricsSnapshot(
        user_id=user_id,
        generated_at=now,
        metrics=compute_metrics(user_id, transactions, wallet_count, now),
    )


def empty_snapshot(user_id: str, now: datetime | None = None) -> MetricsSnapshot:
    """Zeroed snapshot served when metrics cannot be computed."""
    snapshot = build_snapshot(user_id, [], 0, now)
    snapshot.metrics["insights"] = {
        "message": "Loading real-time data...",
        "type": "system",
        "risk_score": 85,
        "total_volume": 0.0,
        "transaction_count": 0,
        "success_rate": 0.0,
    }
    return snapshot
