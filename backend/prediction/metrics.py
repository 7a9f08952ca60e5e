"""
Route health metrics for one entity group.

Reduces a recent window and a baseline window of transactions to the raw
inputs of the risk scorer: error rate, approval rate, p95 latency, and the
recent/baseline error rates used for trend detection.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

ERROR_STATUSES = frozenset({"error", "timeout"})
APPROVED_STATUS = "approved"


class TransactionLike(Protocol):
    status: str
    latency_ms: int | None


@dataclass(frozen=True)
class EntityMetrics:
    error_rate: float
    approval_rate: float
    p95_latency: float
    sample_size: int
    recent_error_rate: float
    baseline_error_rate: float


def p95(values: Iterable[float]) -> float:
    """95th percentile using index ceil(0.95 * n) - 1, clamped to [0, n - 1]."""
    ordered = sorted(values)
    if not ordered:
        return 0
    index = math.ceil(0.95 * len(ordered)) - 1
    index = min(max(index, 0), len(ordered) - 1)
    return ordered[index]


def _error_rate(transactions: Sequence[TransactionLike]) -> float:
    if not transactions:
        return 0.0
    errors = sum(1 for tx in transactions if tx.status in ERROR_STATUSES)
    return errors / len(transactions)


def calculate_metrics(
    recent: Sequence[TransactionLike],
    baseline: Sequence[TransactionLike],
) -> EntityMetrics:
    total = len(recent)
    approved = sum(1 for tx in recent if tx.status == APPROVED_STATUS)

    error_rate = _error_rate(recent)
    approval_rate = approved / total if total > 0 else 0.0
    p95_latency = p95(tx.latency_ms or 0 for tx in recent)

    return EntityMetrics(
        error_rate=error_rate,
        approval_rate=approval_rate,
        p95_latency=p95_latency,
        sample_size=total,
        recent_error_rate=error_rate,
        baseline_error_rate=_error_rate(baseline),
    )
