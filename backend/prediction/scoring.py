"""
Risk Scorer — turns route metrics into a failure probability.

Signals:
  - error_rate:    (errors + timeouts) / total, capped at max_error_rate
  - latency:       p95 latency, capped at max_latency
  - approval_rate: gap below min_approval_rate, scaled to [0, 1]
  - trend:         recent error rate minus baseline error rate

The weighted sum of normalized signals is mapped through a logistic curve
centred on 0.5 so scores near the midpoint resolve into decisive buckets.
"""

from __future__ import annotations

import math
from datetime import datetime

from prediction.config import DEFAULT_CONFIG, PredictionConfig, RiskThresholds
from prediction.metrics import EntityMetrics
from prediction.schemas import (
    BaselineComparison,
    EntityType,
    FailureProbability,
    RiskLevel,
    Signal,
    Trend,
)

LOGISTIC_SLOPE = 10.0
LOGISTIC_MIDPOINT = 0.5
TREND_DEADBAND = 0.05
FULL_CONFIDENCE_SAMPLES = 100

IMMEDIATE_ACTION_MARKER = "🚨 IMMEDIATE ACTION REQUIRED"

SIGNAL_RECOMMENDATIONS = {
    "error_rate": [
        "Review error logs to identify the failure pattern",
        "Check connectivity with the payment provider",
    ],
    "latency": [
        "Investigate performance degradation",
        "Review timeout configuration",
        "Check system load",
    ],
    "approval_rate": [
        "Analyze transaction decline reasons",
        "Review business rule configuration",
    ],
    "trend": [
        "Monitor closely - degradation trend detected",
        "Prepare a contingency plan",
    ],
}

ENTITY_SPECIFIC_RECOMMENDATIONS = {
    ("error_rate", EntityType.PROVIDER): "Consider activating a backup provider",
    ("approval_rate", EntityType.METHOD): "Evaluate an alternative payment method for this segment",
}

MEDIUM_RISK_RECOMMENDATIONS = [
    "Keep under observation",
    "Increase monitoring frequency",
]


def logistic(raw_score: float) -> float:
    """P = 1 / (1 + e^(-k * (x - 0.5)))."""
    return 1.0 / (1.0 + math.exp(-LOGISTIC_SLOPE * (raw_score - LOGISTIC_MIDPOINT)))


def classify_risk(probability: float, thresholds: RiskThresholds = DEFAULT_CONFIG.thresholds) -> RiskLevel:
    """Classify failure probability into a risk level."""
    if probability >= thresholds.critical:
        return RiskLevel.CRITICAL
    elif probability >= thresholds.high:
        return RiskLevel.HIGH
    elif probability >= thresholds.medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def trend_direction(error_trend: float) -> str:
    if error_trend > TREND_DEADBAND:
        return "degrading"
    elif error_trend < -TREND_DEADBAND:
        return "improving"
    return "stable"


def _signal(name: str, value: float, normalized: float, weight: float) -> Signal:
    return Signal(
        name=name,
        value=value,
        normalized_value=normalized,
        weight=weight,
        contribution=normalized * weight,
    )


def build_signals(metrics: EntityMetrics, config: PredictionConfig) -> list[Signal]:
    weights = config.weights
    norm = config.normalization

    approval_gap = max(norm.min_approval_rate - metrics.approval_rate, 0.0)
    error_trend = metrics.recent_error_rate - metrics.baseline_error_rate

    return [
        _signal(
            "error_rate",
            metrics.error_rate,
            min(metrics.error_rate / norm.max_error_rate, 1.0),
            weights.error_rate,
        ),
        _signal(
            "latency",
            metrics.p95_latency,
            min(metrics.p95_latency / norm.max_latency, 1.0),
            weights.latency,
        ),
        _signal(
            "approval_rate",
            metrics.approval_rate,
            approval_gap / (1 - norm.min_approval_rate),
            weights.approval_rate,
        ),
        _signal(
            "trend",
            error_trend,
            max(0.0, min(error_trend / norm.max_error_rate, 1.0)),
            weights.trend,
        ),
    ]


def recommend_actions(signals: list[Signal], risk_level: RiskLevel, entity_type: EntityType) -> list[str]:
    """Remediation steps keyed on the dominant signal."""
    if risk_level == RiskLevel.MEDIUM:
        return list(MEDIUM_RISK_RECOMMENDATIONS)
    if risk_level not in (RiskLevel.HIGH, RiskLevel.CRITICAL) or not signals:
        return []

    # max() keeps the first signal on ties
    dominant = max(signals, key=lambda s: s.contribution)
    actions = list(SIGNAL_RECOMMENDATIONS.get(dominant.name, []))
    extra = ENTITY_SPECIFIC_RECOMMENDATIONS.get((dominant.name, entity_type))
    if extra:
        actions.append(extra)

    if risk_level == RiskLevel.CRITICAL:
        actions.insert(0, IMMEDIATE_ACTION_MARKER)
        if entity_type == EntityType.PROVIDER:
            actions.append("Consider automatic failover")
    return actions


def score_entity(
    entity_type: EntityType | str,
    entity_id: str,
    entity_name: str,
    metrics: EntityMetrics,
    config: PredictionConfig = DEFAULT_CONFIG,
    timestamp: datetime | None = None,
) -> FailureProbability:
    """Score one entity group. Callers apply the min-sample pre-filter."""
    entity_type = EntityType(entity_type)
    signals = build_signals(metrics, config)

    raw_score = sum(s.contribution for s in signals)
    probability = logistic(raw_score)
    risk_level = classify_risk(probability, config.thresholds)

    error_trend = metrics.recent_error_rate - metrics.baseline_error_rate
    deviation = (error_trend / metrics.baseline_error_rate) * 100 if metrics.baseline_error_rate > 0 else 0.0

    return FailureProbability(
        entity_type=entity_type,
        entity_id=entity_id,
        entity_name=entity_name,
        probability=probability,
        risk_level=risk_level,
        signals=signals,
        confidence=min(metrics.sample_size / FULL_CONFIDENCE_SAMPLES, 1.0),
        sample_size=metrics.sample_size,
        baseline_comparison=BaselineComparison(
            current_error_rate=metrics.recent_error_rate,
            baseline_error_rate=metrics.baseline_error_rate,
            deviation_percentage=deviation,
        ),
        trend=Trend(direction=trend_direction(error_trend), rate_of_change=error_trend),
        recommended_actions=recommend_actions(signals, risk_level, entity_type),
        timestamp=timestamp or datetime.utcnow(),
    )
