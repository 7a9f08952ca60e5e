"""
Tests for the Risk Scorer.

Covers:
  - Logistic transform and risk buckets
  - Signal normalization
  - Monotonicity in error rate
  - Recommended actions per dominant signal
  - Config merge
"""

import math

import pytest

from prediction.config import DEFAULT_CONFIG, RiskThresholds, merge_config
from prediction.metrics import EntityMetrics
from prediction.schemas import EntityType, RiskLevel
from prediction.scoring import (
    IMMEDIATE_ACTION_MARKER,
    build_signals,
    classify_risk,
    logistic,
    recommend_actions,
    score_entity,
    trend_direction,
)


def _metrics(
    error_rate=0.0,
    approval_rate=1.0,
    p95_latency=200.0,
    sample_size=100,
    baseline_error_rate=None,
) -> EntityMetrics:
    return EntityMetrics(
        error_rate=error_rate,
        approval_rate=approval_rate,
        p95_latency=p95_latency,
        sample_size=sample_size,
        recent_error_rate=error_rate,
        baseline_error_rate=error_rate if baseline_error_rate is None else baseline_error_rate,
    )


HEALTHY = _metrics()
FAILING = _metrics(error_rate=0.5, approval_rate=0.0, p95_latency=10000, baseline_error_rate=0.0)


# ── Logistic + buckets ────────────────────────────────────────────────


class TestLogistic:
    def test_midpoint(self):
        assert logistic(0.5) == pytest.approx(0.5)

    def test_bounds(self):
        assert logistic(0.0) == pytest.approx(1 / (1 + math.exp(5)))
        assert logistic(1.0) == pytest.approx(1 / (1 + math.exp(-5)))

    def test_increasing(self):
        assert logistic(0.3) < logistic(0.4) < logistic(0.6)


class TestClassifyRisk:
    def test_critical_exact_threshold(self):
        assert classify_risk(0.75) == RiskLevel.CRITICAL

    def test_high(self):
        assert classify_risk(0.6) == RiskLevel.HIGH

    def test_medium(self):
        assert classify_risk(0.25) == RiskLevel.MEDIUM

    def test_low(self):
        assert classify_risk(0.1) == RiskLevel.LOW

    def test_custom_thresholds(self):
        assert classify_risk(0.6, RiskThresholds(critical=0.55)) == RiskLevel.CRITICAL


class TestTrendDirection:
    def test_degrading(self):
        assert trend_direction(0.06) == "degrading"

    def test_improving(self):
        assert trend_direction(-0.06) == "improving"

    def test_deadband_is_stable(self):
        assert trend_direction(0.05) == "stable"
        assert trend_direction(-0.05) == "stable"


# ── Signals ───────────────────────────────────────────────────────────


class TestSignals:
    def test_normalized_values_capped(self):
        signals = {s.name: s for s in build_signals(_metrics(error_rate=0.9, p95_latency=50000), DEFAULT_CONFIG)}
        assert signals["error_rate"].normalized_value == 1.0
        assert signals["latency"].normalized_value == 1.0

    def test_approval_gap(self):
        signals = {s.name: s for s in build_signals(_metrics(approval_rate=0.0), DEFAULT_CONFIG)}
        assert signals["approval_rate"].normalized_value == pytest.approx(0.3 / 0.7)

    def test_approval_above_floor_is_zero(self):
        signals = {s.name: s for s in build_signals(_metrics(approval_rate=0.9), DEFAULT_CONFIG)}
        assert signals["approval_rate"].normalized_value == 0.0

    def test_improving_trend_clamped_to_zero(self):
        signals = {s.name: s for s in build_signals(_metrics(error_rate=0.0, baseline_error_rate=0.4), DEFAULT_CONFIG)}
        assert signals["trend"].normalized_value == 0.0
        assert signals["trend"].value == pytest.approx(-0.4)

    def test_contribution_is_weighted(self):
        for signal in build_signals(FAILING, DEFAULT_CONFIG):
            assert signal.contribution == pytest.approx(signal.normalized_value * signal.weight)


# ── score_entity ──────────────────────────────────────────────────────


class TestScoreEntity:
    def test_healthy_route_is_low(self):
        result = score_entity("route", "r1", "Route 1", HEALTHY)
        assert result.risk_level == RiskLevel.LOW
        assert result.recommended_actions == []

    def test_failing_route_is_critical(self):
        result = score_entity("provider", "p1", "Stripe", FAILING)
        assert result.risk_level == RiskLevel.CRITICAL
        assert result.trend.direction == "degrading"

    @pytest.mark.parametrize("metrics", [HEALTHY, FAILING, _metrics(error_rate=0.2, sample_size=3)])
    def test_probability_in_unit_interval(self, metrics):
        assert 0.0 <= score_entity("merchant", "m", "M", metrics).probability <= 1.0

    def test_error_rate_monotonic(self):
        probabilities = [
            score_entity("merchant", "m", "M", _metrics(error_rate=er, baseline_error_rate=0.0)).probability
            for er in (0.0, 0.05, 0.1, 0.2, 0.3, 0.5)
        ]
        assert probabilities == sorted(probabilities)

    def test_confidence_caps_at_one(self):
        assert score_entity("merchant", "m", "M", _metrics(sample_size=40)).confidence == 0.4
        assert score_entity("merchant", "m", "M", _metrics(sample_size=400)).confidence == 1.0

    def test_deviation_percentage(self):
        result = score_entity("merchant", "m", "M", _metrics(error_rate=0.3, baseline_error_rate=0.1))
        assert result.baseline_comparison.deviation_percentage == pytest.approx(200.0)

    def test_deviation_zero_without_baseline(self):
        result = score_entity("merchant", "m", "M", _metrics(error_rate=0.3, baseline_error_rate=0.0))
        assert result.baseline_comparison.deviation_percentage == 0.0

    def test_config_override_changes_bucket(self):
        metrics = _metrics(error_rate=0.25, baseline_error_rate=0.25)
        default = score_entity("merchant", "m", "M", metrics)
        strict = score_entity("merchant", "m", "M", metrics, merge_config({"thresholds": {"medium": 0.01}}))
        assert default.probability == strict.probability
        assert strict.risk_level == RiskLevel.MEDIUM


# ── Recommendations ───────────────────────────────────────────────────


class TestRecommendations:
    def test_critical_provider_error_rate(self):
        signals = build_signals(_metrics(error_rate=0.5, baseline_error_rate=0.5), DEFAULT_CONFIG)
        actions = recommend_actions(signals, RiskLevel.CRITICAL, EntityType.PROVIDER)
        assert actions[0] == IMMEDIATE_ACTION_MARKER
        assert "Consider activating a backup provider" in actions
        assert actions[-1] == "Consider automatic failover"

    def test_high_method_approval(self):
        signals = build_signals(_metrics(approval_rate=0.0), DEFAULT_CONFIG)
        actions = recommend_actions(signals, RiskLevel.HIGH, EntityType.METHOD)
        assert IMMEDIATE_ACTION_MARKER not in actions
        assert actions[-1] == "Evaluate an alternative payment method for this segment"

    def test_medium(self):
        signals = build_signals(HEALTHY, DEFAULT_CONFIG)
        assert recommend_actions(signals, RiskLevel.MEDIUM, EntityType.MERCHANT) == [
            "Keep under observation",
            "Increase monitoring frequency",
        ]

    def test_low_has_none(self):
        assert recommend_actions(build_signals(FAILING, DEFAULT_CONFIG), RiskLevel.LOW, EntityType.ROUTE) == []


# ── merge_config ──────────────────────────────────────────────────────


class TestMergeConfig:
    def test_none_returns_defaults(self):
        assert merge_config(None) is DEFAULT_CONFIG

    def test_partial_weights(self):
        merged = merge_config({"weights": {"trend": 0.5}})
        assert merged.weights.trend == 0.5
        assert merged.weights.error_rate == DEFAULT_CONFIG.weights.error_rate
        assert merged.thresholds == DEFAULT_CONFIG.thresholds

    def test_defaults_untouched(self):
        merge_config({"normalization": {"max_latency": 5000}})
        assert DEFAULT_CONFIG.normalization.max_latency == 10000.0

    def test_unknown_keys_ignored(self):
        merged = merge_config({"weights": {"bogus": 1.0}})
        assert merged.weights == DEFAULT_CONFIG.weights
