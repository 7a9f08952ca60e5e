"""Scoring configuration: signal weights, risk thresholds, normalization caps."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping


@dataclass(frozen=True)
class SignalWeights:
    error_rate: float = 0.35
    latency: float = 0.25
    approval_rate: float = 0.25
    trend: float = 0.15


@dataclass(frozen=True)
class RiskThresholds:
    critical: float = 0.75
    high: float = 0.50
    medium: float = 0.25


@dataclass(frozen=True)
class Normalization:
    max_error_rate: float = 0.5
    max_latency: float = 10000.0  # ms
    min_approval_rate: float = 0.3


@dataclass(frozen=True)
class PredictionConfig:
    weights: SignalWeights = field(default_factory=SignalWeights)
    thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    normalization: Normalization = field(default_factory=Normalization)


DEFAULT_CONFIG = PredictionConfig()


def _merge_group(base, overrides: Mapping[str, Any] | None):
    if not overrides:
        return base
    known = {f.name for f in fields(base)}
    updates = {k: float(v) for k, v in overrides.items() if k in known and v is not None}
    return replace(base, **updates) if updates else base


def merge_config(
    overrides: Mapping[str, Mapping[str, Any] | None] | None = None,
    base: PredictionConfig = DEFAULT_CONFIG,
) -> PredictionConfig:
    """
    Merge a partial override over ``base`` and return a new config.

    ``overrides`` mirrors the config shape, e.g.
    ``{"weights": {"trend": 0.3}, "thresholds": {"critical": 0.8}}``.
    Missing groups and fields keep their base values; weights are not re-normalized.
    """
    if not overrides:
        return base
    return PredictionConfig(
        weights=_merge_group(base.weights, overrides.get("weights")),
        thresholds=_merge_group(base.thresholds, overrides.get("thresholds")),
        normalization=_merge_group(base.normalization, overrides.get("normalization")),
    )
