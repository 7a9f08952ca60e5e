"""
Prediction Summary Builder — scores every entity group in a window and
ranks the results.

Pipeline:
  1. Resolve recent / baseline windows
  2. Fetch transactions for both windows
  3. Group by entity type (or full route)
  4. Score groups meeting the minimum sample size
  5. Filter, sort, auto-alert on high/critical, summarize
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.engine import create_prediction_alerts
from prediction.config import DEFAULT_CONFIG, PredictionConfig, merge_config
from prediction.metrics import calculate_metrics
from prediction.schemas import (
    DashboardResponse,
    EntityType,
    FailureProbability,
    PredictionConfigOverride,
    PredictionQuery,
    PredictionSummary,
    RiskLevel,
    Top3Summary,
    TopRiskyEntity,
)
from prediction.scoring import score_entity
from prediction.windows import fetch_windows, group_transactions, resolve_entity_names, resolve_windows

logger = structlog.get_logger()

TOP_N = 3
DASHBOARD_WEIGHTS = {"merchants": 0.4, "providers": 0.4, "methods": 0.2}


def resolve_config(config: PredictionConfig | PredictionConfigOverride | Mapping[str, Any] | None) -> PredictionConfig:
    if config is None:
        return DEFAULT_CONFIG
    if isinstance(config, PredictionConfig):
        return config
    if isinstance(config, PredictionConfigOverride):
        config = config.model_dump(exclude_none=True)
    return merge_config(config)


def global_health_score(predictions: list[FailureProbability]) -> int:
    """round((1 - mean probability) * 100); 100 when nothing was scored."""
    if not predictions:
        return 100
    mean = sum(p.probability for p in predictions) / len(predictions)
    return round((1 - mean) * 100)


def summarize(predictions: list[FailureProbability], timestamp: datetime | None = None) -> PredictionSummary:
    counts = {level: 0 for level in RiskLevel}
    for prediction in predictions:
        counts[prediction.risk_level] += 1

    return PredictionSummary(
        total_entities_analyzed=len(predictions),
        high_risk_count=counts[RiskLevel.CRITICAL] + counts[RiskLevel.HIGH],
        medium_risk_count=counts[RiskLevel.MEDIUM],
        low_risk_count=counts[RiskLevel.LOW],
        predictions=predictions,
        global_health_score=global_health_score(predictions),
        timestamp=timestamp or datetime.utcnow(),
    )


async def score_groups(
    db: AsyncSession,
    query: PredictionQuery,
    config: PredictionConfig,
    *,
    now: datetime | None = None,
) -> list[FailureProbability]:
    """Score each entity group of the query's windows, skipping undersized groups."""
    entity_type = query.entity_type or EntityType.ROUTE
    windows = resolve_windows(query, now)
    recent, baseline = await fetch_windows(db, query, windows)

    recent_groups = group_transactions(recent, entity_type)
    baseline_groups = group_transactions(baseline, entity_type)
    logger.debug(
        "prediction.grouped",
        entity_type=entity_type.value,
        groups=len(recent_groups),
        recent_count=len(recent),
        baseline_count=len(baseline),
        min_sample_size=query.min_sample_size,
    )

    eligible = {}
    skipped = 0
    for key, transactions in recent_groups.items():
        if len(transactions) < query.min_sample_size:
            skipped += 1
            logger.debug(
                "prediction.insufficient_samples",
                entity_type=entity_type.value,
                entity_id=key,
                sample_size=len(transactions),
                min_sample_size=query.min_sample_size,
            )
            continue
        eligible[key] = transactions

    if skipped:
        logger.warning("prediction.entities_skipped", entity_type=entity_type.value, skipped=skipped)

    names = await resolve_entity_names(db, entity_type, eligible.keys())

    predictions = []
    for key, transactions in eligible.items():
        try:
            metrics = calculate_metrics(transactions, baseline_groups.get(key, []))
            predictions.append(
                score_entity(entity_type, key, names.get(key, "Unknown"), metrics, config, timestamp=windows.now)
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("prediction.entity_failed", entity_type=entity_type.value, entity_id=key, error=str(exc))
    return predictions


async def get_predictions(
    db: AsyncSession,
    query: PredictionQuery | None = None,
    config: PredictionConfig | PredictionConfigOverride | Mapping[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> PredictionSummary:
    """Score, filter, rank, and auto-alert for one query."""
    query = query or PredictionQuery()
    effective = resolve_config(config)

    predictions = await score_groups(db, query, effective, now=now)
    if not query.include_low_risk:
        predictions = [p for p in predictions if p.risk_level != RiskLevel.LOW]
    predictions.sort(key=lambda p: p.probability, reverse=True)

    await create_prediction_alerts(db, predictions)
    return summarize(predictions, timestamp=now)


# ─── Top-N views ────────────────────────────────────────────────────────────


def _top_query(entity_type: EntityType, query: PredictionQuery | None) -> PredictionQuery:
    base = query or PredictionQuery()
    return base.model_copy(update={"entity_type": entity_type, "include_low_risk": False})


def to_top_risky(prediction: FailureProbability, rank: int) -> TopRiskyEntity:
    values = {s.name: s.value for s in prediction.signals}
    return TopRiskyEntity(
        rank=rank,
        entity_type=prediction.entity_type,
        entity_id=prediction.entity_id,
        entity_name=prediction.entity_name,
        probability=prediction.probability,
        risk_level=prediction.risk_level,
        error_rate=values.get("error_rate", 0.0),
        approval_rate=values.get("approval_rate", 0.0),
        latency=values.get("latency", 0.0),
        trend=prediction.trend.direction,
        sample_size=prediction.sample_size,
        timestamp=prediction.timestamp,
    )


def rank_top(predictions: list[FailureProbability], n: int = TOP_N) -> list[TopRiskyEntity]:
    ordered = sorted(predictions, key=lambda p: p.probability, reverse=True)[:n]
    return [to_top_risky(p, idx + 1) for idx, p in enumerate(ordered)]


async def get_top3(
    db: AsyncSession,
    entity_type: EntityType,
    query: PredictionQuery | None = None,
) -> list[TopRiskyEntity]:
    summary = await get_predictions(db, _top_query(entity_type, query))
    return rank_top(summary.predictions)


async def get_overall_top3(db: AsyncSession, query: PredictionQuery | None = None) -> list[TopRiskyEntity]:
    """Top 3 across merchants, providers, and methods combined."""
    merged: list[FailureProbability] = []
    for entity_type in (EntityType.MERCHANT, EntityType.PROVIDER, EntityType.METHOD):
        summary = await get_predictions(db, _top_query(entity_type, query))
        merged.extend(summary.predictions)
    return rank_top(merged)


async def get_top3_summary(db: AsyncSession, query: PredictionQuery | None = None) -> Top3Summary:
    return Top3Summary(
        top_merchants=await get_top3(db, EntityType.MERCHANT, query),
        top_providers=await get_top3(db, EntityType.PROVIDER, query),
        top_methods=await get_top3(db, EntityType.METHOD, query),
        overall_top_3=await get_overall_top3(db, query),
        timestamp=datetime.utcnow(),
    )


async def get_dashboard(db: AsyncSession) -> DashboardResponse:
    summaries = {
        "merchants": await get_predictions(db, PredictionQuery(entity_type=EntityType.MERCHANT)),
        "providers": await get_predictions(db, PredictionQuery(entity_type=EntityType.PROVIDER)),
        "methods": await get_predictions(db, PredictionQuery(entity_type=EntityType.METHOD)),
    }
    global_health = round(sum(summaries[k].global_health_score * w for k, w in DASHBOARD_WEIGHTS.items()))
    return DashboardResponse(**summaries, global_health=global_health)
