"""
Route Health Graph — per-route node and edge statuses.

Pipeline:
  1. Fetch the recent window and a baseline of the same length right before it
  2. Group recent transactions by route, by each dimension, and by adjacent pairs
  3. Score each group against OK / WARNING / CRITICAL thresholds
  4. Assemble merchant → provider → method → country paths, filter, summarize

Approval loss (baseline approval minus recent approval) is measured per route
only; dimension and pair aggregates report zero loss.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from prediction.metrics import calculate_metrics
from prediction.schemas import (
    SINGLE_DIMENSION_TYPES,
    EdgeMetrics,
    EntityType,
    GraphEdge,
    GraphNode,
    HealthGraphQuery,
    HealthGraphResponse,
    HealthGraphSummary,
    HealthStatus,
    NodeMetrics,
    PaymentRoute,
    PredictionQuery,
)
from prediction.windows import (
    ROUTE_SEPARATOR,
    UNKNOWN_NAME,
    TransactionFact,
    Windows,
    fetch_windows,
    group_by,
    resolve_entity_names,
    split_route_key,
)

logger = structlog.get_logger()

MIN_SAMPLE_SIZE = 10
WARNING_LATENCY_MS = 5000
LOSS_LABEL_THRESHOLD = 0.05

EDGE_PAIRS = (
    (EntityType.MERCHANT, EntityType.PROVIDER),
    (EntityType.PROVIDER, EntityType.METHOD),
    (EntityType.METHOD, EntityType.COUNTRY),
)

_STATUS_RANK = {HealthStatus.CRITICAL: 0, HealthStatus.WARNING: 1, HealthStatus.OK: 2}


@dataclass(frozen=True)
class HealthThresholds:
    critical_error_rate: float = 0.3
    warning_error_rate: float = 0.15
    critical_approval_rate: float = 0.5
    warning_approval_rate: float = 0.7
    critical_approval_loss_rate: float = 0.2
    warning_approval_loss_rate: float = 0.1

    @classmethod
    def from_query(cls, query: HealthGraphQuery) -> "HealthThresholds":
        return cls(
            critical_error_rate=query.critical_error_rate,
            warning_error_rate=query.warning_error_rate,
            critical_approval_rate=query.critical_approval_rate,
            warning_approval_rate=query.warning_approval_rate,
            critical_approval_loss_rate=query.critical_approval_loss_rate,
            warning_approval_loss_rate=query.warning_approval_loss_rate,
        )


def health_metrics(recent: Sequence[TransactionFact], baseline: Sequence[TransactionFact] = ()) -> NodeMetrics:
    metrics = calculate_metrics(recent, [])
    baseline_approval_rate = loss = 0.0
    if baseline:
        baseline_approval_rate = calculate_metrics(baseline, []).approval_rate
        # Positive means fewer approvals than the baseline.
        loss = baseline_approval_rate - metrics.approval_rate
    return NodeMetrics(
        approval_rate=metrics.approval_rate,
        error_rate=metrics.error_rate,
        p95_latency=metrics.p95_latency,
        sample_size=metrics.sample_size,
        approval_loss_rate=loss,
        baseline_approval_rate=baseline_approval_rate,
    )


def health_status(metrics: NodeMetrics, thresholds: HealthThresholds = HealthThresholds()) -> HealthStatus:
    """Approval loss is checked first at each level; undersized groups are critical."""
    if metrics.approval_loss_rate >= thresholds.critical_approval_loss_rate:
        return HealthStatus.CRITICAL
    if (
        metrics.error_rate >= thresholds.critical_error_rate
        or metrics.approval_rate <= thresholds.critical_approval_rate
        or metrics.sample_size < MIN_SAMPLE_SIZE
    ):
        return HealthStatus.CRITICAL

    if metrics.approval_loss_rate >= thresholds.warning_approval_loss_rate:
        return HealthStatus.WARNING
    if (
        metrics.error_rate >= thresholds.warning_error_rate
        or metrics.approval_rate <= thresholds.warning_approval_rate
        or metrics.p95_latency > WARNING_LATENCY_MS
    ):
        return HealthStatus.WARNING

    return HealthStatus.OK


def edge_label(status: HealthStatus, metrics: NodeMetrics) -> str:
    if metrics.approval_loss_rate > LOSS_LABEL_THRESHOLD:
        return f"⚠️ Approval loss: -{metrics.approval_loss_rate * 100:.1f}%"
    if status == HealthStatus.CRITICAL:
        return f"Consistent failures (error: {metrics.error_rate * 100:.1f}%)"
    if status == HealthStatus.WARNING:
        return f"Warning signal ({metrics.sample_size} txs)"
    return f"OK (approval: {metrics.approval_rate * 100:.1f}%)"


def summarize_routes(routes: Sequence[PaymentRoute]) -> HealthGraphSummary:
    counts = {status: 0 for status in HealthStatus}
    for route in routes:
        counts[route.overall_status] += 1
    return HealthGraphSummary(
        total_routes=len(routes),
        critical_routes=counts[HealthStatus.CRITICAL],
        warning_routes=counts[HealthStatus.WARNING],
        ok_routes=counts[HealthStatus.OK],
    )


def _graph_windows(query: HealthGraphQuery, now: datetime | None) -> Windows:
    now = now or datetime.utcnow()
    window = timedelta(minutes=query.time_window_minutes)
    return Windows(now=now, recent_start=now - window, baseline_start=now - 2 * window)


def _node(entity_type: EntityType, entity_id: str, label: str, metrics: NodeMetrics, thresholds) -> GraphNode:
    return GraphNode(
        id=f"{entity_type.value}-{entity_id}",
        label=label,
        type=entity_type,
        status=health_status(metrics, thresholds),
        metrics=metrics,
    )


def _edge(source: GraphNode, target: GraphNode, metrics: NodeMetrics, thresholds) -> GraphEdge:
    status = health_status(metrics, thresholds)
    return GraphEdge(
        source=source.id,
        target=target.id,
        status=status,
        label=edge_label(status, metrics),
        metrics=EdgeMetrics(
            approval_rate=metrics.approval_rate,
            error_rate=metrics.error_rate,
            p95_latency=metrics.p95_latency,
            approval_loss_rate=metrics.approval_loss_rate,
        ),
    )


async def get_health_graph(
    db: AsyncSession,
    query: HealthGraphQuery | None = None,
    *,
    now: datetime | None = None,
) -> HealthGraphResponse:
    query = query or HealthGraphQuery()
    thresholds = HealthThresholds.from_query(query)
    windows = _graph_windows(query, now)

    filters = PredictionQuery(
        merchant_id=query.merchant_id,
        provider_id=query.provider_id,
        method_id=query.method_id,
        country_code=query.country_code,
        time_window_minutes=query.time_window_minutes,
    )
    recent, baseline = await fetch_windows(db, filters, windows)

    route_groups = group_by(recent, SINGLE_DIMENSION_TYPES)
    baseline_groups = group_by(baseline, SINGLE_DIMENSION_TYPES)
    by_dimension = {
        entity_type: {key: health_metrics(txs) for key, txs in group_by(recent, (entity_type,)).items()}
        for entity_type in SINGLE_DIMENSION_TYPES
    }
    by_pair = {
        pair: {key: health_metrics(txs) for key, txs in group_by(recent, pair).items()} for pair in EDGE_PAIRS
    }

    names = {
        entity_type: await resolve_entity_names(db, entity_type, by_dimension[entity_type].keys())
        for entity_type in SINGLE_DIMENSION_TYPES
    }

    routes = []
    for key, txs in route_groups.items():
        route_metrics = health_metrics(txs, baseline_groups.get(key, []))
        ids = dict(zip(SINGLE_DIMENSION_TYPES, split_route_key(key)))

        nodes = {
            entity_type: _node(
                entity_type,
                ids[entity_type],
                names[entity_type].get(ids[entity_type], UNKNOWN_NAME),
                by_dimension[entity_type].get(ids[entity_type], route_metrics),
                thresholds,
            )
            for entity_type in SINGLE_DIMENSION_TYPES
        }
        edges = [
            _edge(
                nodes[first],
                nodes[second],
                by_pair[(first, second)].get(ROUTE_SEPARATOR.join((ids[first], ids[second])), route_metrics),
                thresholds,
            )
            for first, second in EDGE_PAIRS
        ]
        routes.append(
            PaymentRoute(
                merchant=nodes[EntityType.MERCHANT],
                provider=nodes[EntityType.PROVIDER],
                method=nodes[EntityType.METHOD],
                country=nodes[EntityType.COUNTRY],
                overall_status=health_status(route_metrics, thresholds),
                metrics=route_metrics,
                edges=edges,
            )
        )

    if query.only_issues:
        routes = [r for r in routes if r.overall_status != HealthStatus.OK]
    routes.sort(key=lambda r: (_STATUS_RANK[r.overall_status], -r.metrics.sample_size))

    summary = summarize_routes(routes)
    logger.debug(
        "health_graph.built",
        routes=summary.total_routes,
        critical=summary.critical_routes,
        warning=summary.warning_routes,
        recent_count=len(recent),
        baseline_count=len(baseline),
    )
    return HealthGraphResponse(routes=routes, summary=summary, timestamp=windows.now)
