"""
Tests for the prediction summary builder.

Covers:
  - Minimum sample size filter
  - Route grouping and display names
  - Disjoint recent / baseline windows
  - Auto-created alerts for high and critical risk
  - Health scores, top-3 rankings, dashboard
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from db.models import Alert
from prediction.metrics import EntityMetrics
from prediction.schemas import EntityType, PredictionQuery, RiskLevel
from prediction.scoring import score_entity
from prediction.service import get_dashboard, get_overall_top3, get_predictions, get_top3, summarize

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 3, 2, 12, 0, 0)


def _prediction(probability: float):
    metrics = EntityMetrics(
        error_rate=0.0,
        approval_rate=1.0,
        p95_latency=0,
        sample_size=10,
        recent_error_rate=0.0,
        baseline_error_rate=0.0,
    )
    return score_entity("merchant", "m", "M", metrics, timestamp=NOW).model_copy(update={"probability": probability})


class TestSummarize:
    async def test_health_is_inverse_mean_probability(self):
        summary = summarize([_prediction(0.2), _prediction(0.8)], timestamp=NOW)
        assert summary.global_health_score == 50
        assert summary.total_entities_analyzed == 2

    async def test_empty_is_fully_healthy(self):
        summary = summarize([], timestamp=NOW)
        assert summary.global_health_score == 100
        assert summary.high_risk_count == 0


class TestGetPredictions:
    async def test_min_sample_size_filter(self, test_db, add_transactions):
        query = PredictionQuery(entity_type=EntityType.MERCHANT, min_sample_size=10, include_low_risk=True)

        await add_transactions(count=9)
        summary = await get_predictions(test_db, query, now=NOW)
        assert summary.total_entities_analyzed == 0

        await add_transactions(count=1)
        summary = await get_predictions(test_db, query, now=NOW)
        assert summary.total_entities_analyzed == 1
        assert summary.predictions[0].sample_size == 10

    async def test_low_risk_hidden_by_default(self, test_db, add_transactions):
        await add_transactions(count=20)
        summary = await get_predictions(test_db, PredictionQuery(), now=NOW)
        assert summary.predictions == []
        assert summary.global_health_score == 100

    async def test_healthy_route_included_on_request(self, test_db, add_transactions):
        await add_transactions(count=20)
        summary = await get_predictions(test_db, PredictionQuery(include_low_risk=True), now=NOW)
        assert summary.low_risk_count == 1
        assert summary.predictions[0].risk_level == RiskLevel.LOW
        assert summary.global_health_score == 99

    async def test_route_name(self, test_db, seeded_db, add_transactions):
        await add_transactions(count=5, status="error", latency_ms=5000)
        summary = await get_predictions(test_db, PredictionQuery(), now=NOW)

        route = summary.predictions[0]
        assert route.entity_type == EntityType.ROUTE
        assert route.entity_name == "Acme Store → Stripe → Credit Card (CO)"
        assert route.entity_id.startswith(str(seeded_db.merchant.merchant_id))

    async def test_sorted_by_probability(self, test_db, seeded_db, add_transactions):
        await add_transactions(count=20, status="error", latency_ms=5000)
        await add_transactions(count=10, status="error", merchant=seeded_db.other_merchant)
        await add_transactions(count=10, status="approved", merchant=seeded_db.other_merchant)

        summary = await get_predictions(
            test_db,
            PredictionQuery(entity_type=EntityType.MERCHANT, include_low_risk=True),
            now=NOW,
        )
        probabilities = [p.probability for p in summary.predictions]
        assert probabilities == sorted(probabilities, reverse=True)
        assert summary.predictions[0].entity_name == "Acme Store"

    async def test_merchant_filter(self, test_db, seeded_db, add_transactions):
        await add_transactions(count=10)
        await add_transactions(count=10, merchant=seeded_db.other_merchant)

        query = PredictionQuery(
            entity_type=EntityType.MERCHANT,
            merchant_id=seeded_db.other_merchant.merchant_id,
            include_low_risk=True,
        )
        summary = await get_predictions(test_db, query, now=NOW)
        assert [p.entity_name for p in summary.predictions] == ["Globex Market"]

    async def test_baseline_excludes_recent_window(self, test_db, add_transactions):
        await add_transactions(count=20, status="error", when=NOW - timedelta(hours=2))
        await add_transactions(count=20, status="approved")

        query = PredictionQuery(entity_type=EntityType.MERCHANT, include_low_risk=True)
        prediction = (await get_predictions(test_db, query, now=NOW)).predictions[0]

        assert prediction.sample_size == 20
        assert prediction.baseline_comparison.current_error_rate == 0.0
        assert prediction.baseline_comparison.baseline_error_rate == 1.0
        assert prediction.trend.direction == "improving"

    async def test_config_override(self, test_db, add_transactions):
        await add_transactions(count=20)
        summary = await get_predictions(
            test_db,
            PredictionQuery(entity_type=EntityType.MERCHANT),
            {"thresholds": {"medium": 0.001}},
            now=NOW,
        )
        assert summary.medium_risk_count == 1

    async def test_critical_route_creates_alert(self, test_db, seeded_db, add_transactions):
        await add_transactions(count=20, status="error", latency_ms=5000)
        summary = await get_predictions(test_db, PredictionQuery(), now=NOW)
        assert summary.predictions[0].risk_level == RiskLevel.CRITICAL
        assert summary.high_risk_count == 1

        alerts = (await test_db.execute(select(Alert))).scalars().all()
        assert len(alerts) == 1
        assert alerts[0].severity == "CRITICAL"
        assert alerts[0].merchant_id == seeded_db.merchant.merchant_id
        assert "Recommended actions" in alerts[0].explanation


class TestRankings:
    async def test_top3_merchants(self, test_db, seeded_db, add_transactions):
        now = datetime.utcnow()
        await add_transactions(count=20, status="error", latency_ms=5000, when=now - timedelta(minutes=5))
        await add_transactions(count=20, merchant=seeded_db.other_merchant, when=now - timedelta(minutes=5))

        top = await get_top3(test_db, EntityType.MERCHANT)
        assert len(top) == 1
        assert top[0].rank == 1
        assert top[0].entity_name == "Acme Store"
        assert top[0].error_rate == 1.0
        assert top[0].latency == 5000

    async def test_overall_top3_spans_entity_types(self, test_db, add_transactions):
        await add_transactions(
            count=20,
            status="error",
            latency_ms=5000,
            when=datetime.utcnow() - timedelta(minutes=5),
        )
        top = await get_overall_top3(test_db)
        assert [t.rank for t in top] == [1, 2, 3]
        assert {t.entity_type for t in top} == {EntityType.MERCHANT, EntityType.PROVIDER, EntityType.METHOD}

    async def test_dashboard_weights(self, test_db, add_transactions):
        await add_transactions(
            count=20,
            status="error",
            latency_ms=5000,
            when=datetime.utcnow() - timedelta(minutes=5),
        )
        dashboard = await get_dashboard(test_db)
        expected = round(
            0.4 * dashboard.merchants.global_health_score
            + 0.4 * dashboard.providers.global_health_score
            + 0.2 * dashboard.methods.global_health_score
        )
        assert dashboard.global_health == expected
        assert dashboard.merchants.high_risk_count == 1
        assert dashboard.global_health == 9

    async def test_dashboard_empty(self, test_db, seeded_db):
        dashboard = await get_dashboard(test_db)
        assert dashboard.global_health == 100
