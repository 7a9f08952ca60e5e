"""
Alert Engine — Alert records for failure-risk predictions and escalations.

Severity mapping:
  - critical risk -> CRITICAL
  - high risk     -> WARNING
  - medium risk   -> WARNING (guard notifications only)
  - anything else -> INFO
"""

from __future__ import annotations

import uuid
from typing import Iterable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Alert
from prediction.schemas import EntityType, FailureProbability, RiskLevel
from prediction.windows import split_route_key

logger = structlog.get_logger()

CRITICAL = "CRITICAL"
WARNING = "WARNING"
INFO = "INFO"

SEVERITY_BY_RISK = {
    RiskLevel.CRITICAL: CRITICAL,
    RiskLevel.HIGH: WARNING,
    RiskLevel.MEDIUM: WARNING,
}


def severity_for_risk(risk_level: RiskLevel | str) -> str:
    """Map a risk level onto an alert severity."""
    return SEVERITY_BY_RISK.get(RiskLevel(risk_level), INFO)


def merchant_for_entity(entity_type: EntityType | str, entity_id: str) -> str | None:
    """Merchant id attached to an alert, when derivable from the entity."""
    entity_type = EntityType(entity_type)
    if entity_type == EntityType.MERCHANT:
        return entity_id
    if entity_type == EntityType.ROUTE:
        return split_route_key(entity_id)[0]
    return None


def prediction_explanation(prediction: FailureProbability) -> str:
    lines = [
        f"{prediction.entity_type.value}: {prediction.entity_name}",
        f"Failure probability: {prediction.probability * 100:.1f}%",
        f"Current error rate: {prediction.baseline_comparison.current_error_rate * 100:.2f}%",
        f"Baseline error rate: {prediction.baseline_comparison.baseline_error_rate * 100:.2f}%",
        f"Trend: {prediction.trend.direction}",
    ]
    if prediction.recommended_actions:
        lines += ["", "Recommended actions:", *prediction.recommended_actions]
    return "\n".join(lines)


async def create_alert(
    db: AsyncSession,
    *,
    severity: str,
    title: str,
    explanation: str,
    merchant_id: str | uuid.UUID | None = None,
) -> Alert:
    """Persist an alert and flush so its id is available to notifications."""
    alert = Alert(
        severity=severity,
        title=title,
        explanation=explanation,
        merchant_id=uuid.UUID(str(merchant_id)) if merchant_id else None,
        status="open",
    )
    db.add(alert)
    await db.flush()
    return alert


async def create_prediction_alerts(
    db: AsyncSession,
    predictions: Iterable[FailureProbability],
) -> list[Alert]:
    """Create one alert per high/critical prediction."""
    created = []
    for prediction in predictions:
        if prediction.risk_level not in (RiskLevel.CRITICAL, RiskLevel.HIGH):
            continue
        alert = await create_alert(
            db,
            severity=severity_for_risk(prediction.risk_level),
            title=f"{prediction.risk_level.value.upper()} failure risk detected",
            explanation=prediction_explanation(prediction),
            merchant_id=merchant_for_entity(prediction.entity_type, prediction.entity_id),
        )
        created.append(alert)

    if created:
        await db.commit()
        logger.warning("alerts.auto_created", count=len(created))
    return created

