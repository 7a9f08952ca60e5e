"""
Failure Prediction Router — route risk scoring, rankings, and dashboard.
"""

from enum import Enum
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from prediction import service
from prediction.schemas import (
    DashboardResponse,
    EntityType,
    PredictionQuery,
    PredictionRequest,
    PredictionSummary,
    Top3Summary,
    TopRiskyEntity,
)

router = APIRouter(prefix="/api/v1/failure-prediction", tags=["failure-prediction"])


class Top3Scope(str, Enum):
    MERCHANTS = "merchants"
    PROVIDERS = "providers"
    METHODS = "methods"
    OVERALL = "overall"


SCOPE_ENTITY = {
    Top3Scope.MERCHANTS: EntityType.MERCHANT,
    Top3Scope.PROVIDERS: EntityType.PROVIDER,
    Top3Scope.METHODS: EntityType.METHOD,
}


def prediction_query(
    merchant_id: UUID | None = None,
    provider_id: UUID | None = None,
    method_id: UUID | None = None,
    country_code: str | None = Query(None, min_length=2, max_length=2),
    time_window_minutes: int = Query(60, gt=0, le=60 * 24 * 30),
    baseline_window_hours: int = Query(168, gt=0, le=24 * 365),
    min_sample_size: int = Query(1, ge=0),
    include_low_risk: bool = False,
    entity_type: EntityType | None = None,
) -> PredictionQuery:
    return PredictionQuery(
        merchant_id=merchant_id,
        provider_id=provider_id,
        method_id=method_id,
        country_code=country_code,
        time_window_minutes=time_window_minutes,
        baseline_window_hours=baseline_window_hours,
        min_sample_size=min_sample_size,
        include_low_risk=include_low_risk,
        entity_type=entity_type,
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("", response_model=PredictionSummary)
async def get_predictions(
    query: PredictionQuery = Depends(prediction_query),
    db: AsyncSession = Depends(get_db),
):
    """Score every route (or entity) in the recent window."""
    return await service.get_predictions(db, query)


@router.post("", response_model=PredictionSummary)
async def run_predictions(body: PredictionRequest, db: AsyncSession = Depends(get_db)):
    """Score with a partial weight / threshold / normalization override."""
    return await service.get_predictions(db, body.query, body.config)


@router.get("/merchants/at-risk", response_model=PredictionSummary)
async def merchants_at_risk(
    time_window_minutes: int = Query(60, gt=0, le=60 * 24 * 30),
    db: AsyncSession = Depends(get_db),
):
    query = PredictionQuery(entity_type=EntityType.MERCHANT, time_window_minutes=time_window_minutes)
    return await service.get_predictions(db, query)


@router.get("/providers/at-risk", response_model=PredictionSummary)
async def providers_at_risk(
    time_window_minutes: int = Query(60, gt=0, le=60 * 24 * 30),
    db: AsyncSession = Depends(get_db),
):
    query = PredictionQuery(entity_type=EntityType.PROVIDER, time_window_minutes=time_window_minutes)
    return await service.get_predictions(db, query)


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(db: AsyncSession = Depends(get_db)):
    """Merchant, provider and method summaries with a weighted global health."""
    return await service.get_dashboard(db)


@router.get("/top3", response_model=Top3Summary)
async def top3_summary(
    query: PredictionQuery = Depends(prediction_query),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_top3_summary(db, query)


@router.get("/top3/{scope}", response_model=list[TopRiskyEntity])
async def top3(
    scope: Top3Scope,
    query: PredictionQuery = Depends(prediction_query),
    db: AsyncSession = Depends(get_db),
):
    if scope == Top3Scope.OVERALL:
        return await service.get_overall_top3(db, query)
    return await service.get_top3(db, SCOPE_ENTITY[scope], query)
