"""
Health Graph Router — route health as merchant → provider → method → country paths.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from prediction.health_graph import get_health_graph
from prediction.schemas import HealthGraphQuery, HealthGraphResponse

router = APIRouter(prefix="/api/v1/health-graph", tags=["health-graph"])


def health_graph_query(
    merchant_id: UUID | None = None,
    provider_id: UUID | None = None,
    method_id: UUID | None = None,
    country_code: str | None = Query(None, min_length=2, max_length=2),
    time_window_minutes: int = Query(60, gt=0, le=60 * 24 * 30),
    only_issues: bool = False,
    critical_error_rate: float = Query(0.3, ge=0, le=1),
    warning_error_rate: float = Query(0.15, ge=0, le=1),
    critical_approval_rate: float = Query(0.5, ge=0, le=1),
    warning_approval_rate: float = Query(0.7, ge=0, le=1),
    critical_approval_loss_rate: float = Query(0.2, ge=0, le=1),
    warning_approval_loss_rate: float = Query(0.1, ge=0, le=1),
) -> HealthGraphQuery:
    return HealthGraphQuery(
        merchant_id=merchant_id,
        provider_id=provider_id,
        method_id=method_id,
        country_code=country_code,
        time_window_minutes=time_window_minutes,
        only_issues=only_issues,
        critical_error_rate=critical_error_rate,
        warning_error_rate=warning_error_rate,
        critical_approval_rate=critical_approval_rate,
        warning_approval_rate=warning_approval_rate,
        critical_approval_loss_rate=critical_approval_loss_rate,
        warning_approval_loss_rate=warning_approval_loss_rate,
    )


@router.get("", response_model=HealthGraphResponse)
async def health_graph(
    query: HealthGraphQuery = Depends(health_graph_query),
    db: AsyncSession = Depends(get_db),
):
    """Every route in the window with node, edge, and overall status."""
    return await get_health_graph(db, query)


@router.get("/critical", response_model=HealthGraphResponse)
async def critical_routes(
    query: HealthGraphQuery = Depends(health_graph_query),
    db: AsyncSession = Depends(get_db),
):
    """Only routes with a warning or critical overall status."""
    return await get_health_graph(db, query.model_copy(update={"only_issues": True}))
