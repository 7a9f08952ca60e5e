"""
Alerts Router — Alert listing and status updates.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from db.models import Alert

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class AlertResponse(BaseModel):
    alert_id: UUID
    severity: str
    title: str
    explanation: str | None
    merchant_id: UUID | None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AlertSummary(BaseModel):
    total: int
    open: int
    acknowledged: int
    resolved: int
    critical: int
    warning: int


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[AlertResponse])
async def list_alerts(
    merchant_id: UUID | None = None,
    status: str | None = None,
    severity: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List alerts with filters."""
    query = select(Alert)
    if merchant_id:
        query = query.where(Alert.merchant_id == merchant_id)
    if status:
        query = query.where(Alert.status == status)
    if severity:
        query = query.where(Alert.severity == severity.upper())
    query = query.order_by(Alert.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/summary", response_model=AlertSummary)
async def get_alert_summary(db: AsyncSession = Depends(get_db)):
    """Get alert summary counts."""
    result = await db.execute(select(Alert.status, Alert.severity, func.count()).group_by(Alert.status, Alert.severity))
    by_status: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    total = 0
    for status, severity, count in result.all():
        by_status[status] = by_status.get(status, 0) + count
        by_severity[severity] = by_severity.get(severity, 0) + count
        total += count

    return AlertSummary(
        total=total,
        open=by_status.get("open", 0),
        acknowledged=by_status.get("acknowledged", 0),
        resolved=by_status.get("resolved", 0),
        critical=by_severity.get("CRITICAL", 0),
        warning=by_severity.get("WARNING", 0),
    )


async def _transition(db: AsyncSession, alert_id: UUID, target: str, allowed: tuple[str, ...]) -> Alert:
    result = await db.execute(select(Alert).where(Alert.alert_id == alert_id))
    alert = result.scalar_one_or_none()
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    if alert.status not in allowed:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot move alert from '{alert.status}' to '{target}'.",
        )
    alert.status = target
    await db.commit()
    await db.refresh(alert)
    return alert


@router.patch("/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(alert_id: UUID, db: AsyncSession = Depends(get_db)):
    """Acknowledge an alert."""
    return await _transition(db, alert_id, "acknowledged", ("open",))


@router.patch("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(alert_id: UUID, db: AsyncSession = Depends(get_db)):
    """Resolve an open or acknowledged alert."""
    return await _transition(db, alert_id, "resolved", ("open", "acknowledged"))
