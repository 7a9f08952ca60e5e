"""
Risk Notifications Router — guard escalation records and manual actions.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from api.deps import get_orchestrator
from escalation.orchestrator import InvalidTransition, RiskNotificationNotFound, RiskNotificationOrchestrator

router = APIRouter(prefix="/api/v1/risk-notifications", tags=["risk-notifications"])

StatusFilter = Literal["guard_notified", "escalated", "dismissed", "resolved"]


# ─── Schemas ────────────────────────────────────────────────────────────────


class RiskNotificationItem(BaseModel):
    id: UUID
    entity_type: str
    entity_name: str
    risk_level: str
    status: str

    model_config = {"from_attributes": True}


class RiskNotificationPage(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    items: list[RiskNotificationItem]


class RiskNotificationResponse(BaseModel):
    id: UUID
    entity_type: str
    entity_id: str
    entity_name: str
    risk_level: str
    probability: float
    status: str
    guard_attempts: int
    last_guard_notification: datetime | None
    guard_user_id: UUID | None
    escalated_to_all: bool
    escalated_at: datetime | None
    dismissed_by_guard: bool
    dismissed_by_user_id: UUID | None
    dismissed_at: datetime | None
    dismissal_reason: str | None
    resolved: bool
    resolved_at: datetime | None
    risk_metadata: dict | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DismissRequest(BaseModel):
    user_id: UUID | None = None
    reason: str | None = None


class SweepResponse(BaseModel):
    status: str
    risky_entities: int
    tracked: int
    failed: int
    cleaned: int


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("", response_model=RiskNotificationPage)
async def list_risk_notifications(
    status: StatusFilter | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    orchestrator: RiskNotificationOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.list_notifications(status, page, limit)


@router.post("/check-now", response_model=SweepResponse)
async def check_now(orchestrator: RiskNotificationOrchestrator = Depends(get_orchestrator)):
    """Run one detection sweep immediately."""
    return await orchestrator.check_and_notify_risks()


@router.get("/{notification_id}", response_model=RiskNotificationResponse)
async def get_risk_notification(
    notification_id: UUID,
    orchestrator: RiskNotificationOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.get(notification_id)
    except RiskNotificationNotFound:
        raise HTTPException(status_code=404, detail="Risk notification not found")


@router.post("/{notification_id}/dismiss", response_model=RiskNotificationResponse)
async def dismiss_risk_notification(
    notification_id: UUID,
    body: DismissRequest | None = None,
    orchestrator: RiskNotificationOrchestrator = Depends(get_orchestrator),
):
    """Guard marks the risk as a false positive; suppresses re-notification."""
    body = body or DismissRequest()
    try:
        return await orchestrator.dismiss(notification_id, body.user_id, body.reason)
    except RiskNotificationNotFound:
        raise HTTPException(status_code=404, detail="Risk notification not found")
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.post("/{notification_id}/propagate", response_model=RiskNotificationResponse)
async def propagate_risk_notification(
    notification_id: UUID,
    orchestrator: RiskNotificationOrchestrator = Depends(get_orchestrator),
):
    """Escalate to the whole team right away."""
    try:
        return await orchestrator.propagate(notification_id)
    except RiskNotificationNotFound:
        raise HTTPException(status_code=404, detail="Risk notification not found")
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.post("/{notification_id}/resolve", response_model=RiskNotificationResponse)
async def resolve_risk_notification(
    notification_id: UUID,
    orchestrator: RiskNotificationOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.resolve(notification_id)
    except RiskNotificationNotFound:
        raise HTTPException(status_code=404, detail="Risk notification not found")
