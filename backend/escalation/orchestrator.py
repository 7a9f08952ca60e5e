"""
Risk Notification Orchestrator — guard escalation state machine.

States:
  guard_notified ──retry (attempts < max)──► guard_notified
  guard_notified ──attempts exhausted / propagate──► escalated
  guard_notified | escalated ──dismiss──► dismissed
  any ──resolve──► resolved

Every read-modify-write on a record runs under the per-entity lock so a
sweep and a manual action cannot interleave on the same entity.
"""

from __future__ import annotations

import json
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.engine import (
    CRITICAL,
    create_alert,
    merchant_for_entity,
    prediction_explanation,
    severity_for_risk,
)
from core.config import Settings, get_settings
from db.models import RiskNotification
from escalation import roster
from escalation.locks import EntityLockRegistry
from notifications.dispatch import NotificationDispatcher
from notifications.templates import GuardContext, escalation_explanation, reminder_explanation
from prediction.schemas import EntityType, FailureProbability, PredictionQuery, RiskLevel, RiskSnapshot
from prediction.service import get_predictions

logger = structlog.get_logger()

GUARD_NOTIFIED = "guard_notified"
ESCALATED = "escalated"
DISMISSED = "dismissed"
RESOLVED = "resolved"
STATUSES = (GUARD_NOTIFIED, ESCALATED, DISMISSED, RESOLVED)

NOTIFIABLE_LEVELS = (RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)
OVERRIDE_KEYS = ("guard_retry_interval_minutes", "guard_max_attempts", "dismissal_suppression_hours")

# Shared by API requests and the embedded sweep scheduler.
shared_locks = EntityLockRegistry()


class RiskNotificationNotFound(Exception):
    """No risk notification with the requested id."""


class InvalidTransition(Exception):
    """The requested action is not allowed from the record's current state."""


def _parse_overrides(raw: str) -> dict[str, dict[str, int]]:
    """
    Per-entity-type overrides, e.g.
      ESCALATION_OVERRIDES='{"provider": {"guard_retry_interval_minutes": 5}}'
    """
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("risk.policy.invalid_overrides")
        return {}
    if not isinstance(payload, dict):
        return {}

    overrides = {}
    for entity_type, values in payload.items():
        if not isinstance(values, dict):
            continue
        overrides[str(entity_type)] = {k: int(v) for k, v in values.items() if k in OVERRIDE_KEYS}
    return overrides


@dataclass(frozen=True)
class EscalationPolicy:
    """Timing knobs for the guard retry / escalation cycle."""

    guard_retry_interval_minutes: int = 10
    guard_max_attempts: int = 3
    dismissal_suppression_hours: int = 24
    resolved_retention_days: int = 7
    detection_window_minutes: int = 10800
    detection_baseline_hours: int = 336
    detection_entity_types: tuple[EntityType, ...] = (EntityType.MERCHANT, EntityType.PROVIDER)
    overrides: Mapping[str, Mapping[str, int]] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "EscalationPolicy":
        settings = settings or get_settings()
        return cls(
            guard_retry_interval_minutes=settings.guard_retry_interval_minutes,
            guard_max_attempts=settings.guard_max_attempts,
            dismissal_suppression_hours=settings.dismissal_suppression_hours,
            resolved_retention_days=settings.resolved_retention_days,
            detection_window_minutes=settings.risk_detection_window_minutes,
            detection_baseline_hours=settings.risk_detection_baseline_hours,
            detection_entity_types=tuple(EntityType(t) for t in settings.risk_detection_entity_types),
            overrides=_parse_overrides(settings.escalation_overrides),
        )

    def _value(self, entity_type: str, key: str) -> int:
        return int(self.overrides.get(str(entity_type), {}).get(key, getattr(self, key)))

    def retry_interval(self, entity_type: str) -> timedelta:
        return timedelta(minutes=self._value(entity_type, "guard_retry_interval_minutes"))

    def max_attempts(self, entity_type: str) -> int:
        return self._value(entity_type, "guard_max_attempts")

    def suppression_window(self, entity_type: str) -> timedelta:
        return timedelta(hours=self._value(entity_type, "dismissal_suppression_hours"))

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.resolved_retention_days)


def _entity_value(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


class RiskNotificationOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        policy: EscalationPolicy | None = None,
        locks: EntityLockRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.dispatcher = dispatcher or NotificationDispatcher(db, settings=self.settings)
        self.policy = policy or EscalationPolicy.from_settings(self.settings)
        self.locks = locks if locks is not None else shared_locks

    # ── Lookups ────────────────────────────────────────────────────────────

    async def get(self, notification_id: uuid.UUID | str) -> RiskNotification:
        try:
            key = uuid.UUID(str(notification_id))
        except ValueError:
            raise RiskNotificationNotFound(str(notification_id))
        record = await self.db.get(RiskNotification, key)
        if record is None:
            raise RiskNotificationNotFound(str(notification_id))
        return record

    async def _open_record(self, entity_type: str, entity_id: str) -> RiskNotification | None:
        """Unresolved guard_notified or escalated record for the entity."""
        result = await self.db.execute(
            select(RiskNotification)
            .where(
                RiskNotification.entity_type == entity_type,
                RiskNotification.entity_id == entity_id,
                RiskNotification.status.in_((GUARD_NOTIFIED, ESCALATED)),
                RiskNotification.resolved.is_(False),
            )
            .order_by(RiskNotification.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def _recently_dismissed(self, entity_type: str, entity_id: str, now: datetime) -> bool:
        cutoff = now - self.policy.suppression_window(entity_type)
        result = await self.db.execute(
            select(func.count())
            .select_from(RiskNotification)
            .where(
                RiskNotification.entity_type == entity_type,
                RiskNotification.entity_id == entity_id,
                RiskNotification.dismissed_by_guard.is_(True),
                RiskNotification.dismissed_at > cutoff,
            )
        )
        return result.scalar_one() > 0

    def _guard_context(self, record: RiskNotification) -> GuardContext:
        return GuardContext(
            attempt=record.guard_attempts,
            max_attempts=self.policy.max_attempts(record.entity_type),
            retry_minutes=int(self.policy.retry_interval(record.entity_type).total_seconds() // 60),
            backend_url=self.settings.backend_url,
        )

    # ── Detection ──────────────────────────────────────────────────────────

    async def detect(self, entity: FailureProbability, now: datetime | None = None) -> RiskNotification | None:
        """
        Track a risky entity. Returns the open record, or None when the entity
        was dismissed within the suppression window.
        """
        now = now or datetime.utcnow()
        entity_type = _entity_value(entity.entity_type)
        risk_level = _entity_value(entity.risk_level)

        async with self.locks.lock(entity_type, entity.entity_id):
            existing = await self._open_record(entity_type, entity.entity_id)
            if existing is not None:
                if existing.risk_level != risk_level or existing.probability != entity.probability:
                    logger.info(
                        "risk.level_updated",
                        entity_type=entity_type,
                        entity_id=entity.entity_id,
                        previous=existing.risk_level,
                        current=risk_level,
                    )
                    existing.risk_level = risk_level
                    existing.probability = entity.probability
                    existing.risk_metadata = RiskSnapshot.from_prediction(entity).model_dump(mode="json")
                    await self.db.commit()
                return existing

            if await self._recently_dismissed(entity_type, entity.entity_id, now):
                logger.info("risk.suppressed", entity_type=entity_type, entity_id=entity.entity_id)
                return None

            record = RiskNotification(
                entity_type=entity_type,
                entity_id=entity.entity_id,
                entity_name=entity.entity_name,
                risk_level=risk_level,
                probability=entity.probability,
                guard_attempts=0,
                risk_metadata=RiskSnapshot.from_prediction(entity).model_dump(mode="json"),
                created_at=now,
                updated_at=now,
            )

            guard = await roster.current_guard(self.db, now)
            if guard is None:
                logger.error("risk.no_guard", entity_type=entity_type, entity_id=entity.entity_id)
                self.db.add(record)
                return await self._escalate(record, now)

            record.status = GUARD_NOTIFIED
            record.guard_attempts = 1
            record.last_guard_notification = now
            record.guard_user_id = guard.user_id
            self.db.add(record)

            alert = await create_alert(
                self.db,
                severity=severity_for_risk(risk_level),
                title=f"⚠️ Risk {risk_level.upper()} detected: {entity.entity_name}",
                explanation=prediction_explanation(entity),
                merchant_id=merchant_for_entity(entity_type, entity.entity_id),
            )
            await self.dispatcher.notify_guard(alert, guard, record, self._guard_context(record))
            await self.db.commit()

            logger.warning(
                "risk.guard_notified",
                entity_type=entity_type,
                entity_id=entity.entity_id,
                risk_level=risk_level,
                guard_user_id=str(guard.user_id),
            )
            return record

    # ── Retry / escalation ─────────────────────────────────────────────────

    async def _due_for_retry(self, now: datetime) -> list[tuple[uuid.UUID, str, str]]:
        result = await self.db.execute(
            select(RiskNotification)
            .where(
                RiskNotification.status == GUARD_NOTIFIED,
                RiskNotification.escalated_to_all.is_(False),
                RiskNotification.dismissed_by_guard.is_(False),
                RiskNotification.resolved.is_(False),
                RiskNotification.last_guard_notification.is_not(None),
            )
            .order_by(RiskNotification.last_guard_notification)
        )
        return [
            (record.id, record.entity_type, record.entity_id)
            for record in result.scalars().all()
            if record.last_guard_notification < now - self.policy.retry_interval(record.entity_type)
        ]

    async def _retry_guard(self, record: RiskNotification, now: datetime) -> None:
        record.guard_attempts += 1
        record.last_guard_notification = now
        record.updated_at = now
        max_attempts = self.policy.max_attempts(record.entity_type)

        guard = await roster.get_user(self.db, record.guard_user_id)
        if guard is None or not guard.active:
            logger.error("risk.guard_missing", record_id=str(record.id), guard_user_id=str(record.guard_user_id))
            await self.db.commit()
            return

        alert = await create_alert(
            self.db,
            severity=severity_for_risk(record.risk_level),
            title=f"⚠️ [REMINDER {record.guard_attempts}] Risk {record.risk_level.upper()}: {record.entity_name}",
            explanation=reminder_explanation(record.guard_attempts, max_attempts),
            merchant_id=merchant_for_entity(record.entity_type, record.entity_id),
        )
        await self.dispatcher.notify_guard(alert, guard, record, self._guard_context(record))
        await self.db.commit()
        logger.info(
            "risk.guard_reminded",
            record_id=str(record.id),
            attempt=record.guard_attempts,
            max_attempts=max_attempts,
        )

    async def retry_sweep(self, now: datetime | None = None) -> dict[str, int]:
        """Remind silent guards, escalating once attempts are exhausted."""
        now = now or datetime.utcnow()
        counts = {"retried": 0, "escalated": 0, "failed": 0}

        for record_id, entity_type, entity_id in await self._due_for_retry(now):
            try:
                async with self.locks.lock(entity_type, entity_id):
                    record = await self.db.get(RiskNotification, record_id, populate_existing=True)
                    if record is None or record.status != GUARD_NOTIFIED or record.resolved or record.dismissed_by_guard:
                        continue
                    if record.guard_attempts < self.policy.max_attempts(record.entity_type):
                        await self._retry_guard(record, now)
                        counts["retried"] += 1
                    else:
                        logger.warning(
                            "risk.guard_unresponsive",
                            record_id=str(record_id),
                            attempts=record.guard_attempts,
                        )
                        await self._escalate(record, now)
                        counts["escalated"] += 1
            except Exception as exc:  # noqa: BLE001
                await self.db.rollback()
                counts["failed"] += 1
                logger.error("risk.retry_failed", record_id=str(record_id), error=str(exc))

        logger.info("risk.retry_sweep.completed", **counts)
        return counts

    async def _escalate(self, record: RiskNotification, now: datetime) -> RiskNotification:
        record.status = ESCALATED
        record.escalated_to_all = True
        record.escalated_at = now
        record.updated_at = now
        await self.db.flush()

        users = await roster.active_internal_users(self.db)
        alert = await create_alert(
            self.db,
            severity=CRITICAL,
            title=f"🚨 [ESCALATED] CRITICAL Risk: {record.entity_name}",
            explanation=escalation_explanation(record.guard_attempts),
            merchant_id=merchant_for_entity(record.entity_type, record.entity_id),
        )
        await self.dispatcher.notify_escalation(alert, users, record)
        await self.db.commit()

        logger.warning(
            "risk.escalated",
            record_id=str(record.id),
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            recipients=len(users),
        )
        return record

    async def escalate_to_all(
        self,
        target: FailureProbability | RiskNotification,
        now: datetime | None = None,
    ) -> RiskNotification:
        """Escalate an existing record, or open one already escalated for a new entity."""
        now = now or datetime.utcnow()
        if isinstance(target, RiskNotification):
            async with self.locks.lock(target.entity_type, target.entity_id):
                # The caller's copy may predate a resolve or dismiss committed while waiting.
                await self.db.refresh(target)
                if target.resolved or target.status == DISMISSED:
                    raise InvalidTransition(f"cannot escalate a {target.status} risk notification")
                return await self._escalate(target, now)

        entity_type = _entity_value(target.entity_type)
        async with self.locks.lock(entity_type, target.entity_id):
            record = RiskNotification(
                entity_type=entity_type,
                entity_id=target.entity_id,
                entity_name=target.entity_name,
                risk_level=_entity_value(target.risk_level),
                probability=target.probability,
                guard_attempts=0,
                risk_metadata=RiskSnapshot.from_prediction(target).model_dump(mode="json"),
                created_at=now,
                updated_at=now,
            )
            self.db.add(record)
            return await self._escalate(record, now)

    # ── Manual actions ─────────────────────────────────────────────────────

    async def dismiss(
        self,
        notification_id: uuid.UUID | str,
        user_id: uuid.UUID | str | None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> RiskNotification:
        now = now or datetime.utcnow()
        record = await self.get(notification_id)
        async with self.locks.lock(record.entity_type, record.entity_id):
            await self.db.refresh(record)
            if record.resolved:
                raise InvalidTransition("cannot dismiss a resolved risk notification")
            record.status = DISMISSED
            record.dismissed_by_guard = True
            record.dismissed_by_user_id = uuid.UUID(str(user_id)) if user_id else None
            record.dismissed_at = now
            record.dismissal_reason = reason
            record.updated_at = now
            await self.db.commit()

        logger.info("risk.dismissed", record_id=str(record.id), user_id=str(user_id), reason=reason)
        return record

    async def propagate(self, notification_id: uuid.UUID | str, now: datetime | None = None) -> RiskNotification:
        """Escalate to everyone now, whatever the attempt count."""
        now = now or datetime.utcnow()
        record = await self.get(notification_id)
        async with self.locks.lock(record.entity_type, record.entity_id):
            await self.db.refresh(record)
            if record.resolved or record.status == DISMISSED:
                raise InvalidTransition(f"cannot propagate a {record.status} risk notification")
            logger.info("risk.propagated", record_id=str(record.id))
            return await self._escalate(record, now)

    async def resolve(self, notification_id: uuid.UUID | str, now: datetime | None = None) -> RiskNotification:
        now = now or datetime.utcnow()
        record = await self.get(notification_id)
        async with self.locks.lock(record.entity_type, record.entity_id):
            await self.db.refresh(record)
            if not record.resolved:
                record.status = RESOLVED
                record.resolved = True
                record.resolved_at = now
                record.updated_at = now
                await self.db.commit()

        logger.info("risk.resolved", record_id=str(record.id))
        return record

    # ── Sweeps ─────────────────────────────────────────────────────────────

    async def cleanup(self, now: datetime | None = None) -> int:
        """Delete resolved records older than the retention window."""
        now = now or datetime.utcnow()
        cutoff = now - self.policy.retention
        result = await self.db.execute(
            delete(RiskNotification).where(
                RiskNotification.resolved.is_(True),
                RiskNotification.resolved_at < cutoff,
            )
        )
        await self.db.commit()
        deleted = result.rowcount or 0
        if deleted:
            logger.info("risk.cleanup.deleted", count=deleted)
        return deleted

    async def check_and_notify_risks(self, now: datetime | None = None) -> dict[str, Any]:
        """Score merchants and providers over the detection window and detect each risky one."""
        now = now or datetime.utcnow()
        logger.info("risk.sweep.started", entity_types=[t.value for t in self.policy.detection_entity_types])

        risky: list[FailureProbability] = []
        for entity_type in self.policy.detection_entity_types:
            query = PredictionQuery(
                entity_type=entity_type,
                time_window_minutes=self.policy.detection_window_minutes,
                baseline_window_hours=self.policy.detection_baseline_hours,
                include_low_risk=False,
            )
            summary = await get_predictions(self.db, query, now=now)
            risky.extend(p for p in summary.predictions if p.risk_level in NOTIFIABLE_LEVELS)

        detected = failed = 0
        for entity in risky:
            try:
                if await self.detect(entity, now) is not None:
                    detected += 1
            except Exception as exc:  # noqa: BLE001
                await self.db.rollback()
                failed += 1
                logger.error(
                    "risk.detect_failed",
                    entity_type=_entity_value(entity.entity_type),
                    entity_id=entity.entity_id,
                    error=str(exc),
                )

        cleaned = await self.cleanup(now)
        result = {
            "status": "ok",
            "risky_entities": len(risky),
            "tracked": detected,
            "failed": failed,
            "cleaned": cleaned,
        }
        logger.info("risk.sweep.completed", **{k: v for k, v in result.items() if k != "status"})
        return result

    async def list_notifications(self, status: str | None = None, page: int = 1, limit: int = 20) -> dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)

        count_stmt = select(func.count()).select_from(RiskNotification)
        stmt = select(RiskNotification).order_by(RiskNotification.created_at.desc())
        if status:
            count_stmt = count_stmt.where(RiskNotification.status == status)
            stmt = stmt.where(RiskNotification.status == status)

        total = (await self.db.execute(count_stmt)).scalar_one()
        result = await self.db.execute(stmt.offset((page - 1) * limit).limit(limit))
        return {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
            "items": list(result.scalars().all()),
        }
