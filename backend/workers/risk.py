"""
Risk Workers — detection sweep, guard retry sweep, and retention cleanup.

Each task opens its own engine and runs one orchestrator sweep inside
asyncio.run. Per-entity locks are scoped to the run.

Schedule: See celery_app.py beat_schedule
"""

import asyncio
from datetime import datetime, timezone

import structlog

from workers.celery_app import celery_app

logger = structlog.get_logger()

SWEEPS = ("check_and_notify_risks", "retry_sweep", "cleanup")


async def execute_sweep(sweep: str, database_url: str | None = None):
    """Run one orchestrator sweep against a fresh engine."""
    from core.config import get_settings
    from db.session import make_engine, make_session_factory
    from escalation.locks import EntityLockRegistry
    from escalation.orchestrator import RiskNotificationOrchestrator

    if sweep not in SWEEPS:
        raise ValueError(f"unknown sweep: {sweep}")

    settings = get_settings()
    engine = make_engine(database_url or settings.database_url, pooled=False)
    try:
        async with make_session_factory(engine)() as db:
            orchestrator = RiskNotificationOrchestrator(db, locks=EntityLockRegistry(), settings=settings)
            return await getattr(orchestrator, sweep)()
    finally:
        await engine.dispose()


def _run(task, sweep: str, event: str) -> dict:
    run_id = task.request.id or "manual"
    started_at = datetime.now(timezone.utc).isoformat()
    logger.info(f"{event}.started", run_id=run_id)
    try:
        result = asyncio.run(execute_sweep(sweep))
    except Exception as exc:  # noqa: BLE001
        logger.error(f"{event}.failed", run_id=run_id, error=str(exc), exc_info=True)
        return {"status": "failed", "error": str(exc), "run_id": run_id, "started_at": started_at}

    summary = result if isinstance(result, dict) else {"count": result}
    summary = {"status": "success", **summary, "run_id": run_id, "started_at": started_at}
    logger.info(f"{event}.completed", **summary)
    return summary


@celery_app.task(
    name="workers.risk.check_and_notify_risks",
    bind=True,
    acks_late=True,
)
def check_and_notify_risks(self):
    """Every minute: score merchants/providers and open guard cycles for new risks."""
    return _run(self, "check_and_notify_risks", "risk.sweep")


@celery_app.task(
    name="workers.risk.retry_guard_notifications",
    bind=True,
    acks_late=True,
)
def retry_guard_notifications(self):
    """Every 10 minutes: remind silent guards or escalate to the whole team."""
    return _run(self, "retry_sweep", "risk.retry_sweep")


@celery_app.task(
    name="workers.risk.cleanup_resolved_notifications",
    bind=True,
    acks_late=True,
)
def cleanup_resolved_notifications(self):
    """Daily: delete resolved risk notifications past the retention window."""
    return _run(self, "cleanup", "risk.cleanup")
