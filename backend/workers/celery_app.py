"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "routeguard",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.risk"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.risk.*": {"queue": "risk"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # Scoring + new-risk detection
        "risk-sweep-1m": {
            "task": "workers.risk.check_and_notify_risks",
            "schedule": crontab(minute="*"),
            "options": {"queue": "risk", "expires": 55},
        },
        # Guard reminders / escalation
        "guard-retry-sweep-10m": {
            "task": "workers.risk.retry_guard_notifications",
            "schedule": crontab(minute="*/10"),
            "options": {"queue": "risk"},
        },
        "cleanup-resolved-daily": {
            "task": "workers.risk.cleanup_resolved_notifications",
            "schedule": crontab(hour=4, minute=0),
            "options": {"queue": "risk"},
        },
    },
)
