import asyncio
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import Settings
from db.models import RiskNotification
from db.session import Base
from workers.risk import check_and_notify_risks, cleanup_resolved_notifications, retry_guard_notifications


def test_check_and_notify_risks_reports_sweep_result(monkeypatch):
    calls = []

    async def _fake_execute_sweep(sweep, database_url=None):
        calls.append(sweep)
        return {"status": "ok", "risky_entities": 2, "tracked": 2, "failed": 0, "cleaned": 0}

    monkeypatch.setattr("workers.risk.execute_sweep", _fake_execute_sweep)

    result = check_and_notify_risks.run()
    assert calls == ["check_and_notify_risks"]
    assert result["status"] == "success"
    assert result["tracked"] == 2
    assert result["run_id"] == "manual"


def test_retry_task_reports_failure(monkeypatch):
    async def _broken(sweep, database_url=None):
        raise ConnectionError("database unreachable")

    monkeypatch.setattr("workers.risk.execute_sweep", _broken)

    result = retry_guard_notifications.run()
    assert result["status"] == "failed"
    assert "database unreachable" in result["error"]


def test_cleanup_task_deletes_expired_records(tmp_path, monkeypatch):
    db_path = tmp_path / "risk.db"
    db_url = f"sqlite+aiosqlite:///{db_path}"
    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    now = datetime.utcnow()

    def _record(entity_id, resolved_at):
        return RiskNotification(
            entity_type="provider",
            entity_id=entity_id,
            entity_name=entity_id,
            risk_level="high",
            probability=0.6,
            status="resolved",
            resolved=True,
            resolved_at=resolved_at,
        )

    async def _seed() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as db:
            db.add_all([_record("expired", now - timedelta(days=10)), _record("kept", now - timedelta(days=1))])
            await db.commit()
        await engine.dispose()

    async def _remaining() -> list[str]:
        async with session_factory() as db:
            result = await db.execute(select(RiskNotification.entity_id))
            remaining = [row[0] for row in result.all()]
        await engine.dispose()
        return remaining

    asyncio.run(_seed())

    monkeypatch.setattr("core.config.get_settings", lambda: Settings(database_url=db_url, resolved_retention_days=7))

    result = cleanup_resolved_notifications.run()
    assert result["status"] == "success"
    assert result["count"] == 1
    assert asyncio.run(_remaining()) == ["kept"]


def test_retry_task_with_empty_database(tmp_path, monkeypatch):
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}"
    engine = create_async_engine(db_url, echo=False)

    async def _create() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_create())
    monkeypatch.setattr("core.config.get_settings", lambda: Settings(database_url=db_url))

    result = retry_guard_notifications.run()
    assert result["status"] == "success"
    assert result["retried"] == 0
    assert result["escalated"] == 0

