"""
In-process sweep scheduler.

Runs the risk sweep and the guard retry sweep on two independent timers
inside the current event loop. Each timer runs its sweep to completion
before waiting for the next tick; stop() lets an in-flight sweep finish.

Used by the API lifespan when ``EMBEDDED_SCHEDULER=true``; production
deployments use Celery beat instead (see celery_app.py).
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings
from escalation.locks import EntityLockRegistry
from escalation.orchestrator import RiskNotificationOrchestrator, shared_locks

logger = structlog.get_logger()


class SweepScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        risk_interval_seconds: float | None = None,
        retry_interval_seconds: float | None = None,
        orchestrator_factory: Callable[[AsyncSession], RiskNotificationOrchestrator] | None = None,
        locks: EntityLockRegistry | None = None,
    ):
        settings = get_settings()
        if session_factory is None:
            from db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.risk_interval = risk_interval_seconds or settings.risk_sweep_interval_seconds
        self.retry_interval = retry_interval_seconds or settings.retry_sweep_interval_seconds
        # Same registry as API requests so sweeps and manual actions serialize per entity.
        self.locks = locks if locks is not None else shared_locks
        self.orchestrator_factory = orchestrator_factory or (
            lambda db: RiskNotificationOrchestrator(db, locks=self.locks)
        )

        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._sweep_locks = {"risk": asyncio.Lock(), "retry": asyncio.Lock()}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def _sweep(self, name: str, method: str) -> dict[str, Any]:
        async with self._sweep_locks[name]:
            try:
                async with self.session_factory() as db:
                    orchestrator = self.orchestrator_factory(db)
                    return await getattr(orchestrator, method)()
            except Exception as exc:  # noqa: BLE001
                logger.error("scheduler.sweep_failed", sweep=name, error=str(exc), exc_info=True)
                return {"status": "failed", "error": str(exc)}

    async def run_risk_sweep(self) -> dict[str, Any]:
        """Run one detection sweep now and wait for it."""
        return await self._sweep("risk", "check_and_notify_risks")

    async def run_retry_sweep(self) -> dict[str, Any]:
        """Run one guard retry sweep now and wait for it."""
        return await self._sweep("retry", "retry_sweep")

    async def _loop(self, name: str, interval: float, sweep: Callable[[], Awaitable[dict]]) -> None:
        while not self._stopping.is_set():
            await sweep()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
        logger.info("scheduler.loop_stopped", sweep=name)

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._loop("risk", self.risk_interval, self.run_risk_sweep)),
            asyncio.create_task(self._loop("retry", self.retry_interval, self.run_retry_sweep)),
        ]
        logger.info("scheduler.started", risk_interval=self.risk_interval, retry_interval=self.retry_interval)

    async def stop(self) -> None:
        self._stopping.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("scheduler.stopped")
