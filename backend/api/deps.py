"""
RouteGuard API Dependencies

Dependency injection for DB sessions and the risk notification orchestrator.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import AsyncSessionLocal
from escalation.orchestrator import RiskNotificationOrchestrator


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_orchestrator(db: AsyncSession = Depends(get_db)) -> RiskNotificationOrchestrator:
    return RiskNotificationOrchestrator(db)
