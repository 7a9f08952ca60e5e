"""
RouteGuard Database Session Management

The API shares one pooled async engine. Celery tasks run each sweep inside
their own asyncio.run, so they build a short-lived unpooled engine instead.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from core.config import get_settings


def make_engine(database_url: str, *, echo: bool = False, pooled: bool = True) -> AsyncEngine:
    if not pooled:
        return create_async_engine(database_url, echo=echo, poolclass=NullPool)
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


settings = get_settings()
engine = make_engine(settings.database_url, echo=settings.database_echo)
AsyncSessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    """Declarative base for all RouteGuard models."""
