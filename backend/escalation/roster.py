"""On-call roster and user directory lookups."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import OnCallSchedule, User

INTERNAL_USER_TYPE = "YUNO"


def _valid_at(now: datetime):
    return (
        OnCallSchedule.active.is_(True),
        or_(OnCallSchedule.start_at.is_(None), OnCallSchedule.start_at <= now),
        or_(OnCallSchedule.end_at.is_(None), OnCallSchedule.end_at > now),
    )


async def find_by_priority(db: AsyncSession, priority: int, now: datetime | None = None) -> OnCallSchedule | None:
    now = now or datetime.utcnow()
    result = await db.execute(
        select(OnCallSchedule)
        .where(OnCallSchedule.priority == priority, *_valid_at(now))
        .order_by(OnCallSchedule.created_at)
        .limit(1)
    )
    return result.scalars().first()


async def current(db: AsyncSession, now: datetime | None = None) -> OnCallSchedule | None:
    """Lowest-priority-number active schedule valid at ``now``."""
    now = now or datetime.utcnow()
    result = await db.execute(
        select(OnCallSchedule)
        .where(*_valid_at(now))
        .order_by(OnCallSchedule.priority, OnCallSchedule.created_at)
        .limit(1)
    )
    return result.scalars().first()


async def current_guard(db: AsyncSession, now: datetime | None = None) -> User | None:
    """Priority-1 guard, falling back to whoever is first on the roster."""
    schedule = await find_by_priority(db, 1, now) or await current(db, now)
    if schedule is None:
        return None
    user = await get_user(db, schedule.user_id)
    if user is None or not user.active:
        return None
    return user


async def get_user(db: AsyncSession, user_id: uuid.UUID | str | None) -> User | None:
    if user_id is None:
        return None
    return await db.get(User, uuid.UUID(str(user_id)))


async def active_internal_users(db: AsyncSession) -> list[User]:
    result = await db.execute(
        select(User).where(User.user_type == INTERNAL_USER_TYPE, User.active.is_(True)).order_by(User.name)
    )
    return list(result.scalars().all())
