"""
Window Fetcher + Entity Grouper.

Loads transaction facts for the recent and baseline windows (optionally
filtered by route dimension) and partitions them by the requested
aggregation key.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Country, Merchant, PaymentMethod, Provider, Transaction
from prediction.schemas import SINGLE_DIMENSION_TYPES, EntityType, PredictionQuery

logger = structlog.get_logger()

ROUTE_SEPARATOR = "|"
UNKNOWN_NAME = "Unknown"

_DIMENSION_ATTR = {
    EntityType.MERCHANT: "merchant_id",
    EntityType.PROVIDER: "provider_id",
    EntityType.METHOD: "method_id",
    EntityType.COUNTRY: "country_code",
}


@dataclass(frozen=True)
class TransactionFact:
    status: str
    latency_ms: int | None
    merchant_id: str
    provider_id: str
    method_id: str
    country_code: str
    date: datetime


@dataclass(frozen=True)
class Windows:
    now: datetime
    recent_start: datetime
    baseline_start: datetime


def resolve_windows(query: PredictionQuery, now: datetime | None = None) -> Windows:
    now = now or datetime.utcnow()
    return Windows(
        now=now,
        recent_start=now - timedelta(minutes=query.time_window_minutes),
        baseline_start=now - timedelta(hours=query.baseline_window_hours),
    )


async def fetch_transactions(
    db: AsyncSession,
    query: PredictionQuery,
    start: datetime,
    end: datetime,
) -> list[TransactionFact]:
    """Transactions with start <= date < end matching the query's route filters."""
    stmt = select(
        Transaction.status,
        Transaction.latency_ms,
        Transaction.merchant_id,
        Transaction.provider_id,
        Transaction.method_id,
        Transaction.country_code,
        Transaction.date,
    ).where(Transaction.date >= start, Transaction.date < end)

    if query.merchant_id:
        stmt = stmt.where(Transaction.merchant_id == query.merchant_id)
    if query.provider_id:
        stmt = stmt.where(Transaction.provider_id == query.provider_id)
    if query.method_id:
        stmt = stmt.where(Transaction.method_id == query.method_id)
    if query.country_code:
        stmt = stmt.where(Transaction.country_code == query.country_code)

    result = await db.execute(stmt)
    return [
        TransactionFact(
            status=row.status,
            latency_ms=row.latency_ms,
            merchant_id=str(row.merchant_id),
            provider_id=str(row.provider_id),
            method_id=str(row.method_id),
            country_code=row.country_code,
            date=row.date,
        )
        for row in result.all()
    ]


async def fetch_windows(
    db: AsyncSession,
    query: PredictionQuery,
    windows: Windows,
) -> tuple[list[TransactionFact], list[TransactionFact]]:
    """
    Return (recent, baseline) transaction sets.

    The two sets are disjoint: baseline covers [baseline_start, recent_start).
    When the baseline window is not longer than the recent one it is empty.
    """
    recent = await fetch_transactions(db, query, windows.recent_start, windows.now)
    baseline: list[TransactionFact] = []
    if windows.baseline_start < windows.recent_start:
        baseline = await fetch_transactions(db, query, windows.baseline_start, windows.recent_start)
    return recent, baseline


def split_route_key(key: str) -> tuple[str, str, str, str]:
    merchant_id, provider_id, method_id, country_code = key.split(ROUTE_SEPARATOR)
    return merchant_id, provider_id, method_id, country_code


def group_by(
    transactions: Iterable[TransactionFact],
    dimensions: Sequence[EntityType],
) -> dict[str, list[TransactionFact]]:
    """Partition by one or more dimensions; multi-dimension keys are joined with ``|``."""
    attrs = [_DIMENSION_ATTR[d] for d in dimensions]
    groups: dict[str, list[TransactionFact]] = defaultdict(list)
    for tx in transactions:
        groups[ROUTE_SEPARATOR.join(getattr(tx, attr) for attr in attrs)].append(tx)
    return dict(groups)


def group_transactions(
    transactions: Iterable[TransactionFact],
    entity_type: EntityType,
) -> dict[str, list[TransactionFact]]:
    """Partition by a single dimension, or by the full route key for ``route``."""
    if entity_type == EntityType.ROUTE:
        return group_by(transactions, SINGLE_DIMENSION_TYPES)
    return group_by(transactions, (entity_type,))


async def _names_for(db: AsyncSession, entity_type: EntityType, ids: set[str]) -> dict[str, str]:
    if not ids:
        return {}
    if entity_type == EntityType.COUNTRY:
        result = await db.execute(select(Country.code, Country.name).where(Country.code.in_(ids)))
        return {row.code: row.name for row in result.all()}

    model, pk = {
        EntityType.MERCHANT: (Merchant, Merchant.merchant_id),
        EntityType.PROVIDER: (Provider, Provider.provider_id),
        EntityType.METHOD: (PaymentMethod, PaymentMethod.method_id),
    }[entity_type]
    result = await db.execute(select(pk.label("id"), model.name).where(pk.in_(ids)))
    return {str(row.id): row.name for row in result.all()}


async def resolve_entity_names(
    db: AsyncSession,
    entity_type: EntityType,
    keys: Iterable[str],
) -> dict[str, str]:
    """
    Display names per group key. Missing entities resolve to "Unknown";
    routes render as ``Merchant → Provider → Method (CC)``.
    """
    keys = list(keys)
    if entity_type != EntityType.ROUTE:
        names = await _names_for(db, entity_type, set(keys))
        return {key: names.get(key, UNKNOWN_NAME) for key in keys}

    parts = {key: split_route_key(key) for key in keys}
    merchants = await _names_for(db, EntityType.MERCHANT, {p[0] for p in parts.values()})
    providers = await _names_for(db, EntityType.PROVIDER, {p[1] for p in parts.values()})
    methods = await _names_for(db, EntityType.METHOD, {p[2] for p in parts.values()})

    return {
        key: (
            f"{merchants.get(m, UNKNOWN_NAME)} → {providers.get(p, UNKNOWN_NAME)} "
            f"→ {methods.get(pm, UNKNOWN_NAME)} ({cc})"
        )
        for key, (m, p, pm, cc) in parts.items()
    }
