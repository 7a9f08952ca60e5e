"""
Test Configuration — Fixtures for async DB, test client, and mock data.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state while sharing the same session-level schema.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_db, get_orchestrator
from api.main import app
from core.config import Settings
from db.models import (
    Country,
    Merchant,
    NotificationChannel,
    OnCallSchedule,
    PaymentMethod,
    Provider,
    Transaction,
    User,
)
from db.session import Base
from escalation.locks import EntityLockRegistry
from escalation.orchestrator import RiskNotificationOrchestrator
from notifications.channels import ChannelRegistry, ChannelTransport, ChannelType, MessagePayload
from notifications.dispatch import NotificationDispatcher

# Use in-memory SQLite for tests.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

NOW = datetime(2026, 3, 2, 12, 0, 0)


@pytest.fixture(scope="session")
async def test_engine():
    """Create a test database engine and build all tables once."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Use SAVEPOINT so nested commits inside app code don't end our transaction
        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(db_session, transaction):
            if transaction.nested and not transaction._parent.nested:
                session.sync_session.begin_nested()

        await conn.begin_nested()  # SAVEPOINT

        yield session

        await session.close()
        await trans.rollback()


# ─── Notification transports ───────────────────────────────────────────────


class RecordingTransport(ChannelTransport):
    """Keeps every payload instead of sending it."""

    def __init__(self, channel_type: ChannelType, fail: bool = False):
        self.channel_type = channel_type
        self.fail = fail
        self.sent: list[MessagePayload] = []

    async def send(self, payload: MessagePayload) -> bool:
        if self.fail:
            raise ConnectionError(f"{self.channel_type.value} transport down")
        self.sent.append(payload)
        return True


@pytest.fixture
def transports():
    return {channel: RecordingTransport(channel) for channel in ChannelType}


@pytest.fixture
def registry(transports):
    return ChannelRegistry(list(transports.values()))


@pytest.fixture
def test_settings():
    return Settings(
        app_env="test",
        guard_channels=["gmail", "whatsapp"],
        escalation_channels=["gmail", "whatsapp"],
        guard_retry_interval_minutes=10,
        guard_max_attempts=3,
        dismissal_suppression_hours=24,
        resolved_retention_days=7,
        escalation_overrides="",
    )


@pytest.fixture
def orchestrator(test_db, registry, test_settings):
    dispatcher = NotificationDispatcher(test_db, registry=registry, settings=test_settings)
    return RiskNotificationOrchestrator(
        test_db,
        dispatcher=dispatcher,
        locks=EntityLockRegistry(),
        settings=test_settings,
    )


@pytest.fixture
async def client(test_db, orchestrator):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    async def override_get_orchestrator():
        return orchestrator

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = override_get_orchestrator

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Seed data ─────────────────────────────────────────────────────────────


@dataclass
class Seed:
    merchant: Merchant
    other_merchant: Merchant
    provider: Provider
    method: PaymentMethod
    country: Country
    guard: User
    teammate: User
    no_phone: User
    merchant_user: User
    schedule: OnCallSchedule


@pytest.fixture
async def seeded_db(test_db):
    """Reference entities, users, channels, and a priority-1 guard."""
    merchant = Merchant(name="Acme Store")
    other_merchant = Merchant(name="Globex Market")
    provider = Provider(name="Stripe")
    method = PaymentMethod(name="Credit Card")
    country = Country(code="CO", name="Colombia")
    test_db.add_all([merchant, other_merchant, provider, method, country])
    await test_db.flush()

    guard = User(name="Ana Guard", email="ana@routeguard.dev", phone="+57 300 123 4567", user_type="YUNO")
    teammate = User(name="Bruno Ops", email="bruno@routeguard.dev", phone="(57) 301-555-0000", user_type="YUNO")
    no_phone = User(name="Carla Eng", email="carla@routeguard.dev", user_type="YUNO")
    merchant_user = User(
        name="Merchant Admin",
        email="admin@acme.example",
        user_type="MERCHANT",
        merchant_id=merchant.merchant_id,
    )
    test_db.add_all([guard, teammate, no_phone, merchant_user])
    await test_db.flush()

    test_db.add_all(
        [
            NotificationChannel(name="gmail", active=True),
            NotificationChannel(name="whatsapp", active=True),
            NotificationChannel(name="slack", active=False),
        ]
    )
    schedule = OnCallSchedule(user_id=guard.user_id, priority=1, active=True)
    test_db.add(schedule)
    await test_db.flush()
    await test_db.commit()

    return Seed(
        merchant=merchant,
        other_merchant=other_merchant,
        provider=provider,
        method=method,
        country=country,
        guard=guard,
        teammate=teammate,
        no_phone=no_phone,
        merchant_user=merchant_user,
        schedule=schedule,
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def add_transactions(test_db, seeded_db):
    """Insert `count` identical transactions on the seeded route."""

    async def _add(
        *,
        count: int,
        status: str = "approved",
        when: datetime = NOW - timedelta(minutes=5),
        latency_ms: int | None = 200,
        merchant: Merchant | None = None,
    ) -> None:
        merchant = merchant or seeded_db.merchant
        test_db.add_all(
            [
                Transaction(
                    date=when,
                    merchant_id=merchant.merchant_id,
                    provider_id=seeded_db.provider.provider_id,
                    method_id=seeded_db.method.method_id,
                    country_code=seeded_db.country.code,
                    status=status,
                    error_type="provider_down" if status == "error" else None,
                    latency_ms=latency_ms,
                )
                for _ in range(count)
            ]
        )
        await test_db.flush()

    return _add
