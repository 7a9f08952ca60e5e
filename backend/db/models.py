"""
RouteGuard Database Models

Tables:
  Reference (1-4):
  1. merchants               - Merchants whose payments are routed
  2. providers               - Payment providers / acquirers
  3. payment_methods         - Card, wallet, bank transfer, ...
  4. countries               - ISO-3166 alpha-2 code -> display name

  People (5-6):
  5. users                   - Internal (YUNO) and merchant users
  6. on_call_schedule        - Guard rotation with priority + validity window

  Transaction facts (7):
  7. transactions            - One row per payment attempt on a route

  Alerting (8-11):
  8. alerts                  - Human-facing alert records
  9. notification_channels   - Enabled delivery channels (gmail/slack/whatsapp)
  10. notifications          - One delivery attempt per user + channel
  11. risk_notifications     - Guard escalation state machine records
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


# ─── 1. Merchants ──────────────────────────────────────────────────────────


class Merchant(Base):
    __tablename__ = "merchants"

    merchant_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (CheckConstraint("status IN ('active', 'inactive')", name="ck_merchant_status"),)


# ─── 2. Providers ──────────────────────────────────────────────────────────


class Provider(Base):
    __tablename__ = "providers"

    provider_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 3. Payment Methods ────────────────────────────────────────────────────


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    method_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 4. Countries ──────────────────────────────────────────────────────────


class Country(Base):
    __tablename__ = "countries"

    code = Column(String(2), primary_key=True)
    name = Column(String(100), nullable=False)


# ─── 5. Users ──────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    user_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(32))
    slack_handle = Column(String(100))
    user_type = Column(String(20), nullable=False, default="YUNO")
    merchant_id = Column(GUID(), ForeignKey("merchants.merchant_id"), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    # Ordered channel preference, e.g. ["whatsapp", "gmail"]; NULL = audience default
    notification_channels = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_users_type_active", "user_type", "active"),
        CheckConstraint("user_type IN ('YUNO', 'MERCHANT')", name="ck_user_type"),
    )


# ─── 6. On-Call Schedule ───────────────────────────────────────────────────


class OnCallSchedule(Base):
    __tablename__ = "on_call_schedule"

    schedule_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    priority = Column(Integer, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    start_at = Column(DateTime, nullable=True)
    end_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("ix_on_call_active_priority", "active", "priority"),)

    user = relationship("User", lazy="joined")


# ─── 7. Transactions ───────────────────────────────────────────────────────


class Transaction(Base):
    __tablename__ = "transactions"

    transaction_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    date = Column(DateTime, nullable=False, default=datetime.utcnow)
    merchant_id = Column(GUID(), ForeignKey("merchants.merchant_id"), nullable=False)
    provider_id = Column(GUID(), ForeignKey("providers.provider_id"), nullable=False)
    method_id = Column(GUID(), ForeignKey("payment_methods.method_id"), nullable=False)
    country_code = Column(String(2), ForeignKey("countries.code"), nullable=False)
    status = Column(String(20), nullable=False)
    error_type = Column(String(30), nullable=True)
    latency_ms = Column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_transactions_date", "date"),
        Index("ix_transactions_route", "merchant_id", "provider_id", "method_id", "country_code"),
        CheckConstraint("status IN ('approved', 'declined', 'error', 'timeout')", name="ck_transaction_status"),
        CheckConstraint(
            "error_type IS NULL OR error_type IN ('provider_down', 'network', 'config', 'timeout')",
            name="ck_transaction_error_type",
        ),
    )


# ─── 8. Alerts ─────────────────────────────────────────────────────────────


class Alert(Base):
    __tablename__ = "alerts"

    alert_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    severity = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    explanation = Column(Text)
    merchant_id = Column(GUID(), ForeignKey("merchants.merchant_id"), nullable=True)
    status = Column(String(20), nullable=False, default="open")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_alerts_status", "status"),
        Index("ix_alerts_merchant", "merchant_id"),
        CheckConstraint("severity IN ('CRITICAL', 'WARNING', 'INFO')", name="ck_alert_severity"),
        CheckConstraint("status IN ('open', 'acknowledged', 'resolved', 'dismissed')", name="ck_alert_status"),
    )

    notifications = relationship("Notification", back_populates="alert", cascade="all, delete-orphan")


# ─── 9. Notification Channels ──────────────────────────────────────────────


class NotificationChannel(Base):
    __tablename__ = "notification_channels"

    channel_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(30), nullable=False, unique=True)
    active = Column(Boolean, nullable=False, default=True)
    config = Column(JSON, default={})
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (CheckConstraint("name IN ('gmail', 'slack', 'whatsapp')", name="ck_channel_name"),)


# ─── 10. Notifications ─────────────────────────────────────────────────────


class Notification(Base):
    __tablename__ = "notifications"

    notification_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    alert_id = Column(GUID(), ForeignKey("alerts.alert_id", ondelete="CASCADE"), nullable=False)
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    channel_id = Column(GUID(), ForeignKey("notification_channels.channel_id"), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    payload = Column(JSON, nullable=True)
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_notifications_alert", "alert_id"),
        CheckConstraint("status IN ('pending', 'sent', 'failed')", name="ck_notification_status"),
    )

    alert = relationship("Alert", back_populates="notifications")


# ─── 11. Risk Notifications ────────────────────────────────────────────────


class RiskNotification(Base):
    __tablename__ = "risk_notifications"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(String(255), nullable=False)
    entity_name = Column(String(512), nullable=False)
    risk_level = Column(String(20), nullable=False)
    probability = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default="guard_notified")

    guard_attempts = Column(Integer, nullable=False, default=0)
    last_guard_notification = Column(DateTime, nullable=True)
    guard_user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=True)

    escalated_to_all = Column(Boolean, nullable=False, default=False)
    escalated_at = Column(DateTime, nullable=True)

    dismissed_by_guard = Column(Boolean, nullable=False, default=False)
    dismissed_by_user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=True)
    dismissed_at = Column(DateTime, nullable=True)
    dismissal_reason = Column(Text, nullable=True)

    resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime, nullable=True)

    # RiskSnapshot: {signals, baseline_comparison, trend, recommended_actions}
    risk_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_risk_notifications_entity", "entity_type", "entity_id"),
        Index("ix_risk_notifications_status", "status"),
        # At most one active guard cycle per entity.
        Index(
            "uq_risk_notifications_active_entity",
            "entity_type",
            "entity_id",
            unique=True,
            postgresql_where=text("status = 'guard_notified' AND resolved = false"),
            sqlite_where=text("status = 'guard_notified' AND resolved = 0"),
        ),
        CheckConstraint(
            "entity_type IN ('merchant', 'provider', 'method', 'country', 'route')",
            name="ck_risk_notification_entity_type",
        ),
        CheckConstraint(
            "risk_level IN ('low', 'medium', 'high', 'critical')",
            name="ck_risk_notification_risk_level",
        ),
        CheckConstraint(
            "status IN ('guard_notified', 'escalated', 'dismissed', 'resolved')",
            name="ck_risk_notification_status",
        ),
        CheckConstraint("guard_attempts >= 0", name="ck_risk_notification_attempts"),
    )
