"""
Initial schema - all 11 tables

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    # 1. Merchants
    op.create_table(
        "merchants",
        _uuid_pk("merchant_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        _created_at(),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_merchant_status"),
    )

    # 2. Providers
    op.create_table(
        "providers",
        _uuid_pk("provider_id"),
        sa.Column("name", sa.String(255), nullable=False),
        _created_at(),
    )

    # 3. Payment methods
    op.create_table(
        "payment_methods",
        _uuid_pk("method_id"),
        sa.Column("name", sa.String(100), nullable=False),
        _created_at(),
    )

    # 4. Countries
    op.create_table(
        "countries",
        sa.Column("code", sa.String(2), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
    )

    # 5. Users
    op.create_table(
        "users",
        _uuid_pk("user_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(32)),
        sa.Column("slack_handle", sa.String(100)),
        sa.Column("user_type", sa.String(20), nullable=False, server_default="YUNO"),
        sa.Column("merchant_id", UUID(as_uuid=True), sa.ForeignKey("merchants.merchant_id"), nullable=True),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("notification_channels", sa.JSON, nullable=True),
        _created_at(),
        sa.CheckConstraint("user_type IN ('YUNO', 'MERCHANT')", name="ck_user_type"),
    )
    op.create_index("ix_users_type_active", "users", ["user_type", "active"])

    # 6. On-call schedule
    op.create_table(
        "on_call_schedule",
        _uuid_pk("schedule_id"),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("priority", sa.Integer, nullable=False),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("start_at", sa.DateTime, nullable=True),
        sa.Column("end_at", sa.DateTime, nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_on_call_active_priority", "on_call_schedule", ["active", "priority"])

    # 7. Transactions
    op.create_table(
        "transactions",
        _uuid_pk("transaction_id"),
        sa.Column("date", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("merchant_id", UUID(as_uuid=True), sa.ForeignKey("merchants.merchant_id"), nullable=False),
        sa.Column("provider_id", UUID(as_uuid=True), sa.ForeignKey("providers.provider_id"), nullable=False),
        sa.Column("method_id", UUID(as_uuid=True), sa.ForeignKey("payment_methods.method_id"), nullable=False),
        sa.Column("country_code", sa.String(2), sa.ForeignKey("countries.code"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_type", sa.String(30), nullable=True),
        sa.Column("latency_ms", sa.Integer, nullable=True),
        sa.CheckConstraint("status IN ('approved', 'declined', 'error', 'timeout')", name="ck_transaction_status"),
        sa.CheckConstraint(
            "error_type IS NULL OR error_type IN ('provider_down', 'network', 'config', 'timeout')",
            name="ck_transaction_error_type",
        ),
    )
    op.create_index("ix_transactions_date", "transactions", ["date"])
    op.create_index(
        "ix_transactions_route",
        "transactions",
        ["merchant_id", "provider_id", "method_id", "country_code"],
    )

    # 8. Alerts
    op.create_table(
        "alerts",
        _uuid_pk("alert_id"),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("explanation", sa.Text),
        sa.Column("merchant_id", UUID(as_uuid=True), sa.ForeignKey("merchants.merchant_id"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        _created_at(),
        sa.CheckConstraint("severity IN ('CRITICAL', 'WARNING', 'INFO')", name="ck_alert_severity"),
        sa.CheckConstraint("status IN ('open', 'acknowledged', 'resolved', 'dismissed')", name="ck_alert_status"),
    )
    op.create_index("ix_alerts_status", "alerts", ["status"])
    op.create_index("ix_alerts_merchant", "alerts", ["merchant_id"])

    # 9. Notification channels
    op.create_table(
        "notification_channels",
        _uuid_pk("channel_id"),
        sa.Column("name", sa.String(30), nullable=False, unique=True),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("config", sa.JSON, server_default=sa.text("'{}'")),
        _created_at(),
        sa.CheckConstraint("name IN ('gmail', 'slack', 'whatsapp')", name="ck_channel_name"),
    )
    op.execute(
        "INSERT INTO notification_channels (name, active) VALUES "
        "('gmail', true), ('whatsapp', true), ('slack', false)"
    )

    # 10. Notifications
    op.create_table(
        "notifications",
        _uuid_pk("notification_id"),
        sa.Column(
            "alert_id",
            UUID(as_uuid=True),
            sa.ForeignKey("alerts.alert_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column(
            "channel_id",
            UUID(as_uuid=True),
            sa.ForeignKey("notification_channels.channel_id"),
            nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payload", sa.JSON, nullable=True),
        sa.Column("sent_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('pending', 'sent', 'failed')", name="ck_notification_status"),
    )
    op.create_index("ix_notifications_alert", "notifications", ["alert_id"])

    # 11. Risk notifications
    op.create_table(
        "risk_notifications",
        _uuid_pk("id"),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("entity_name", sa.String(512), nullable=False),
        sa.Column("risk_level", sa.String(20), nullable=False),
        sa.Column("probability", sa.Float, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="guard_notified"),
        sa.Column("guard_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_guard_notification", sa.DateTime, nullable=True),
        sa.Column("guard_user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=True),
        sa.Column("escalated_to_all", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("escalated_at", sa.DateTime, nullable=True),
        sa.Column("dismissed_by_guard", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("dismissed_by_user_id", UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=True),
        sa.Column("dismissed_at", sa.DateTime, nullable=True),
        sa.Column("dismissal_reason", sa.Text, nullable=True),
        sa.Column("resolved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime, nullable=True),
        sa.Column("metadata", sa.JSON, nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "entity_type IN ('merchant', 'provider', 'method', 'country', 'route')",
            name="ck_risk_notification_entity_type",
        ),
        sa.CheckConstraint("risk_level IN ('low', 'medium', 'high', 'critical')", name="ck_risk_notification_risk_level"),
        sa.CheckConstraint(
            "status IN ('guard_notified', 'escalated', 'dismissed', 'resolved')",
            name="ck_risk_notification_status",
        ),
        sa.CheckConstraint("guard_attempts >= 0", name="ck_risk_notification_attempts"),
    )
    op.create_index("ix_risk_notifications_entity", "risk_notifications", ["entity_type", "entity_id"])
    op.create_index("ix_risk_notifications_status", "risk_notifications", ["status"])
    # At most one active guard cycle per entity
    op.create_index(
        "uq_risk_notifications_active_entity",
        "risk_notifications",
        ["entity_type", "entity_id"],
        unique=True,
        postgresql_where=sa.text("status = 'guard_notified' AND resolved = false"),
    )


def downgrade() -> None:
    tables = [
        "risk_notifications",
        "notifications",
        "notification_channels",
        "alerts",
        "transactions",
        "on_call_schedule",
        "users",
        "countries",
        "payment_methods",
        "providers",
        "merchants",
    ]
    for table in tables:
        op.drop_table(table)
