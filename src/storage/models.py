"""SQLAlchemy table models.

Timestamps are stored as naive UTC so SQLite and PostgreSQL compare them alike.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Declarative base for every table."""


app_rule_alert_target = Table(
    "app_rule_alert_target",
    Base.metadata,
    Column("app_rule_id", ForeignKey("app_rules.id", ondelete="CASCADE"), primary_key=True),
    Column("alert_target_id", ForeignKey("alert_targets.id", ondelete="CASCADE"), primary_key=True),
)

message_rule_alert_target = Table(
    "message_rule_alert_target",
    Base.metadata,
    Column("message_rule_id", ForeignKey("message_rules.id", ondelete="CASCADE"), primary_key=True),
    Column("alert_target_id", ForeignKey("alert_targets.id", ondelete="CASCADE"), primary_key=True),
)


class AlertTargetRow(Base):
    __tablename__ = "alert_targets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(50), index=True)  # telegram_chat, telegram_group, email
    external_id: Mapped[str] = mapped_column(String(255))
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class AppRuleRow(Base):
    __tablename__ = "app_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    app_name: Mapped[str] = mapped_column(String(100), unique=True)
    max_duration_ms: Mapped[int] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    alert_channels: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    cooldown_minutes: Mapped[int] = mapped_column(Integer, default=5)

    targets: Mapped[list[AlertTargetRow]] = relationship(
        secondary=app_rule_alert_target, lazy="selectin"
    )


class MessageRuleRow(Base):
    __tablename__ = "message_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    app_name: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    message_key: Mapped[str] = mapped_column(String(255))
    max_duration_ms: Mapped[int] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    alert_channels: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=1)
    cooldown_minutes: Mapped[int] = mapped_column(Integer, default=5)

    targets: Mapped[list[AlertTargetRow]] = relationship(
        secondary=message_rule_alert_target, lazy="selectin"
    )


class ScanCheckpointRow(Base):
    __tablename__ = "scan_checkpoints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    collection_name: Mapped[str] = mapped_column(String(255), unique=True)
    last_timestamp: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_scanned: Mapped[int] = mapped_column(Integer, default=0)
    total_alerted: Mapped[int] = mapped_column(Integer, default=0)


class AlertRateLimitRow(Base):
    __tablename__ = "alert_rate_limits"
    __table_args__ = (
        UniqueConstraint("rule_type", "rule_id", "app_name", "message_signature", name="uq_rate_limit"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rule_type: Mapped[str] = mapped_column(String(20))
    rule_id: Mapped[int] = mapped_column(Integer)
    app_name: Mapped[str] = mapped_column(String(100), index=True)
    message_signature: Mapped[str] = mapped_column(String(64))
    last_sent_at: Mapped[datetime] = mapped_column(DateTime)
    cooldown_until: Mapped[datetime] = mapped_column(DateTime, index=True)
    alert_count: Mapped[int] = mapped_column(Integer, default=1)


class AlertLogRow(Base):
    __tablename__ = "alert_logs"
    __table_args__ = (
        UniqueConstraint(
            "rule_type", "rule_id", "message_signature", "correlation_id",
            name="uq_alert_by_msg_corr",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rule_type: Mapped[str] = mapped_column(String(20))
    rule_id: Mapped[int] = mapped_column(Integer)
    message_signature: Mapped[str] = mapped_column(String(64), index=True)
    correlation_id: Mapped[str] = mapped_column(String(255), default="", index=True)
    collection_ref: Mapped[str] = mapped_column(String(255))
    record_ref: Mapped[str] = mapped_column(String(255))
    app_name: Mapped[str] = mapped_column(String(100), index=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer)
    log_timestamp: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    threshold_ms: Mapped[int] = mapped_column(Integer)
    overage_ms: Mapped[int] = mapped_column(Integer)
    channels_attempted: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    channels_sent: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(20), index=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime, index=True)


class RunRecordRow(Base):
    __tablename__ = "run_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), index=True)
    status: Mapped[str] = mapped_column(String(20), index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    collections_scanned: Mapped[int] = mapped_column(Integer, default=0)
    logs_processed: Mapped[int] = mapped_column(Integer, default=0)
    violations_found: Mapped[int] = mapped_column(Integer, default=0)
    alerts_sent: Mapped[int] = mapped_column(Integer, default=0)
    elapsed_ms: Mapped[int] = mapped_column(Integer, default=0)
    memory_mb: Mapped[float] = mapped_column(Float, default=0.0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)


class RunLockRow(Base):
    __tablename__ = "run_locks"

    job_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    owner: Mapped[str] = mapped_column(String(100))
    acquired_at: Mapped[datetime] = mapped_column(DateTime)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
