"""Domain types shared by the scan, match and alert pipeline."""

from __future__ import annotations

import hashlib
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def message_signature(message: str | None) -> str:
    """Stable hash of a log message, used in rate-limit and audit keys."""
    return hashlib.sha256((message or "").encode("utf-8")).hexdigest()


# ── Enums ───────────────────────────────────────────────────────


class RuleType(StrEnum):
    """Rule family a violation was raised by."""

    APP = "app"
    MESSAGE = "message"


class AlertStatus(StrEnum):
    """Outcome of one alert attempt."""

    SENT = "sent"
    FAILED = "failed"


class RunStatus(StrEnum):
    """Lifecycle state of an orchestrator run."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ChannelKind(StrEnum):
    """Delivery channel families."""

    TELEGRAM = "telegram"
    EMAIL = "email"


# ── Rules ───────────────────────────────────────────────────────


class AlertTarget(BaseModel):
    """An external address a rule delivers to."""

    id: int | None = None
    type: str
    external_id: str
    label: str = ""
    is_active: bool = True

    @property
    def channel(self) -> ChannelKind | None:
        """Channel family for this target, or None for unsupported types."""
        kind = self.type.lower()
        if kind.startswith("telegram"):
            return ChannelKind.TELEGRAM
        if kind == "email":
            return ChannelKind.EMAIL
        return None


class AppRule(BaseModel):
    """Duration threshold for every log of one application."""

    id: int
    app_name: str
    max_duration_ms: int
    is_active: bool = True
    cooldown_minutes: int = 5
    alert_channels: list[str] = Field(default_factory=list)
    targets: list[AlertTarget] = Field(default_factory=list)


class MessageRule(BaseModel):
    """Duration threshold for logs whose message matches a key pattern.

    ``app_name`` of None scopes the rule to every application.
    """

    id: int
    app_name: str | None = None
    message_key_pattern: str
    max_duration_ms: int
    is_active: bool = True
    priority: int = 1
    cooldown_minutes: int = 5
    alert_channels: list[str] = Field(default_factory=list)
    targets: list[AlertTarget] = Field(default_factory=list)


class RuleSet(BaseModel):
    """Immutable snapshot of the active rules used for one batch."""

    app_rules: dict[str, AppRule] = Field(default_factory=dict)
    message_rules: list[MessageRule] = Field(default_factory=list)

    model_config = {"frozen": True}

    @classmethod
    def from_rules(
        cls,
        app_rules: list[AppRule],
        message_rules: list[MessageRule],
    ) -> RuleSet:
        """Build a snapshot keeping only active rules, app rules keyed by app name."""
        return cls(
            app_rules={r.app_name: r for r in app_rules if r.is_active},
            message_rules=[r for r in message_rules if r.is_active],
        )

    @property
    def is_empty(self) -> bool:
        return not self.app_rules and not self.message_rules


# ── Log records & violations ────────────────────────────────────


class LogRecord(BaseModel):
    """A normalised log entry carrying a duration and an application name."""

    collection: str
    record_id: str
    timestamp: datetime | None = None
    raw_timestamp: str | None = None
    app_name: str
    message: str | None = None
    level: str | None = None
    duration_ms: int
    correlation_id: str | None = None
    context: Any = None
    extra: Any = None
    sort_values: list[Any] = Field(default_factory=list)

    @property
    def signature(self) -> str:
        return message_signature(self.message)

    @property
    def source_ref(self) -> str:
        return f"{self.collection}/{self.record_id}"


class Violation(BaseModel):
    """A single threshold breach. Lives only for one matching pass."""

    rule_type: RuleType
    rule: AppRule | MessageRule
    record: LogRecord
    threshold_ms: int
    overage_ms: int

    @property
    def rule_id(self) -> int:
        return self.rule.id

    @property
    def cooldown_minutes(self) -> int:
        return self.rule.cooldown_minutes

    @property
    def signature(self) -> str:
        return self.record.signature

    @property
    def event_key(self) -> str:
        """Audit key component: the correlation id, else the log reference.

        Uncorrelated events get one audit row per log record.
        """
        return self.record.correlation_id or self.record.source_ref


class ScanBatch(BaseModel):
    """One page of records returned by the cursor scanner.

    ``error`` is set when the backend call failed; the batch is then empty
    but the collection is *not* exhausted. ``hits_seen`` counts raw hits,
    including ones dropped during normalisation.
    """

    records: list[LogRecord] = Field(default_factory=list)
    next_cursor: list[Any] | None = None
    hits_seen: int = 0
    error: str | None = None

    @property
    def exhausted(self) -> bool:
        return self.hits_seen == 0 and self.error is None


# ── Persisted records ───────────────────────────────────────────


class Checkpoint(BaseModel):
    """Scan progress for one collection."""

    collection_name: str
    last_timestamp: datetime | None = None
    last_id: str | None = None
    total_scanned: int = 0
    total_alerted: int = 0
    last_run_at: datetime | None = None


class RateLimitEntry(BaseModel):
    """Cooldown state for one (rule, app, message signature)."""

    rule_type: RuleType
    rule_id: int
    app_name: str
    message_signature: str
    last_sent_at: datetime
    cooldown_until: datetime
    alert_count: int = 1


class AuditEntry(BaseModel):
    """One alert attempt, unique on (rule_type, rule_id, message_signature, correlation_id)."""

    rule_type: RuleType
    rule_id: int
    message_signature: str
    correlation_id: str = ""
    collection_ref: str
    record_ref: str
    app_name: str
    message: str | None = None
    duration_ms: int
    log_timestamp: datetime | None = None
    threshold_ms: int
    overage_ms: int
    channels_attempted: list[str] = Field(default_factory=list)
    channels_sent: list[str] = Field(default_factory=list)
    status: AlertStatus
    sent_at: datetime


class RunRecord(BaseModel):
    """Telemetry for one orchestrator invocation."""

    id: int | None = None
    job_name: str
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime
    finished_at: datetime | None = None
    collections_scanned: int = 0
    logs_processed: int = 0
    violations_found: int = 0
    alerts_sent: int = 0
    elapsed_ms: int = 0
    memory_mb: float = 0.0
    error_message: str | None = None
