"""Core module: config, types, logging."""

from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.logging import bind_run_context, clear_run_context, setup_logging
from src.core.types import (
    AlertStatus,
    AlertTarget,
    AppRule,
    AuditEntry,
    ChannelKind,
    Checkpoint,
    LogRecord,
    MessageRule,
    RateLimitEntry,
    RuleSet,
    RuleType,
    RunRecord,
    RunStatus,
    ScanBatch,
    Violation,
    message_signature,
)

__all__ = [
    "AlertStatus",
    "AlertTarget",
    "AppRule",
    "AuditEntry",
    "ChannelKind",
    "Checkpoint",
    "LogRecord",
    "MessageRule",
    "RateLimitEntry",
    "RuleSet",
    "RuleType",
    "RunRecord",
    "RunStatus",
    "ScanBatch",
    "Settings",
    "Violation",
    "bind_run_context",
    "clear_run_context",
    "get_settings",
    "load_settings",
    "message_signature",
    "reset_settings",
    "setup_logging",
]
