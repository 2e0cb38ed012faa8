"""Alert delivery: formatting, guards, channels and the dispatcher."""

from src.alerting.channels import EmailChannel, NotificationChannel, TelegramChannel
from src.alerting.dispatcher import AlertDispatcher, LegacyTargets
from src.alerting.factory import create_channels, create_dispatcher
from src.alerting.formatters import context_preview, format_violation, render_text
from src.alerting.guard import AlertGuard
from src.alerting.types import AlertMessage, DeliveryTarget, GuardDecision, Severity

__all__ = [
    "AlertDispatcher",
    "AlertGuard",
    "AlertMessage",
    "DeliveryTarget",
    "EmailChannel",
    "GuardDecision",
    "LegacyTargets",
    "NotificationChannel",
    "Severity",
    "TelegramChannel",
    "context_preview",
    "create_channels",
    "create_dispatcher",
    "format_violation",
    "render_text",
]
