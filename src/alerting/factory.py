"""Convenience factory for wiring the alerting stack."""

from __future__ import annotations

from src.alerting.channels import EmailChannel, NotificationChannel, TelegramChannel
from src.alerting.dispatcher import AlertDispatcher, LegacyTargets
from src.core.config import AlertsConfig
from src.storage.base import AuditStore


def create_channels(config: AlertsConfig) -> list[NotificationChannel]:
    """Instantiate the enabled delivery channels."""
    channels: list[NotificationChannel] = []

    if config.telegram.enabled:
        channels.append(TelegramChannel(config.telegram, config.send_timeout_secs))

    if config.email.enabled:
        channels.append(EmailChannel(config.email, config.send_timeout_secs))

    return channels


def create_dispatcher(config: AlertsConfig, audit_store: AuditStore) -> AlertDispatcher:
    """Build a dispatcher with the enabled channels and legacy default targets."""
    legacy = LegacyTargets(
        telegram_chat_id=config.telegram.chat_id,
        telegram_group_id=config.telegram.group_id,
        email_recipients=list(config.email.recipients),
    )
    return AlertDispatcher(
        channels=create_channels(config),
        audit_store=audit_store,
        legacy=legacy,
        send_timeout_secs=config.send_timeout_secs,
        preview_chars=config.context_preview_chars,
    )
