"""Central alert dispatcher: resolves targets, fans out to channels, audits."""

from __future__ import annotations

import asyncio
from datetime import datetime

import structlog
from pydantic import BaseModel, Field

from src.alerting.channels import NotificationChannel
from src.alerting.formatters import format_violation
from src.alerting.types import AlertMessage, DeliveryTarget
from src.core.types import AlertStatus, AuditEntry, ChannelKind, Violation
from src.storage.base import AuditStore

# Dedicated structured logger for decision records.
decision_logger = structlog.get_logger("decision_log")

logger = structlog.get_logger(__name__)


class LegacyTargets(BaseModel):
    """Default addresses for rules that still list channel names instead of targets."""

    telegram_chat_id: str = ""
    telegram_group_id: str = ""
    email_recipients: list[str] = Field(default_factory=list)


class AlertDispatcher:
    """Delivers violations to every resolved target and writes the audit row.

    - Targets come from the rule's active alert targets plus its legacy
      ``alert_channels`` names, de-duplicated by (channel, address).
    - Every send is bounded by *send_timeout_secs*; one failing target never
      blocks the others.
    - A violation counts as sent when at least one target accepted it.
    """

    def __init__(
        self,
        channels: list[NotificationChannel],
        audit_store: AuditStore,
        legacy: LegacyTargets | None = None,
        send_timeout_secs: float = 10.0,
        preview_chars: int = 1200,
    ) -> None:
        self._channels: dict[ChannelKind, NotificationChannel] = {ch.kind: ch for ch in channels}
        self._audit = audit_store
        self._legacy = legacy or LegacyTargets()
        self._send_timeout_secs = send_timeout_secs
        self._preview_chars = preview_chars

    # ── Target resolution ───────────────────────────────────────

    def resolve_targets(self, violation: Violation) -> list[DeliveryTarget]:
        rule = violation.rule
        targets: list[DeliveryTarget] = []

        has_dynamic_email = False
        for target in rule.targets:
            if not target.is_active or target.channel is None or not target.external_id:
                continue
            if target.channel == ChannelKind.EMAIL:
                has_dynamic_email = True
            targets.append(DeliveryTarget(target.channel, target.external_id))

        for name in rule.alert_channels:
            name = name.strip().lower()
            if name in ("telegram", "telegram_chat"):
                if self._legacy.telegram_chat_id:
                    targets.append(DeliveryTarget(ChannelKind.TELEGRAM, self._legacy.telegram_chat_id))
            elif name == "telegram_group":
                if self._legacy.telegram_group_id:
                    targets.append(DeliveryTarget(ChannelKind.TELEGRAM, self._legacy.telegram_group_id))
            elif name == "email":
                if not has_dynamic_email:
                    targets.extend(
                        DeliveryTarget(ChannelKind.EMAIL, addr) for addr in self._legacy.email_recipients
                    )
            else:
                logger.warning("unknown_alert_channel", channel=name, rule_id=rule.id)

        # Preserve first-seen order.
        return list(dict.fromkeys(targets))

    # ── Dispatch ────────────────────────────────────────────────

    async def dispatch(self, violation: Violation, now: datetime) -> bool:
        """Send *violation* to its targets and record the attempt.

        Returns True if any target accepted the alert. Audit-store errors
        propagate to the caller.
        """
        msg = format_violation(violation, self._preview_chars)
        targets = self.resolve_targets(violation)
        self._log_decision(violation, msg, targets)

        sent: list[DeliveryTarget] = []
        if not targets:
            logger.warning(
                "no_alert_targets",
                rule_type=violation.rule_type.value,
                rule_id=violation.rule_id,
                app_name=violation.record.app_name,
            )
        else:
            results = await asyncio.gather(*(self._send_one(t, msg) for t in targets))
            sent = [t for t, ok in zip(targets, results) if ok]

        status = AlertStatus.SENT if sent else AlertStatus.FAILED
        await self._audit.upsert_audit(self._audit_entry(violation, targets, sent, status, now))

        logger.info(
            "alert_dispatched",
            rule_type=violation.rule_type.value,
            rule_id=violation.rule_id,
            app_name=violation.record.app_name,
            status=status.value,
            attempted=len(targets),
            sent=len(sent),
        )
        return bool(sent)

    async def send_test(self, target: DeliveryTarget, msg: AlertMessage) -> bool:
        """Deliver an ad-hoc message to one target without auditing."""
        return await self._send_one(target, msg)

    async def _send_one(self, target: DeliveryTarget, msg: AlertMessage) -> bool:
        channel = self._channels.get(target.channel)
        if channel is None:
            logger.warning("channel_not_enabled", target=target.label)
            return False
        try:
            return await asyncio.wait_for(
                channel.send(target.address, msg),
                timeout=self._send_timeout_secs,
            )
        except TimeoutError:
            logger.warning("channel_send_timeout", target=target.label, timeout=self._send_timeout_secs)
            return False
        except Exception:
            logger.exception("channel_dispatch_error", target=target.label, title=msg.title)
            return False

    @staticmethod
    def _audit_entry(
        violation: Violation,
        targets: list[DeliveryTarget],
        sent: list[DeliveryTarget],
        status: AlertStatus,
        now: datetime,
    ) -> AuditEntry:
        record = violation.record
        return AuditEntry(
            rule_type=violation.rule_type,
            rule_id=violation.rule_id,
            message_signature=violation.signature,
            correlation_id=violation.event_key,
            collection_ref=record.collection,
            record_ref=record.record_id,
            app_name=record.app_name,
            message=record.message,
            duration_ms=record.duration_ms,
            log_timestamp=record.timestamp,
            threshold_ms=violation.threshold_ms,
            overage_ms=violation.overage_ms,
            channels_attempted=[t.label for t in targets],
            channels_sent=[t.label for t in sent],
            status=status,
            sent_at=now,
        )

    def _log_decision(
        self,
        violation: Violation,
        msg: AlertMessage,
        targets: list[DeliveryTarget],
    ) -> None:
        decision_logger.info(
            "decision",
            severity=msg.severity.name,
            title=msg.title,
            source_event_type=msg.source_event_type,
            fields=msg.fields,
            raw=msg.raw,
            source_ref=violation.record.source_ref,
            targets=[t.label for t in targets],
        )

    # ── Lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        for ch in self._channels.values():
            try:
                await ch.close()
            except Exception:
                logger.exception("channel_close_error", channel=type(ch).__name__)
