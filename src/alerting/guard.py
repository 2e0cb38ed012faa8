"""Dedup & rate-limit guards that run before every dispatch.

Two independent checks, both must pass:

- *already alerted*: a ``sent`` audit row exists for this event, so a
  re-scan after a crash or an overlapping run does not notify twice;
- *cooldown*: an alert for the same rule, app and message signature went
  out less than ``cooldown_minutes`` ago, which stops alert storms.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from src.alerting.types import GuardDecision
from src.core.types import RateLimitEntry, Violation
from src.storage.base import AuditStore, RateLimitStore

logger = structlog.stdlib.get_logger()


class AlertGuard:
    """Combines the audit (per-event) and rate-limit (per-signature) checks."""

    def __init__(self, audit_store: AuditStore, rate_limit_store: RateLimitStore) -> None:
        self._audit = audit_store
        self._rate_limits = rate_limit_store

    async def already_alerted(self, violation: Violation) -> bool:
        """Whether this event was already delivered.

        Correlated events use the logical key (rule, signature, correlation id);
        uncorrelated ones fall back to the physical log reference.
        """
        record = violation.record
        if record.correlation_id:
            return await self._audit.has_sent_alert(
                violation.rule_type,
                violation.rule_id,
                violation.signature,
                record.correlation_id,
            )
        return await self._audit.has_sent_for_record(
            record.collection,
            record.record_id,
            violation.rule_type,
            violation.rule_id,
        )

    async def in_cooldown(self, violation: Violation, now: datetime) -> bool:
        entry = await self._rate_limits.get_rate_limit(
            violation.rule_type,
            violation.rule_id,
            violation.record.app_name,
            violation.signature,
        )
        return entry is not None and entry.cooldown_until > now

    async def check(self, violation: Violation, now: datetime) -> GuardDecision:
        if await self.already_alerted(violation):
            return GuardDecision.ALREADY_ALERTED
        if await self.in_cooldown(violation, now):
            logger.debug(
                "alert_in_cooldown",
                rule_type=violation.rule_type.value,
                rule_id=violation.rule_id,
                app_name=violation.record.app_name,
            )
            return GuardDecision.COOLDOWN
        return GuardDecision.ALLOW

    async def record_sent(self, violation: Violation, now: datetime) -> RateLimitEntry:
        """Start (or restart) the cooldown window after a successful dispatch."""
        return await self._rate_limits.record_alert(
            violation.rule_type,
            violation.rule_id,
            violation.record.app_name,
            violation.signature,
            now,
            violation.cooldown_minutes,
        )
