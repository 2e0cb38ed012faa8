"""Tests for AlertGuard: already-alerted and cooldown checks."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from src.alerting.guard import AlertGuard
from src.alerting.types import GuardDecision
from src.core.types import AlertStatus, AppRule, AuditEntry, LogRecord, RuleType, Violation
from src.storage.sql import SqlStore

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


def _violation(cooldown: int = 5, **record_kw: Any) -> Violation:
    rec: dict[str, Any] = {
        "collection": "core-logs",
        "record_id": "r1",
        "app_name": "core",
        "message": "x",
        "duration_ms": 1500,
    }
    rec.update(record_kw)
    return Violation(
        rule_type=RuleType.APP,
        rule=AppRule(id=1, app_name="core", max_duration_ms=1000, cooldown_minutes=cooldown),
        record=LogRecord(**rec),
        threshold_ms=1000,
        overage_ms=500,
    )


def _audit(v: Violation, status: AlertStatus = AlertStatus.SENT) -> AuditEntry:
    return AuditEntry(
        rule_type=v.rule_type,
        rule_id=v.rule_id,
        message_signature=v.signature,
        correlation_id=v.event_key,
        collection_ref=v.record.collection,
        record_ref=v.record.record_id,
        app_name=v.record.app_name,
        message=v.record.message,
        duration_ms=v.record.duration_ms,
        threshold_ms=v.threshold_ms,
        overage_ms=v.overage_ms,
        status=status,
        sent_at=NOW,
    )


class TestAlreadyAlerted:
    async def test_fresh_violation_allowed(self, store: SqlStore) -> None:
        guard = AlertGuard(store, store)
        assert await guard.check(_violation(), NOW) == GuardDecision.ALLOW

    async def test_sent_correlated_event_blocked_across_records(self, store: SqlStore) -> None:
        guard = AlertGuard(store, store)
        first = _violation(correlation_id="corr-1")
        await store.upsert_audit(_audit(first))

        # Same logical event re-indexed under another record id.
        again = _violation(correlation_id="corr-1", record_id="r2")
        assert await guard.already_alerted(again)
        assert await guard.check(again, NOW) == GuardDecision.ALREADY_ALERTED

    async def test_other_correlation_not_blocked(self, store: SqlStore) -> None:
        guard = AlertGuard(store, store)
        await store.upsert_audit(_audit(_violation(correlation_id="corr-1")))
        assert not await guard.already_alerted(_violation(correlation_id="corr-2"))

    async def test_uncorrelated_uses_physical_reference(self, store: SqlStore) -> None:
        guard = AlertGuard(store, store)
        await store.upsert_audit(_audit(_violation()))
        assert await guard.already_alerted(_violation())
        assert not await guard.already_alerted(_violation(record_id="r2"))

    async def test_failed_attempt_does_not_block(self, store: SqlStore) -> None:
        guard = AlertGuard(store, store)
        await store.upsert_audit(_audit(_violation(correlation_id="c"), AlertStatus.FAILED))
        assert not await guard.already_alerted(_violation(correlation_id="c"))


class TestCooldown:
    async def test_in_cooldown_suppressed(self, store: SqlStore) -> None:
        guard = AlertGuard(store, store)
        await guard.record_sent(_violation(cooldown=10), NOW)
        later = _violation(record_id="r2", correlation_id="new")
        assert await guard.check(later, NOW + timedelta(minutes=9)) == GuardDecision.COOLDOWN

    async def test_cooldown_expires(self, store: SqlStore) -> None:
        guard = AlertGuard(store, store)
        await guard.record_sent(_violation(cooldown=10), NOW)
        later = _violation(record_id="r2", correlation_id="new")
        assert await guard.check(later, NOW + timedelta(minutes=10)) == GuardDecision.ALLOW

    async def test_other_message_not_in_cooldown(self, store: SqlStore) -> None:
        guard = AlertGuard(store, store)
        await guard.record_sent(_violation(), NOW)
        assert not await guard.in_cooldown(_violation(message="different"), NOW)

    async def test_record_sent_counts_and_extends(self, store: SqlStore) -> None:
        guard = AlertGuard(store, store)
        await guard.record_sent(_violation(cooldown=5), NOW)
        entry = await guard.record_sent(_violation(cooldown=5), NOW + timedelta(minutes=6))
        assert entry.alert_count == 2
        assert entry.last_sent_at == NOW + timedelta(minutes=6)
        assert entry.cooldown_until == NOW + timedelta(minutes=11)
