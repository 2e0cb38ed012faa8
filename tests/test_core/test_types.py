"""Tests for src/core/types.py: signatures, rule snapshots, target mapping."""

from __future__ import annotations

from src.core.types import (
    AlertTarget,
    AppRule,
    ChannelKind,
    LogRecord,
    MessageRule,
    RuleSet,
    RuleType,
    ScanBatch,
    Violation,
    message_signature,
)


class TestMessageSignature:
    def test_stable_and_hex(self) -> None:
        sig = message_signature("BILLING_TIMEOUT_PROCESS")
        assert sig == message_signature("BILLING_TIMEOUT_PROCESS")
        assert len(sig) == 64
        int(sig, 16)

    def test_distinct_messages_differ(self) -> None:
        assert message_signature("a") != message_signature("b")

    def test_none_is_empty_message(self) -> None:
        assert message_signature(None) == message_signature("")

    def test_record_signature_uses_message(self) -> None:
        rec = LogRecord(collection="c", record_id="1", app_name="core", duration_ms=1, message="x")
        assert rec.signature == message_signature("x")
        assert rec.source_ref == "c/1"


class TestViolationEventKey:
    def _violation(self, **record_kw: object) -> Violation:
        rec = LogRecord(collection="c", record_id="1", app_name="core", duration_ms=5, **record_kw)  # type: ignore[arg-type]
        rule = AppRule(id=1, app_name="core", max_duration_ms=1)
        return Violation(rule_type=RuleType.APP, rule=rule, record=rec, threshold_ms=1, overage_ms=4)

    def test_correlation_id_preferred(self) -> None:
        assert self._violation(correlation_id="corr-9").event_key == "corr-9"

    def test_uncorrelated_falls_back_to_log_reference(self) -> None:
        assert self._violation().event_key == "c/1"


class TestAlertTarget:
    def test_telegram_variants(self) -> None:
        for kind in ("telegram", "telegram_chat", "telegram_group", "TELEGRAM_GROUP"):
            assert AlertTarget(type=kind, external_id="1").channel == ChannelKind.TELEGRAM

    def test_email(self) -> None:
        assert AlertTarget(type="email", external_id="a@b.c").channel == ChannelKind.EMAIL

    def test_unsupported(self) -> None:
        assert AlertTarget(type="pager", external_id="x").channel is None


class TestRuleSet:
    def test_inactive_rules_filtered(self) -> None:
        rules = RuleSet.from_rules(
            [
                AppRule(id=1, app_name="core", max_duration_ms=1000),
                AppRule(id=2, app_name="vendor", max_duration_ms=1000, is_active=False),
            ],
            [
                MessageRule(id=1, message_key_pattern="A", max_duration_ms=1, is_active=False),
                MessageRule(id=2, message_key_pattern="B", max_duration_ms=1),
            ],
        )
        assert set(rules.app_rules) == {"core"}
        assert [r.id for r in rules.message_rules] == [2]
        assert not rules.is_empty

    def test_empty(self) -> None:
        assert RuleSet.from_rules([], []).is_empty


class TestScanBatch:
    def test_no_hits_is_exhausted(self) -> None:
        assert ScanBatch().exhausted

    def test_error_is_not_exhausted(self) -> None:
        assert not ScanBatch(error="boom").exhausted

    def test_dropped_hits_not_exhausted(self) -> None:
        assert not ScanBatch(records=[], hits_seen=3, next_cursor=[1, "a"]).exhausted
