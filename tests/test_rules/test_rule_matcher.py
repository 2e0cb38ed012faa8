"""Tests for the rule violation matcher: thresholds, scoping, priorities."""

from __future__ import annotations

from typing import Any

from src.core.types import AppRule, LogRecord, MessageRule, RuleSet, RuleType
from src.rules.matcher import check_app_rule, check_message_rules, match, message_rule_applies


def _record(**kw: Any) -> LogRecord:
    defaults: dict[str, Any] = {
        "collection": "core-logs",
        "record_id": "r1",
        "app_name": "core",
        "message": "x",
        "duration_ms": 1500,
    }
    defaults.update(kw)
    return LogRecord(**defaults)


def _app_rule(**kw: Any) -> AppRule:
    defaults: dict[str, Any] = {"id": 1, "app_name": "core", "max_duration_ms": 1000}
    defaults.update(kw)
    return AppRule(**defaults)


def _msg_rule(**kw: Any) -> MessageRule:
    defaults: dict[str, Any] = {
        "id": 1,
        "app_name": "core",
        "message_key_pattern": "BILLING_%",
        "max_duration_ms": 800,
    }
    defaults.update(kw)
    return MessageRule(**defaults)


def _rules(app: list[AppRule] | None = None, msg: list[MessageRule] | None = None) -> RuleSet:
    return RuleSet.from_rules(app or [], msg or [])


class TestThresholdBoundary:
    def test_equal_is_not_violation(self) -> None:
        assert match(_record(duration_ms=1000), _rules([_app_rule()])) == []

    def test_one_over_is_violation(self) -> None:
        violations = match(_record(duration_ms=1001), _rules([_app_rule()]))
        assert len(violations) == 1
        assert violations[0].overage_ms == 1

    def test_message_rule_boundary(self) -> None:
        rules = _rules(msg=[_msg_rule()])
        assert match(_record(message="BILLING_X", duration_ms=800), rules) == []
        assert len(match(_record(message="BILLING_X", duration_ms=801), rules)) == 1


class TestAppRules:
    def test_example_core_overage(self) -> None:
        violations = match(_record(duration_ms=1500), _rules([_app_rule()]))
        assert len(violations) == 1
        v = violations[0]
        assert v.rule_type == RuleType.APP
        assert v.threshold_ms == 1000
        assert v.overage_ms == 500
        assert v.rule_id == 1

    def test_exact_app_name_only(self) -> None:
        assert check_app_rule(_record(app_name="core-api"), _rules([_app_rule()])) is None

    def test_inactive_rule_ignored(self) -> None:
        assert match(_record(), _rules([_app_rule(is_active=False)])) == []


class TestMessageRules:
    def test_billing_example(self) -> None:
        rules = _rules(msg=[_msg_rule()])
        assert check_message_rules(_record(message="BILLING_TIMEOUT_PROCESS"), rules) is not None
        assert check_message_rules(_record(message="REFUND_BILLING_OK"), rules) is None

    def test_scoped_to_app(self) -> None:
        rule = _msg_rule(app_name="vendor")
        assert not message_rule_applies(rule, _record(message="BILLING_X"))

    def test_global_rule_applies_to_any_app(self) -> None:
        rule = _msg_rule(app_name=None)
        assert message_rule_applies(rule, _record(app_name="anything", message="BILLING_X"))

    def test_highest_priority_wins(self) -> None:
        rules = _rules(msg=[
            _msg_rule(id=1, priority=1),
            _msg_rule(id=2, priority=5, message_key_pattern="BILLING_T%"),
            _msg_rule(id=3, priority=3),
        ])
        v = check_message_rules(_record(message="BILLING_TIMEOUT"), rules)
        assert v is not None
        assert v.rule_id == 2

    def test_priority_tie_goes_to_lowest_id(self) -> None:
        rules = _rules(msg=[_msg_rule(id=7, priority=2), _msg_rule(id=4, priority=2)])
        v = check_message_rules(_record(message="BILLING_X"), rules)
        assert v is not None
        assert v.rule_id == 4

    def test_non_violating_high_priority_skipped(self) -> None:
        rules = _rules(msg=[
            _msg_rule(id=1, priority=9, max_duration_ms=5000),
            _msg_rule(id=2, priority=1),
        ])
        v = check_message_rules(_record(message="BILLING_X"), rules)
        assert v is not None
        assert v.rule_id == 2


class TestBothFamilies:
    def test_app_and_message_violations_together(self) -> None:
        rules = _rules([_app_rule()], [_msg_rule()])
        violations = match(_record(message="BILLING_TIMEOUT_PROCESS"), rules)
        assert [v.rule_type for v in violations] == [RuleType.APP, RuleType.MESSAGE]
        assert violations[1].overage_ms == 700
