"""Rule violation matcher: pure evaluation of one record against a rule snapshot."""

from __future__ import annotations

from src.core.types import (
    AppRule,
    LogRecord,
    MessageRule,
    RuleSet,
    RuleType,
    Violation,
)
from src.rules.patterns import compile_pattern


def _exceeds(record: LogRecord, threshold_ms: int) -> bool:
    # Equality is not a breach.
    return record.duration_ms > threshold_ms


def _violation(rule_type: RuleType, rule: AppRule | MessageRule, record: LogRecord) -> Violation:
    return Violation(
        rule_type=rule_type,
        rule=rule,
        record=record,
        threshold_ms=rule.max_duration_ms,
        overage_ms=record.duration_ms - rule.max_duration_ms,
    )


def message_rule_applies(rule: MessageRule, record: LogRecord) -> bool:
    """Scope (app or global) and pattern check, ignoring the threshold."""
    if rule.app_name and rule.app_name != record.app_name:
        return False
    return compile_pattern(rule.message_key_pattern).matches(record.message)


def check_app_rule(record: LogRecord, rules: RuleSet) -> Violation | None:
    """Exact app-name lookup against the app rule family."""
    rule = rules.app_rules.get(record.app_name)
    if rule is None or not _exceeds(record, rule.max_duration_ms):
        return None
    return _violation(RuleType.APP, rule, record)


def check_message_rules(record: LogRecord, rules: RuleSet) -> Violation | None:
    """Highest-priority message rule that matches and is breached.

    Ties on priority go to the lowest rule id so the choice is stable
    between runs.
    """
    candidates = [
        r for r in rules.message_rules
        if message_rule_applies(r, record) and _exceeds(record, r.max_duration_ms)
    ]
    if not candidates:
        return None
    best = min(candidates, key=lambda r: (-r.priority, r.id))
    return _violation(RuleType.MESSAGE, best, record)


def match(record: LogRecord, rules: RuleSet) -> list[Violation]:
    """Evaluate both rule families; zero, one or two violations."""
    violations: list[Violation] = []

    app_violation = check_app_rule(record, rules)
    if app_violation is not None:
        violations.append(app_violation)

    message_violation = check_message_rules(record, rules)
    if message_violation is not None:
        violations.append(message_violation)

    return violations
