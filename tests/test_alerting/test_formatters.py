"""Tests for alert formatting: titles, fields, severity, context truncation."""

from __future__ import annotations

from typing import Any

from src.alerting.formatters import TRUNCATION_SUFFIX, context_preview, format_violation, render_text
from src.alerting.types import Severity
from src.core.types import AppRule, LogRecord, MessageRule, RuleType, Violation


def _violation(rule_type: RuleType = RuleType.APP, priority: int = 1, **record_kw: Any) -> Violation:
    rec: dict[str, Any] = {
        "collection": "core-logs",
        "record_id": "r1",
        "app_name": "core",
        "message": "BILLING_TIMEOUT_PROCESS",
        "duration_ms": 1500,
        "raw_timestamp": "2024-05-01T12:00:00Z",
    }
    rec.update(record_kw)
    rule: AppRule | MessageRule
    if rule_type == RuleType.APP:
        rule = AppRule(id=1, app_name="core", max_duration_ms=1000)
    else:
        rule = MessageRule(id=2, message_key_pattern="BILLING_%", max_duration_ms=1000, priority=priority)
    return Violation(
        rule_type=rule_type,
        rule=rule,
        record=LogRecord(**rec),
        threshold_ms=1000,
        overage_ms=500,
    )


class TestContextPreview:
    def test_empty(self) -> None:
        assert context_preview(None) == ""
        assert context_preview({}) == ""

    def test_pretty_json(self) -> None:
        assert context_preview({"a": 1}) == '{\n  "a": 1\n}'

    def test_truncated(self) -> None:
        text = context_preview({"blob": "x" * 5000}, max_chars=100)
        assert text.endswith(TRUNCATION_SUFFIX)
        assert len(text) == 100 + len(TRUNCATION_SUFFIX)


class TestFormatViolation:
    def test_app_alert(self) -> None:
        msg = format_violation(_violation(correlation_id="corr-9", context={"order": 1}))
        assert msg.title == "Slow App Alert"
        assert msg.severity == Severity.WARNING
        assert msg.fields["App"] == "core"
        assert msg.fields["Duration"] == "1500ms (threshold: 1000ms)"
        assert msg.fields["Exceeded by"] == "500ms"
        assert msg.fields["Correlation ID"] == "corr-9"
        assert msg.fields["Time"] == "2024-05-01T12:00:00Z"
        assert '"order": 1' in msg.body
        assert msg.raw["record_id"] == "r1"

    def test_process_alert(self) -> None:
        msg = format_violation(_violation(RuleType.MESSAGE))
        assert msg.title == "Process Alert"
        assert msg.fields["Process"] == "BILLING_TIMEOUT_PROCESS"
        assert msg.source_event_type == "message"

    def test_missing_correlation_is_na(self) -> None:
        assert format_violation(_violation()).fields["Correlation ID"] == "N/A"

    def test_high_priority_is_critical(self) -> None:
        assert format_violation(_violation(RuleType.MESSAGE, priority=3)).severity == Severity.CRITICAL
        assert format_violation(_violation(RuleType.MESSAGE, priority=2)).severity == Severity.WARNING

    def test_preview_limit_applied(self) -> None:
        msg = format_violation(_violation(context={"blob": "y" * 3000}), preview_chars=50)
        assert msg.body.endswith(TRUNCATION_SUFFIX)


class TestRenderText:
    def test_contains_title_fields_and_context(self) -> None:
        text = render_text(format_violation(_violation(context={"k": "v"})))
        assert text.startswith("[WARNING] Slow App Alert")
        assert "Exceeded by: 500ms" in text
        assert "Context:" in text
