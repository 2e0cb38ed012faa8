"""Pure functions that turn violations into AlertMessage objects and text."""

from __future__ import annotations

import json
from typing import Any

from src.alerting.types import AlertMessage, Severity
from src.core.types import MessageRule, RuleType, Violation

TRUNCATION_SUFFIX = "... (truncated)"

# Message rules at or above this priority page as CRITICAL.
_CRITICAL_PRIORITY = 3

_TITLES: dict[RuleType, str] = {
    RuleType.APP: "Slow App Alert",
    RuleType.MESSAGE: "Process Alert",
}


def context_preview(context: Any, max_chars: int = 1200) -> str:
    """Pretty JSON of the structured context, cut at *max_chars*."""
    if context is None or context == {} or context == []:
        return ""
    try:
        text = json.dumps(context, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = str(context)
    if len(text) > max_chars:
        text = text[:max_chars] + TRUNCATION_SUFFIX
    return text


def _severity(violation: Violation) -> Severity:
    rule = violation.rule
    if isinstance(rule, MessageRule) and rule.priority >= _CRITICAL_PRIORITY:
        return Severity.CRITICAL
    return Severity.WARNING


def format_violation(violation: Violation, preview_chars: int = 1200) -> AlertMessage:
    """Convert a Violation to an AlertMessage."""
    record = violation.record
    fields: dict[str, str] = {}

    if violation.rule_type == RuleType.MESSAGE:
        fields["Process"] = record.message or ""
        fields["App"] = record.app_name
    else:
        fields["App"] = record.app_name
        fields["Message"] = record.message or ""

    fields["Duration"] = f"{record.duration_ms}ms (threshold: {violation.threshold_ms}ms)"
    fields["Exceeded by"] = f"{violation.overage_ms}ms"
    fields["Correlation ID"] = record.correlation_id or "N/A"
    fields["Time"] = record.raw_timestamp or (
        record.timestamp.isoformat() if record.timestamp else "N/A"
    )

    return AlertMessage(
        severity=_severity(violation),
        title=_TITLES[violation.rule_type],
        body=context_preview(record.context, preview_chars),
        fields=fields,
        footer="Copy the correlation ID to trace the request logs.",
        source_event_type=violation.rule_type.value,
        raw={
            "rule_type": violation.rule_type.value,
            "rule_id": violation.rule_id,
            "collection": record.collection,
            "record_id": record.record_id,
        },
    )


def render_text(msg: AlertMessage) -> str:
    """Plain-text rendering used by e-mail and logs."""
    lines = [f"[{msg.severity.name}] {msg.title}", ""]
    lines.extend(f"{k}: {v}" for k, v in msg.fields.items())
    if msg.body:
        lines.extend(["", "Context:", msg.body])
    if msg.footer:
        lines.extend(["", msg.footer])
    return "\n".join(lines)
