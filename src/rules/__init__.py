"""Rule evaluation: wildcard patterns, violation matching, rule snapshots."""

from src.rules.matcher import check_app_rule, check_message_rules, match, message_rule_applies
from src.rules.patterns import MessagePattern, compile_pattern
from src.rules.provider import RuleProvider, StaticRuleProvider, StoreRuleProvider

__all__ = [
    "MessagePattern",
    "RuleProvider",
    "StaticRuleProvider",
    "StoreRuleProvider",
    "check_app_rule",
    "check_message_rules",
    "compile_pattern",
    "match",
    "message_rule_applies",
]
