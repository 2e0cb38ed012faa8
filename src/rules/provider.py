"""Rule providers: hand the pipeline a fresh rule snapshot on demand."""

from __future__ import annotations

import abc

import structlog

from src.core.types import AppRule, MessageRule, RuleSet
from src.storage.base import RuleStore

logger = structlog.stdlib.get_logger()


class RuleProvider(abc.ABC):
    """Source of rule snapshots. Called once per batch."""

    @abc.abstractmethod
    async def snapshot(self) -> RuleSet:
        """Return the currently active rules."""


class StoreRuleProvider(RuleProvider):
    """Reads rules from the rule tables every time it is asked.

    Keeps no cache so edits made through the rule management surface take
    effect on the next batch.
    """

    def __init__(self, store: RuleStore) -> None:
        self._store = store

    async def snapshot(self) -> RuleSet:
        app_rules, message_rules = await self._store.load_rules()
        rules = RuleSet.from_rules(app_rules, message_rules)
        logger.debug(
            "rules_refreshed",
            app_rules=len(rules.app_rules),
            message_rules=len(rules.message_rules),
        )
        return rules


class StaticRuleProvider(RuleProvider):
    """Fixed rule set, for one-off checks and tests."""

    def __init__(
        self,
        app_rules: list[AppRule] | None = None,
        message_rules: list[MessageRule] | None = None,
    ) -> None:
        self._rules = RuleSet.from_rules(app_rules or [], message_rules or [])

    async def snapshot(self) -> RuleSet:
        return self._rules
