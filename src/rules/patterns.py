"""Message-key patterns with a single ``%`` wildcard ("any substring")."""

from __future__ import annotations

import re
from functools import lru_cache

WILDCARD = "%"


class MessagePattern:
    """A compiled message-key pattern.

    Without the wildcard the pattern is an exact, case-sensitive match.
    With it, the literal text around each ``%`` must match (case-insensitive)
    and ``%`` absorbs any substring, including an empty one.

    Examples:
        ``BILLING_%`` matches ``BILLING_TIMEOUT_PROCESS`` but not ``REFUND_BILLING_OK``.
    """

    __slots__ = ("raw", "_regex")

    def __init__(self, raw: str) -> None:
        self.raw = raw
        self._regex: re.Pattern[str] | None = None
        if WILDCARD in raw:
            parts = (re.escape(p) for p in raw.split(WILDCARD))
            self._regex = re.compile(".*".join(parts), re.IGNORECASE | re.DOTALL)

    @property
    def has_wildcard(self) -> bool:
        return self._regex is not None

    def matches(self, message: str | None) -> bool:
        if message is None:
            return False
        if message == self.raw:
            return True
        if self._regex is None:
            return False
        return self._regex.fullmatch(message) is not None

    def __repr__(self) -> str:
        return f"MessagePattern({self.raw!r})"


@lru_cache(maxsize=1024)
def compile_pattern(raw: str) -> MessagePattern:
    """Compile (and cache) a message-key pattern."""
    return MessagePattern(raw)
