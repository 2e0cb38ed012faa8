"""Store interfaces the pipeline depends on.

The pipeline only sees these operations; :class:`src.storage.sql.SqlStore`
implements all of them on top of SQLAlchemy.
"""

from __future__ import annotations

import abc
from datetime import datetime

from src.core.types import (
    AppRule,
    AuditEntry,
    Checkpoint,
    MessageRule,
    RateLimitEntry,
    RuleType,
    RunRecord,
)


class CheckpointStore(abc.ABC):
    """Per-collection scan progress."""

    @abc.abstractmethod
    async def get_checkpoint(self, collection: str) -> Checkpoint | None:
        """Return the checkpoint for *collection*, or None if never scanned."""

    @abc.abstractmethod
    async def advance_checkpoint(
        self,
        collection: str,
        last_timestamp: datetime,
        last_id: str,
        scanned: int,
        alerted: int,
        now: datetime,
    ) -> Checkpoint:
        """Move the checkpoint forward and add the batch counters.

        The stored timestamp never decreases.
        """

    @abc.abstractmethod
    async def list_checkpoints(self) -> list[Checkpoint]:
        """All checkpoints, most recently run first."""

    @abc.abstractmethod
    async def reset_checkpoints(self, collection: str | None = None) -> int:
        """Delete one (or every) checkpoint. Returns the number removed."""


class RuleStore(abc.ABC):
    """Read side of the externally managed rule tables."""

    @abc.abstractmethod
    async def load_rules(self) -> tuple[list[AppRule], list[MessageRule]]:
        """Return every app and message rule with their alert targets."""


class RateLimitStore(abc.ABC):
    """Cooldown entries keyed by (rule type, rule id, app, message signature)."""

    @abc.abstractmethod
    async def get_rate_limit(
        self,
        rule_type: RuleType,
        rule_id: int,
        app_name: str,
        signature: str,
    ) -> RateLimitEntry | None:
        """Return the entry for the key, or None."""

    @abc.abstractmethod
    async def record_alert(
        self,
        rule_type: RuleType,
        rule_id: int,
        app_name: str,
        signature: str,
        now: datetime,
        cooldown_minutes: int,
    ) -> RateLimitEntry:
        """Upsert the entry: bump the count and restart the cooldown window."""


class AuditStore(abc.ABC):
    """Idempotent alert audit log."""

    @abc.abstractmethod
    async def has_sent_alert(
        self,
        rule_type: RuleType,
        rule_id: int,
        signature: str,
        correlation_id: str,
    ) -> bool:
        """Whether a ``sent`` row exists for the idempotency key."""

    @abc.abstractmethod
    async def has_sent_for_record(
        self,
        collection: str,
        record_id: str,
        rule_type: RuleType,
        rule_id: int,
    ) -> bool:
        """Whether a ``sent`` row references this physical log record."""

    @abc.abstractmethod
    async def upsert_audit(self, entry: AuditEntry) -> None:
        """Insert or update the row keyed by the entry's idempotency key."""


class RunStore(abc.ABC):
    """Run-level execution telemetry."""

    @abc.abstractmethod
    async def create_run(self, job_name: str, started_at: datetime) -> RunRecord:
        """Insert a ``running`` record and return it with its id."""

    @abc.abstractmethod
    async def finish_run(self, record: RunRecord) -> None:
        """Persist the final state of a run."""

    @abc.abstractmethod
    async def recent_runs(self, limit: int = 10) -> list[RunRecord]:
        """Most recent runs first."""


class RunLock(abc.ABC):
    """Lease preventing overlapping runs of the same job."""

    @abc.abstractmethod
    async def acquire_lock(
        self,
        job_name: str,
        owner: str,
        ttl_secs: float,
        now: datetime,
    ) -> bool:
        """Take the lease unless another owner holds an unexpired one."""

    @abc.abstractmethod
    async def renew_lock(
        self,
        job_name: str,
        owner: str,
        ttl_secs: float,
        now: datetime,
    ) -> bool:
        """Extend a lease *owner* still holds; False once it was taken over."""

    @abc.abstractmethod
    async def release_lock(self, job_name: str, owner: str) -> None:
        """Drop the lease if *owner* still holds it."""
