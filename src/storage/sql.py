"""SQLAlchemy-backed implementation of every store interface.

SQLAlchemy sessions are synchronous, so each public coroutine runs its query in
a worker thread (``asyncio.to_thread``) under a per-call timeout.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, TypeVar

import structlog
from sqlalchemy import Engine, create_engine, delete, make_url, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.config import DatabaseConfig
from src.core.types import (
    AlertStatus,
    AlertTarget,
    AppRule,
    AuditEntry,
    Checkpoint,
    MessageRule,
    RateLimitEntry,
    RuleType,
    RunRecord,
    RunStatus,
)
from src.storage.base import (
    AuditStore,
    CheckpointStore,
    RateLimitStore,
    RuleStore,
    RunLock,
    RunStore,
)
from src.storage.exceptions import StorageError, StoreTimeoutError
from src.storage.models import (
    AlertLogRow,
    AlertRateLimitRow,
    AlertTargetRow,
    AppRuleRow,
    Base,
    MessageRuleRow,
    RunLockRow,
    RunRecordRow,
    ScanCheckpointRow,
)

logger = structlog.stdlib.get_logger()

T = TypeVar("T")


def create_store_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite gets thread-shareable connections.

    ``sqlite://`` / ``:memory:`` URLs share a single connection so every
    worker thread sees the same in-memory database.
    """
    if url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            database = make_url(url).database
            if database:
                Path(database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, echo=echo, future=True, **kwargs)
    return create_engine(
        url,
        echo=echo,
        future=True,
        pool_size=5,
        max_overflow=5,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def _to_db(dt: datetime | None) -> datetime | None:
    """Aware → naive UTC for storage."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC).replace(tzinfo=None)
    return dt


def _from_db(dt: datetime | None) -> datetime | None:
    """Naive UTC from storage → aware UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _target(row: AlertTargetRow) -> AlertTarget:
    return AlertTarget(
        id=row.id,
        type=row.type,
        external_id=row.external_id,
        label=row.label or "",
        is_active=row.is_active,
    )


def _checkpoint(row: ScanCheckpointRow) -> Checkpoint:
    return Checkpoint(
        collection_name=row.collection_name,
        last_timestamp=_from_db(row.last_timestamp),
        last_id=row.last_id,
        total_scanned=row.total_scanned or 0,
        total_alerted=row.total_alerted or 0,
        last_run_at=_from_db(row.last_run_at),
    )


def _rate_limit(row: AlertRateLimitRow) -> RateLimitEntry:
    return RateLimitEntry(
        rule_type=RuleType(row.rule_type),
        rule_id=row.rule_id,
        app_name=row.app_name,
        message_signature=row.message_signature,
        last_sent_at=_from_db(row.last_sent_at),  # type: ignore[arg-type]
        cooldown_until=_from_db(row.cooldown_until),  # type: ignore[arg-type]
        alert_count=row.alert_count,
    )


def _run_record(row: RunRecordRow) -> RunRecord:
    return RunRecord(
        id=row.id,
        job_name=row.job_name,
        status=RunStatus(row.status),
        started_at=_from_db(row.started_at),  # type: ignore[arg-type]
        finished_at=_from_db(row.finished_at),
        collections_scanned=row.collections_scanned,
        logs_processed=row.logs_processed,
        violations_found=row.violations_found,
        alerts_sent=row.alerts_sent,
        elapsed_ms=row.elapsed_ms,
        memory_mb=row.memory_mb,
        error_message=row.error_message,
    )


class SqlStore(CheckpointStore, RuleStore, RateLimitStore, AuditStore, RunStore, RunLock):
    """All persistence used by the pipeline, on one SQLAlchemy engine.

    Usage::

        store = SqlStore.from_config(settings.database)
        store.create_schema()
        checkpoint = await store.get_checkpoint("core-logs")
    """

    def __init__(self, engine: Engine, timeout_secs: float = 15.0) -> None:
        self._engine = engine
        self._timeout_secs = timeout_secs
        self._sessions = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> SqlStore:
        return cls(create_store_engine(config.url, echo=config.echo), config.timeout_secs)

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_schema(self) -> None:
        """Create every table that does not exist yet."""
        Base.metadata.create_all(self._engine)

    def dispose(self) -> None:
        self._engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transactional scope: commit on success, roll back on error."""
        db = self._sessions()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        """Run *fn* in a worker thread, bounded by ``timeout_secs``.

        The timeout stops the caller from waiting, not the thread: a write
        that raised :class:`StoreTimeoutError` may still commit afterwards.
        Replaying a write is safe (the checkpoint cursor only moves
        forward, audit rows upsert on their key, lease writes check the
        owner), so the caller treats a timeout as "outcome unknown".
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args), timeout=self._timeout_secs
            )
        except TimeoutError as exc:
            raise StoreTimeoutError(
                f"{fn.__name__} exceeded {self._timeout_secs}s"
            ) from exc
        except SQLAlchemyError as exc:
            raise StorageError(f"{fn.__name__} failed: {exc}") from exc

    # ── Checkpoints ─────────────────────────────────────────────

    async def get_checkpoint(self, collection: str) -> Checkpoint | None:
        return await self._call(self._get_checkpoint, collection)

    def _get_checkpoint(self, collection: str) -> Checkpoint | None:
        with self.session() as db:
            row = db.scalar(
                select(ScanCheckpointRow).where(ScanCheckpointRow.collection_name == collection)
            )
            return _checkpoint(row) if row is not None else None

    async def advance_checkpoint(
        self,
        collection: str,
        last_timestamp: datetime,
        last_id: str,
        scanned: int,
        alerted: int,
        now: datetime,
    ) -> Checkpoint:
        return await self._call(
            self._advance_checkpoint, collection, last_timestamp, last_id, scanned, alerted, now
        )

    def _advance_checkpoint(
        self,
        collection: str,
        last_timestamp: datetime,
        last_id: str,
        scanned: int,
        alerted: int,
        now: datetime,
    ) -> Checkpoint:
        new_ts = _to_db(last_timestamp)
        with self.session() as db:
            row = db.scalar(
                select(ScanCheckpointRow)
                .where(ScanCheckpointRow.collection_name == collection)
                .with_for_update()
            )
            if row is None:
                row = ScanCheckpointRow(
                    collection_name=collection,
                    total_scanned=0,
                    total_alerted=0,
                )
                db.add(row)

            if row.last_timestamp is not None and new_ts is not None and new_ts < row.last_timestamp:
                logger.warning(
                    "checkpoint_regression_ignored",
                    collection=collection,
                    stored=row.last_timestamp.isoformat(),
                    proposed=new_ts.isoformat(),
                )
            else:
                row.last_timestamp = new_ts
                row.last_id = last_id

            row.total_scanned = (row.total_scanned or 0) + scanned
            row.total_alerted = (row.total_alerted or 0) + alerted
            row.last_run_at = _to_db(now)
            db.flush()
            return _checkpoint(row)

    async def list_checkpoints(self) -> list[Checkpoint]:
        return await self._call(self._list_checkpoints)

    def _list_checkpoints(self) -> list[Checkpoint]:
        with self.session() as db:
            rows = db.scalars(
                select(ScanCheckpointRow).order_by(
                    ScanCheckpointRow.last_run_at.desc(), ScanCheckpointRow.collection_name
                )
            ).all()
            return [_checkpoint(r) for r in rows]

    async def reset_checkpoints(self, collection: str | None = None) -> int:
        return await self._call(self._reset_checkpoints, collection)

    def _reset_checkpoints(self, collection: str | None) -> int:
        stmt = delete(ScanCheckpointRow)
        if collection is not None:
            stmt = stmt.where(ScanCheckpointRow.collection_name == collection)
        with self.session() as db:
            result = db.execute(stmt)
            return result.rowcount or 0

    # ── Rules ───────────────────────────────────────────────────

    async def load_rules(self) -> tuple[list[AppRule], list[MessageRule]]:
        return await self._call(self._load_rules)

    def _load_rules(self) -> tuple[list[AppRule], list[MessageRule]]:
        with self.session() as db:
            app_rows = db.scalars(select(AppRuleRow).order_by(AppRuleRow.id)).all()
            msg_rows = db.scalars(select(MessageRuleRow).order_by(MessageRuleRow.id)).all()

            app_rules = [
                AppRule(
                    id=r.id,
                    app_name=r.app_name,
                    max_duration_ms=r.max_duration_ms,
                    is_active=r.is_active,
                    cooldown_minutes=r.cooldown_minutes,
                    alert_channels=list(r.alert_channels or []),
                    targets=[_target(t) for t in r.targets],
                )
                for r in app_rows
            ]
            message_rules = [
                MessageRule(
                    id=r.id,
                    app_name=r.app_name or None,
                    message_key_pattern=r.message_key,
                    max_duration_ms=r.max_duration_ms,
                    is_active=r.is_active,
                    priority=r.priority,
                    cooldown_minutes=r.cooldown_minutes,
                    alert_channels=list(r.alert_channels or []),
                    targets=[_target(t) for t in r.targets],
                )
                for r in msg_rows
            ]
            return app_rules, message_rules

    # ── Rate limits ─────────────────────────────────────────────

    async def get_rate_limit(
        self,
        rule_type: RuleType,
        rule_id: int,
        app_name: str,
        signature: str,
    ) -> RateLimitEntry | None:
        return await self._call(self._get_rate_limit, rule_type, rule_id, app_name, signature)

    @staticmethod
    def _rate_limit_query(rule_type: RuleType, rule_id: int, app_name: str, signature: str) -> Any:
        return select(AlertRateLimitRow).where(
            AlertRateLimitRow.rule_type == rule_type.value,
            AlertRateLimitRow.rule_id == rule_id,
            AlertRateLimitRow.app_name == app_name,
            AlertRateLimitRow.message_signature == signature,
        )

    def _get_rate_limit(
        self, rule_type: RuleType, rule_id: int, app_name: str, signature: str
    ) -> RateLimitEntry | None:
        with self.session() as db:
            row = db.scalar(self._rate_limit_query(rule_type, rule_id, app_name, signature))
            return _rate_limit(row) if row is not None else None

    async def record_alert(
        self,
        rule_type: RuleType,
        rule_id: int,
        app_name: str,
        signature: str,
        now: datetime,
        cooldown_minutes: int,
    ) -> RateLimitEntry:
        return await self._call(
            self._record_alert, rule_type, rule_id, app_name, signature, now, cooldown_minutes
        )

    def _record_alert(
        self,
        rule_type: RuleType,
        rule_id: int,
        app_name: str,
        signature: str,
        now: datetime,
        cooldown_minutes: int,
    ) -> RateLimitEntry:
        sent_at = _to_db(now)
        until = _to_db(now + timedelta(minutes=cooldown_minutes))
        try:
            return self._upsert_rate_limit(rule_type, rule_id, app_name, signature, sent_at, until)
        except IntegrityError:
            # Lost an insert race with an overlapping run; the row exists now.
            return self._upsert_rate_limit(rule_type, rule_id, app_name, signature, sent_at, until)

    def _upsert_rate_limit(
        self,
        rule_type: RuleType,
        rule_id: int,
        app_name: str,
        signature: str,
        sent_at: datetime | None,
        until: datetime | None,
    ) -> RateLimitEntry:
        with self.session() as db:
            row = db.scalar(self._rate_limit_query(rule_type, rule_id, app_name, signature))
            if row is None:
                row = AlertRateLimitRow(
                    rule_type=rule_type.value,
                    rule_id=rule_id,
                    app_name=app_name,
                    message_signature=signature,
                    alert_count=0,
                )
                db.add(row)
            row.last_sent_at = sent_at  # type: ignore[assignment]
            row.cooldown_until = until  # type: ignore[assignment]
            row.alert_count = (row.alert_count or 0) + 1
            db.flush()
            return _rate_limit(row)

    # ── Audit ───────────────────────────────────────────────────

    async def has_sent_alert(
        self,
        rule_type: RuleType,
        rule_id: int,
        signature: str,
        correlation_id: str,
    ) -> bool:
        return await self._call(self._has_sent_alert, rule_type, rule_id, signature, correlation_id)

    def _has_sent_alert(
        self, rule_type: RuleType, rule_id: int, signature: str, correlation_id: str
    ) -> bool:
        with self.session() as db:
            found = db.scalar(
                select(AlertLogRow.id).where(
                    AlertLogRow.rule_type == rule_type.value,
                    AlertLogRow.rule_id == rule_id,
                    AlertLogRow.message_signature == signature,
                    AlertLogRow.correlation_id == correlation_id,
                    AlertLogRow.status == AlertStatus.SENT.value,
                )
            )
            return found is not None

    async def has_sent_for_record(
        self,
        collection: str,
        record_id: str,
        rule_type: RuleType,
        rule_id: int,
    ) -> bool:
        return await self._call(self._has_sent_for_record, collection, record_id, rule_type, rule_id)

    def _has_sent_for_record(
        self, collection: str, record_id: str, rule_type: RuleType, rule_id: int
    ) -> bool:
        with self.session() as db:
            found = db.scalar(
                select(AlertLogRow.id).where(
                    AlertLogRow.collection_ref == collection,
                    AlertLogRow.record_ref == record_id,
                    AlertLogRow.rule_type == rule_type.value,
                    AlertLogRow.rule_id == rule_id,
                    AlertLogRow.status == AlertStatus.SENT.value,
                )
            )
            return found is not None

    async def upsert_audit(self, entry: AuditEntry) -> None:
        await self._call(self._upsert_audit, entry)

    def _upsert_audit(self, entry: AuditEntry) -> None:
        try:
            self._write_audit(entry)
        except IntegrityError:
            self._write_audit(entry)

    def _write_audit(self, entry: AuditEntry) -> None:
        with self.session() as db:
            row = db.scalar(
                select(AlertLogRow).where(
                    AlertLogRow.rule_type == entry.rule_type.value,
                    AlertLogRow.rule_id == entry.rule_id,
                    AlertLogRow.message_signature == entry.message_signature,
                    AlertLogRow.correlation_id == entry.correlation_id,
                )
            )
            if row is None:
                row = AlertLogRow(
                    rule_type=entry.rule_type.value,
                    rule_id=entry.rule_id,
                    message_signature=entry.message_signature,
                    correlation_id=entry.correlation_id,
                )
                db.add(row)
            elif row.status == AlertStatus.SENT.value and entry.status != AlertStatus.SENT:
                # A later failed attempt must not hide that the event was delivered.
                logger.info(
                    "audit_sent_row_kept",
                    rule_type=entry.rule_type.value,
                    rule_id=entry.rule_id,
                    correlation_id=entry.correlation_id,
                )
                return

            row.collection_ref = entry.collection_ref
            row.record_ref = entry.record_ref
            row.app_name = entry.app_name
            row.message = entry.message
            row.duration_ms = entry.duration_ms
            row.log_timestamp = _to_db(entry.log_timestamp)
            row.threshold_ms = entry.threshold_ms
            row.overage_ms = entry.overage_ms
            row.channels_attempted = list(entry.channels_attempted)
            row.channels_sent = list(entry.channels_sent)
            row.status = entry.status.value
            row.sent_at = _to_db(entry.sent_at)  # type: ignore[assignment]

    # ── Run records ─────────────────────────────────────────────

    async def create_run(self, job_name: str, started_at: datetime) -> RunRecord:
        return await self._call(self._create_run, job_name, started_at)

    def _create_run(self, job_name: str, started_at: datetime) -> RunRecord:
        with self.session() as db:
            row = RunRecordRow(
                job_name=job_name,
                status=RunStatus.RUNNING.value,
                started_at=_to_db(started_at),
                collections_scanned=0,
                logs_processed=0,
                violations_found=0,
                alerts_sent=0,
                elapsed_ms=0,
                memory_mb=0.0,
            )
            db.add(row)
            db.flush()
            return _run_record(row)

    async def finish_run(self, record: RunRecord) -> None:
        await self._call(self._finish_run, record)

    def _finish_run(self, record: RunRecord) -> None:
        if record.id is None:
            raise StorageError("run record has no id")
        with self.session() as db:
            row = db.get(RunRecordRow, record.id)
            if row is None:
                raise StorageError(f"run record {record.id} not found")
            row.status = record.status.value
            row.finished_at = _to_db(record.finished_at)
            row.collections_scanned = record.collections_scanned
            row.logs_processed = record.logs_processed
            row.violations_found = record.violations_found
            row.alerts_sent = record.alerts_sent
            row.elapsed_ms = record.elapsed_ms
            row.memory_mb = record.memory_mb
            row.error_message = record.error_message

    async def recent_runs(self, limit: int = 10) -> list[RunRecord]:
        return await self._call(self._recent_runs, limit)

    def _recent_runs(self, limit: int) -> list[RunRecord]:
        with self.session() as db:
            rows = db.scalars(
                select(RunRecordRow)
                .order_by(RunRecordRow.started_at.desc(), RunRecordRow.id.desc())
                .limit(limit)
            ).all()
            return [_run_record(r) for r in rows]

    # ── Run lease ───────────────────────────────────────────────

    async def acquire_lock(
        self,
        job_name: str,
        owner: str,
        ttl_secs: float,
        now: datetime,
    ) -> bool:
        return await self._call(self._acquire_lock, job_name, owner, ttl_secs, now)

    def _acquire_lock(self, job_name: str, owner: str, ttl_secs: float, now: datetime) -> bool:
        now_db = _to_db(now)
        expires = _to_db(now + timedelta(seconds=ttl_secs))
        try:
            with self.session() as db:
                row = db.get(RunLockRow, job_name, with_for_update=True)
                if row is None:
                    db.add(RunLockRow(
                        job_name=job_name,
                        owner=owner,
                        acquired_at=now_db,
                        expires_at=expires,
                    ))
                    return True
                if row.owner != owner and row.expires_at > now_db:  # type: ignore[operator]
                    logger.info(
                        "run_lock_held",
                        job_name=job_name,
                        holder=row.owner,
                        expires_at=row.expires_at.isoformat(),
                    )
                    return False
                if row.owner != owner:
                    logger.warning("run_lock_expired_takeover", job_name=job_name, previous=row.owner)
                row.owner = owner
                row.acquired_at = now_db  # type: ignore[assignment]
                row.expires_at = expires  # type: ignore[assignment]
                return True
        except IntegrityError:
            # Another process inserted the lease between our read and write.
            return False

    async def renew_lock(
        self,
        job_name: str,
        owner: str,
        ttl_secs: float,
        now: datetime,
    ) -> bool:
        return await self._call(self._renew_lock, job_name, owner, ttl_secs, now)

    def _renew_lock(self, job_name: str, owner: str, ttl_secs: float, now: datetime) -> bool:
        with self.session() as db:
            row = db.get(RunLockRow, job_name, with_for_update=True)
            if row is None or row.owner != owner:
                logger.warning(
                    "run_lock_lost",
                    job_name=job_name,
                    holder=row.owner if row is not None else None,
                )
                return False
            row.expires_at = _to_db(now + timedelta(seconds=ttl_secs))  # type: ignore[assignment]
            return True

    async def release_lock(self, job_name: str, owner: str) -> None:
        await self._call(self._release_lock, job_name, owner)

    def _release_lock(self, job_name: str, owner: str) -> None:
        with self.session() as db:
            db.execute(
                delete(RunLockRow).where(RunLockRow.job_name == job_name, RunLockRow.owner == owner)
            )
