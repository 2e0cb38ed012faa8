"""Scan orchestrator: one scheduled scan-match-alert pass over every collection.

Per invocation::

    acquire lease → create run record
      for each collection:
        load checkpoint
        loop: fetch batch → refresh rules → match → guard → dispatch
              → advance checkpoint → check deadline → renew lease
    finalize run record (success | failed) → release lease

Collections are processed sequentially and isolated from each other: an error
inside one collection is logged and the run moves on. Only errors outside the
per-collection loop (collection discovery, run-record writes, deadline, a
lost lease, cancellation) fail the run.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from src.alerting.dispatcher import AlertDispatcher
from src.alerting.guard import AlertGuard
from src.alerting.types import GuardDecision
from src.core.config import ScanConfig, get_settings
from src.core.logging import bind_run_context, clear_run_context
from src.core.types import LogRecord, RunRecord, RunStatus, ScanBatch
from src.pipeline.exceptions import RunDeadlineExceeded, RunLockHeld, RunLockLost
from src.pipeline.telemetry import RunTimer
from src.rules.matcher import match
from src.rules.provider import RuleProvider
from src.search.scanner import LogCursorScanner
from src.storage.base import CheckpointStore, RunLock, RunStore

logger = structlog.stdlib.get_logger()

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class ScanOrchestrator:
    """Drives the scanner, matcher, guard and dispatcher for one run."""

    def __init__(
        self,
        scanner: LogCursorScanner,
        rule_provider: RuleProvider,
        guard: AlertGuard,
        dispatcher: AlertDispatcher,
        checkpoints: CheckpointStore,
        runs: RunStore,
        lock: RunLock,
        config: ScanConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._scanner = scanner
        self._rules = rule_provider
        self._guard = guard
        self._dispatcher = dispatcher
        self._checkpoints = checkpoints
        self._runs = runs
        self._lock = lock
        self._config = config or get_settings().scan
        self._clock = clock
        self._lease_owner: str | None = None

    # ── Entry point ─────────────────────────────────────────────

    async def run(self) -> RunRecord:
        """Execute one invocation and return its finalized Run Record.

        Raises:
            RunLockHeld: another invocation owns the lease; nothing was scanned.
            RunDeadlineExceeded: ``max_run_secs`` passed between batches.
            RunLockLost: the lease could not be renewed between batches.
            Exception: any top-level failure, after the Run Record was
                finalized as failed.
        """
        job_name = self._config.job_name
        owner = uuid.uuid4().hex
        acquired = await self._lock.acquire_lock(
            job_name, owner, self._config.lock_ttl_secs, self._clock()
        )
        if not acquired:
            raise RunLockHeld(job_name)

        self._lease_owner = owner
        try:
            return await self._execute(job_name)
        finally:
            self._lease_owner = None
            try:
                await self._lock.release_lock(job_name, owner)
            except Exception:
                logger.exception("run_lock_release_failed", job_name=job_name)

    async def _execute(self, job_name: str) -> RunRecord:
        timer = RunTimer()
        record = await self._runs.create_run(job_name, self._clock())
        bind_run_context(run_id=record.id, job_name=job_name)
        logger.info("run_started")

        try:
            collections = await self._scanner.list_collections()
            logger.info("collections_selected", count=len(collections))

            for collection in collections:
                await self._between_batches(timer)
                bind_run_context(collection=collection)
                try:
                    completed = await self._scan_collection(collection, record, timer)
                except (RunDeadlineExceeded, RunLockLost):
                    raise
                except Exception:
                    logger.exception("collection_scan_failed")
                    continue
                finally:
                    structlog.contextvars.unbind_contextvars("collection")
                if completed:
                    record.collections_scanned += 1

        except asyncio.CancelledError:
            await self._finalize(record, timer, RunStatus.FAILED, "cancelled")
            raise
        except RunDeadlineExceeded:
            await self._finalize(record, timer, RunStatus.FAILED, "deadline exceeded")
            raise
        except RunLockLost:
            await self._finalize(record, timer, RunStatus.FAILED, "lock lost")
            raise
        except Exception as exc:
            logger.exception("run_failed")
            await self._finalize(record, timer, RunStatus.FAILED, str(exc) or type(exc).__name__)
            raise
        else:
            await self._finalize(record, timer, RunStatus.SUCCESS, None)
            return record
        finally:
            clear_run_context()

    # ── Per collection ──────────────────────────────────────────

    async def _scan_collection(self, collection: str, run: RunRecord, timer: RunTimer) -> bool:
        """Scan *collection* to exhaustion. Returns False when a batch fetch failed."""
        checkpoint = await self._checkpoints.get_checkpoint(collection)
        batch_size = self._config.batch_size
        cursor: list[Any] | None = None

        while True:
            batch = await self._scanner.scan(collection, checkpoint, batch_size, cursor=cursor)
            if batch.error is not None:
                logger.warning("collection_scan_stopped", reason=batch.error)
                return False
            if batch.exhausted:
                break

            await self._process_batch(collection, batch, run)

            if batch.hits_seen < batch_size or not batch.next_cursor or batch.next_cursor == cursor:
                break
            cursor = batch.next_cursor
            await self._between_batches(timer)

        return True

    async def _process_batch(self, collection: str, batch: ScanBatch, run: RunRecord) -> None:
        # Fresh snapshot per batch so rule edits apply mid-run.
        rules = await self._rules.snapshot()

        alerted = 0
        for log in batch.records:
            for violation in match(log, rules):
                run.violations_found += 1
                now = self._clock()
                decision = await self._guard.check(violation, now)
                if decision is not GuardDecision.ALLOW:
                    logger.debug(
                        "alert_suppressed",
                        reason=decision.value,
                        rule_type=violation.rule_type.value,
                        rule_id=violation.rule_id,
                        source_ref=log.source_ref,
                    )
                    continue
                if await self._dispatcher.dispatch(violation, now):
                    await self._guard.record_sent(violation, now)
                    alerted += 1

        scanned = len(batch.records)
        run.logs_processed += scanned
        run.alerts_sent += alerted

        # Only after every alert of the batch was attempted.
        await self._advance(collection, batch.records, scanned, alerted)

        logger.info(
            "scan_batch_processed",
            hits=batch.hits_seen,
            records=scanned,
            alerted=alerted,
        )

    async def _advance(
        self,
        collection: str,
        records: list[LogRecord],
        scanned: int,
        alerted: int,
    ) -> None:
        if not records:
            return
        last = records[-1]
        if last.timestamp is None:
            logger.warning(
                "checkpoint_advance_skipped",
                reason="last record has no timestamp",
                record_id=last.record_id,
            )
            return
        await self._checkpoints.advance_checkpoint(
            collection,
            last.timestamp,
            last.record_id,
            scanned,
            alerted,
            self._clock(),
        )

    # ── Helpers ─────────────────────────────────────────────────

    async def _between_batches(self, timer: RunTimer) -> None:
        self._check_deadline(timer)
        await self._renew_lease()

    def _check_deadline(self, timer: RunTimer) -> None:
        if timer.elapsed_secs() > self._config.max_run_secs:
            logger.warning("run_deadline_exceeded", max_run_secs=self._config.max_run_secs)
            raise RunDeadlineExceeded(f"run exceeded {self._config.max_run_secs}s")

    async def _renew_lease(self) -> None:
        if self._lease_owner is None:
            return
        job_name = self._config.job_name
        renewed = await self._lock.renew_lock(
            job_name, self._lease_owner, self._config.lock_ttl_secs, self._clock()
        )
        if not renewed:
            raise RunLockLost(job_name)

    async def _finalize(
        self,
        record: RunRecord,
        timer: RunTimer,
        status: RunStatus,
        error: str | None,
    ) -> None:
        record.status = status
        record.error_message = error
        record.finished_at = self._clock()
        record.elapsed_ms = timer.elapsed_ms()
        record.memory_mb = timer.memory_delta_mb()

        try:
            await self._runs.finish_run(record)
        except Exception:
            if status is RunStatus.SUCCESS:
                raise
            # Keep the original failure as the one that propagates.
            logger.exception("run_finalize_failed")

        logger.info(
            "run_finished",
            status=status.value,
            collections_scanned=record.collections_scanned,
            logs_processed=record.logs_processed,
            violations_found=record.violations_found,
            alerts_sent=record.alerts_sent,
            elapsed_ms=record.elapsed_ms,
            memory_mb=record.memory_mb,
            error=error,
        )
