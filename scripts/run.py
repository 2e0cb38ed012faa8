#!/usr/bin/env python3
"""Scanner entrypoint: wires all components and runs one scan-match-alert pass.

Meant to be triggered by an external scheduler (cron, systemd timer, k8s
CronJob). Exit code 0 on success or when another run holds the lease,
1 when the run failed.

Usage::

    # One run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level
    python scripts/run.py --log-level DEBUG

    # No external scheduler: loop every scan.interval_secs or an explicit period
    python scripts/run.py --every
    python scripts/run.py --every 60
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from src.alerting.factory import create_dispatcher
from src.alerting.guard import AlertGuard
from src.core.config import Settings, load_settings
from src.core.logging import setup_logging
from src.pipeline.exceptions import RunLockHeld
from src.pipeline.orchestrator import ScanOrchestrator
from src.rules.provider import StoreRuleProvider
from src.search.client import SearchClient
from src.search.scanner import LogCursorScanner
from src.storage.sql import SqlStore

logger = structlog.get_logger(__name__)


async def run_once(settings: Settings, store: SqlStore) -> int:
    """One orchestrator invocation. Returns the process exit code."""
    dispatcher = create_dispatcher(settings.alerts, audit_store=store)
    try:
        async with SearchClient(settings.search) as client:
            orchestrator = ScanOrchestrator(
                scanner=LogCursorScanner(client, settings.search),
                rule_provider=StoreRuleProvider(store),
                guard=AlertGuard(audit_store=store, rate_limit_store=store),
                dispatcher=dispatcher,
                checkpoints=store,
                runs=store,
                lock=store,
                config=settings.scan,
            )
            record = await orchestrator.run()
    except RunLockHeld as exc:
        logger.info("run_skipped_lock_held", job_name=exc.job_name)
        return 0
    except Exception:
        logger.exception("run_aborted")
        return 1
    finally:
        await dispatcher.close()

    logger.info("run_complete", run_id=record.id, alerts_sent=record.alerts_sent)
    return 0


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    store = SqlStore.from_config(settings.database)
    store.create_schema()

    try:
        if args.every is None:
            return await run_once(settings, store)
        return await run_forever(settings, store, args.every or settings.scan.interval_secs)
    finally:
        store.dispose()


async def run_forever(settings: Settings, store: SqlStore, every: float) -> int:
    """Repeat :func:`run_once` every *every* seconds until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    logger.info("scheduler_started", every_secs=every)
    code = 0
    while not stop_event.is_set():
        code = await run_once(settings, store)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=every)
        except TimeoutError:
            continue

    logger.info("scheduler_stopped")
    return code


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Scan logs for slow requests and dispatch alerts.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--every",
        type=float,
        nargs="?",
        const=0.0,
        default=None,
        metavar="SECONDS",
        help="Keep running, one scan every SECONDS (default: scan.interval_secs)",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
