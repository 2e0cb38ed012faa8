#!/usr/bin/env python3
"""Operator commands for the scanner's persistent state.

Usage::

    python scripts/manage.py init-db
    python scripts/manage.py checkpoints
    python scripts/manage.py reset-checkpoints --collection core-logs
    python scripts/manage.py runs --limit 20
    python scripts/manage.py test-channel telegram --target -1001234567890
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog

from src.alerting.factory import create_dispatcher
from src.alerting.types import AlertMessage, DeliveryTarget, Severity
from src.core.config import Settings, load_settings
from src.core.logging import setup_logging
from src.core.types import ChannelKind
from src.storage.sql import SqlStore

logger = structlog.get_logger(__name__)


def _fmt_ts(value: object) -> str:
    return value.isoformat(timespec="seconds") if value is not None else "-"  # type: ignore[attr-defined]


async def cmd_init_db(settings: Settings, store: SqlStore, args: argparse.Namespace) -> int:
    store.create_schema()
    print(f"Schema ready at {settings.database.url}")
    return 0


async def cmd_checkpoints(settings: Settings, store: SqlStore, args: argparse.Namespace) -> int:
    checkpoints = await store.list_checkpoints()
    if not checkpoints:
        print("No checkpoints yet.")
        return 0

    print(f"{'COLLECTION':<40} {'LAST TIMESTAMP':<26} {'SCANNED':>10} {'ALERTED':>8}  LAST RUN")
    for cp in checkpoints:
        print(
            f"{cp.collection_name:<40} {_fmt_ts(cp.last_timestamp):<26} "
            f"{cp.total_scanned:>10} {cp.total_alerted:>8}  {_fmt_ts(cp.last_run_at)}"
        )
    return 0


async def cmd_reset_checkpoints(settings: Settings, store: SqlStore, args: argparse.Namespace) -> int:
    removed = await store.reset_checkpoints(args.collection)
    scope = args.collection or "all collections"
    print(f"Removed {removed} checkpoint(s) for {scope}.")
    return 0


async def cmd_runs(settings: Settings, store: SqlStore, args: argparse.Namespace) -> int:
    runs = await store.recent_runs(args.limit)
    if not runs:
        print("No runs recorded.")
        return 0

    print(f"{'ID':>6} {'STATUS':<8} {'STARTED':<26} {'LOGS':>8} {'VIOL':>6} {'SENT':>6} {'MS':>8}  ERROR")
    for run in runs:
        print(
            f"{run.id:>6} {run.status.value:<8} {_fmt_ts(run.started_at):<26} "
            f"{run.logs_processed:>8} {run.violations_found:>6} {run.alerts_sent:>6} "
            f"{run.elapsed_ms:>8}  {run.error_message or ''}"
        )
    return 0


async def cmd_test_channel(settings: Settings, store: SqlStore, args: argparse.Namespace) -> int:
    dispatcher = create_dispatcher(settings.alerts, audit_store=store)
    msg = AlertMessage(
        severity=Severity.INFO,
        title="Test Alert",
        body="This is a test message from the log alert scanner.",
        fields={"App": "test", "Duration": "0ms"},
        footer="If you can read this, the channel is configured correctly.",
        source_event_type="test",
    )
    try:
        ok = await dispatcher.send_test(DeliveryTarget(ChannelKind(args.channel), args.target), msg)
    finally:
        await dispatcher.close()

    print("Sent." if ok else "Delivery failed, see log output.")
    return 0 if ok else 1


COMMANDS = {
    "init-db": cmd_init_db,
    "checkpoints": cmd_checkpoints,
    "reset-checkpoints": cmd_reset_checkpoints,
    "runs": cmd_runs,
    "test-channel": cmd_test_channel,
}


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, fmt="console")

    store = SqlStore.from_config(settings.database)
    try:
        if args.command != "init-db":
            store.create_schema()
        return await COMMANDS[args.command](settings, store, args)
    finally:
        store.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage the log alert scanner's state.")
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
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")
    sub.add_parser("checkpoints", help="List scan checkpoints")

    reset = sub.add_parser("reset-checkpoints", help="Delete checkpoints so collections rescan")
    reset.add_argument("--collection", default=None, help="Only this collection")

    runs = sub.add_parser("runs", help="Show recent run records")
    runs.add_argument("--limit", type=int, default=10)

    test = sub.add_parser("test-channel", help="Send a sample alert through one channel")
    test.add_argument("channel", choices=[c.value for c in ChannelKind])
    test.add_argument("--target", required=True, help="Chat id or e-mail address")

    return parser


def main() -> None:
    args = build_parser().parse_args()
    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
