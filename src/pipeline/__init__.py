"""Scan orchestration and run telemetry."""

from src.pipeline.exceptions import (
    PipelineError,
    RunDeadlineExceeded,
    RunLockHeld,
    RunLockLost,
)
from src.pipeline.orchestrator import ScanOrchestrator, utc_now
from src.pipeline.telemetry import RunTimer, peak_rss_mb

__all__ = [
    "PipelineError",
    "RunDeadlineExceeded",
    "RunLockHeld",
    "RunLockLost",
    "RunTimer",
    "ScanOrchestrator",
    "peak_rss_mb",
    "utc_now",
]
