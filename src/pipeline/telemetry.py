"""Run telemetry: wall-clock and peak-memory deltas for one invocation."""

from __future__ import annotations

import resource
import sys
import time
from dataclasses import dataclass, field


def peak_rss_mb() -> float:
    """Peak resident set size of this process, in megabytes."""
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # macOS reports bytes, Linux kilobytes.
    if sys.platform == "darwin":
        return usage / (1024 * 1024)
    return usage / 1024


@dataclass
class RunTimer:
    """Captures the starting point of a run and reports deltas against it."""

    started_monotonic: float = field(default_factory=time.monotonic)
    started_rss_mb: float = field(default_factory=peak_rss_mb)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_monotonic) * 1000)

    def elapsed_secs(self) -> float:
        return time.monotonic() - self.started_monotonic

    def memory_delta_mb(self) -> float:
        return round(max(0.0, peak_rss_mb() - self.started_rss_mb), 2)
