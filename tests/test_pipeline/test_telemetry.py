"""Tests for run telemetry helpers."""

from __future__ import annotations

from unittest.mock import patch

from src.pipeline.telemetry import RunTimer, peak_rss_mb


class TestPeakRss:
    def test_positive(self) -> None:
        assert peak_rss_mb() > 0

    def test_linux_units_are_kilobytes(self) -> None:
        with patch("src.pipeline.telemetry.resource.getrusage") as getrusage, \
                patch("src.pipeline.telemetry.sys.platform", "linux"):
            getrusage.return_value.ru_maxrss = 2048
            assert peak_rss_mb() == 2.0

    def test_darwin_units_are_bytes(self) -> None:
        with patch("src.pipeline.telemetry.resource.getrusage") as getrusage, \
                patch("src.pipeline.telemetry.sys.platform", "darwin"):
            getrusage.return_value.ru_maxrss = 3 * 1024 * 1024
            assert peak_rss_mb() == 3.0


class TestRunTimer:
    def test_elapsed_from_monotonic_start(self) -> None:
        with patch("src.pipeline.telemetry.time.monotonic", return_value=110.5):
            timer = RunTimer(started_monotonic=100.0, started_rss_mb=0.0)
            assert timer.elapsed_ms() == 10500
            assert timer.elapsed_secs() == 10.5

    def test_memory_delta_never_negative(self) -> None:
        with patch("src.pipeline.telemetry.peak_rss_mb", return_value=50.0):
            assert RunTimer(started_rss_mb=80.0).memory_delta_mb() == 0.0
            assert RunTimer(started_rss_mb=20.123).memory_delta_mb() == 29.88
