"""Scan pipeline exceptions."""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for scan pipeline errors."""


class RunDeadlineExceeded(PipelineError):
    """The run passed its deadline; observed between batches."""


class RunLockHeld(PipelineError):
    """Another invocation currently owns the run lease."""

    def __init__(self, job_name: str) -> None:
        super().__init__(f"run lease for {job_name!r} is held by another invocation")
        self.job_name = job_name


class RunLockLost(PipelineError):
    """The run lease was taken over while this run was still going."""

    def __init__(self, job_name: str) -> None:
        super().__init__(f"run lease for {job_name!r} was lost")
        self.job_name = job_name
