"""Bounded execution of external commands."""

from hadir.process.runner import BoundedProcessRunner, RunResult, RunStatus

__all__ = [
    "BoundedProcessRunner",
    "RunResult",
    "RunStatus",
]
