"""Utility exports for filesystem and concurrency helpers."""

from maestro_fleet.utils.concurrency import BoundedSemaphore, TaskOutcome, WorkerPool
from maestro_fleet.utils.fs import atomic_write, scratch_file

__all__ = [
    "BoundedSemaphore",
    "TaskOutcome",
    "WorkerPool",
    "atomic_write",
    "scratch_file",
]
