"""Thread-based concurrency primitives used for fleet fan-out."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

T = TypeVar("T")


class BoundedSemaphore:
    """Small wrapper over ``threading.BoundedSemaphore`` with usage diagnostics."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._limit = limit
        self._semaphore = threading.BoundedSemaphore(limit)
        self._lock = threading.Lock()
        self._in_use = 0
        self._peak = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    @property
    def peak(self) -> int:
        with self._lock:
            return self._peak

    @property
    def available(self) -> int:
        return self._limit - self.in_use

    def acquire(self) -> None:
        self._semaphore.acquire()
        with self._lock:
            self._in_use += 1
            self._peak = max(self._peak, self._in_use)

    def release(self) -> None:
        with self._lock:
            if self._in_use <= 0:
                raise RuntimeError("release called more times than acquire")
            self._in_use -= 1
        self._semaphore.release()

    @contextmanager
    def permit(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "limit": self._limit,
                "in_use": self._in_use,
                "available": self._limit - self._in_use,
                "peak": self._peak,
            }


@dataclass(frozen=True, slots=True)
class TaskOutcome(Generic[T]):
    """Result slot for one unit of work: either a value or the raised exception."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class WorkerPool:
    """Run callables on a bounded thread pool and join on all of them.

    ``run_all`` returns one :class:`TaskOutcome` per task, in submission order.
    Every task finishes or fails before the call returns; a failing task never
    stops the others.
    """

    max_workers: int
    thread_name_prefix: str = "maestro-fleet"

    def __post_init__(self) -> None:
        if self.max_workers <= 0:
            raise ValueError("max_workers must be > 0")

    def run_all(self, tasks: Sequence[Callable[[], T]]) -> list[TaskOutcome[T]]:
        if not tasks:
            return []

        slots: list[TaskOutcome[T]] = [TaskOutcome() for _ in tasks]
        workers = min(self.max_workers, len(tasks))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=self.thread_name_prefix
        ) as executor:
            futures = {executor.submit(task): index for index, task in enumerate(tasks)}
            wait(futures)

        for future, index in futures.items():
            exc = future.exception()
            if exc is not None:
                slots[index] = TaskOutcome(error=exc)
            else:
                slots[index] = TaskOutcome(value=future.result())
        return slots


__all__ = [
    "BoundedSemaphore",
    "TaskOutcome",
    "WorkerPool",
]
