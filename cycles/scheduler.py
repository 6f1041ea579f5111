"""
ESG Reporting — Deferred Continuation Scheduler

Abstract interface for long-running effects that outlive the request
that started them: step progression, reprocessing after a failed
verification, and artifact regeneration. Callers observe progress by
re-reading the cycle, never by blocking on a continuation.

The interface is clock-agnostic:
  - VirtualScheduler:   tests and demos; time moves only when advanced
  - ThreadingScheduler: real time, one threading.Timer per continuation

Continuations can only be cancelled by disposing the scheduler
(process stop); there is no per-caller timeout.
"""

from __future__ import annotations

import abc
import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger("esg_reporting.scheduler")

# 2026-03-01T00:00:00Z, after every timestamp in the baseline fixture
DEFAULT_VIRTUAL_EPOCH = 1772323200.0


@dataclass
class ScheduledTask:
    """Handle for a pending continuation."""
    task_id: int
    label: str
    due_at: float
    fn: Callable[[], None] = field(repr=False)
    done: bool = False
    cancelled: bool = False


class Scheduler(abc.ABC):
    """Clock plus a way to run something later."""

    @abc.abstractmethod
    def now(self) -> float:
        """Current time in epoch seconds."""
        ...

    @abc.abstractmethod
    def after(self, delay: float, fn: Callable[[], None], label: str = "") -> ScheduledTask:
        """Run ``fn`` once, ``delay`` seconds from now."""
        ...

    @abc.abstractmethod
    def pending(self) -> list[ScheduledTask]:
        """Continuations not yet run, soonest first."""
        ...

    @abc.abstractmethod
    def dispose(self) -> int:
        """Cancel everything outstanding. Returns count cancelled."""
        ...


# ─── Virtual Clock ───────────────────────────────────────────────────

class VirtualScheduler(Scheduler):
    """
    Deterministic scheduler for tests and demos.

    Time only moves through advance() / run_until_idle(). Due
    continuations run in (due time, insertion order); a continuation
    scheduled while advancing runs in the same call if it falls due.
    """

    def __init__(self, start: float = DEFAULT_VIRTUAL_EPOCH):
        self._now = start
        self._queue: list[tuple[float, int, ScheduledTask]] = []
        self._ids = itertools.count(1)

    def now(self) -> float:
        return self._now

    def after(self, delay: float, fn: Callable[[], None], label: str = "") -> ScheduledTask:
        task_id = next(self._ids)
        task = ScheduledTask(task_id=task_id, label=label,
                             due_at=self._now + max(0.0, delay), fn=fn)
        heapq.heappush(self._queue, (task.due_at, task_id, task))
        return task

    def pending(self) -> list[ScheduledTask]:
        return [t for _, _, t in sorted(self._queue) if not t.cancelled]

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running everything that falls due. Returns count run."""
        target = self._now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due_at, _, task = heapq.heappop(self._queue)
            if task.cancelled:
                continue
            self._now = max(self._now, due_at)
            task.done = True
            task.fn()
            ran += 1
        self._now = max(self._now, target)
        return ran

    def run_until_idle(self, max_tasks: int = 10_000) -> int:
        """Run continuations until none remain. Returns count run."""
        ran = 0
        while self._queue:
            if ran >= max_tasks:
                raise RuntimeError(f"Scheduler did not go idle after {max_tasks} tasks")
            due_at = self._queue[0][0]
            ran += self.advance(max(0.0, due_at - self._now))
        return ran

    def dispose(self) -> int:
        count = 0
        for _, _, task in self._queue:
            if not task.cancelled:
                task.cancelled = True
                count += 1
        self._queue.clear()
        return count


# ─── Real Time ───────────────────────────────────────────────────────

class ThreadingScheduler(Scheduler):
    """Real-time scheduler. Continuations run on timer threads."""

    def __init__(self):
        self._ids = itertools.count(1)
        self._timers: dict[int, tuple[threading.Timer, ScheduledTask]] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return time.time()

    def after(self, delay: float, fn: Callable[[], None], label: str = "") -> ScheduledTask:
        task_id = next(self._ids)
        task = ScheduledTask(task_id=task_id, label=label,
                             due_at=self.now() + max(0.0, delay), fn=fn)

        def run():
            with self._lock:
                self._timers.pop(task_id, None)
            task.done = True
            try:
                fn()
            except Exception:
                logger.exception("Continuation %s (%s) raised", task_id, label)

        timer = threading.Timer(max(0.0, delay), run)
        timer.daemon = True
        with self._lock:
            self._timers[task_id] = (timer, task)
        timer.start()
        return task

    def pending(self) -> list[ScheduledTask]:
        with self._lock:
            tasks = [t for _, t in self._timers.values()]
        return sorted(tasks, key=lambda t: (t.due_at, t.task_id))

    def dispose(self) -> int:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer, task in timers:
            timer.cancel()
            task.cancelled = True
        return len(timers)
