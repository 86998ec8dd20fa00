"""Schedulable tasks with cancellation handles.

Timers (poll ticks, animation frames, delayed resets) and background network
calls are all expressed through a ``Scheduler`` so that production code runs
on threads while tests advance virtual time deterministically.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Set, Tuple

LOGGER = logging.getLogger(__name__)


class TaskHandle:
    """Cancellation token for a scheduled task."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._cancelled = False
        self._timer: Optional[threading.Timer] = None
        self._on_cancel: Optional[Callable[["TaskHandle"], None]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        if self._on_cancel is not None:
            self._on_cancel(self)

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "armed"
        return f"TaskHandle({self.name!r}, {state})"


class Scheduler(ABC):
    @abstractmethod
    def now(self) -> float:
        """Monotonic seconds used for intervals and animation."""

    @abstractmethod
    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any, name: str = "") -> TaskHandle:
        """Run ``fn(*args)`` after ``delay`` seconds unless cancelled."""

    @abstractmethod
    def submit(self, fn: Callable[..., Any], *args: Any, name: str = "") -> TaskHandle:
        """Run ``fn(*args)`` as soon as possible without blocking the caller."""

    def close(self) -> None:
        return None


class ThreadScheduler(Scheduler):
    """Wall-clock scheduler backed by daemon threads."""

    def __init__(self) -> None:
        self._handles: Set[TaskHandle] = set()
        self._lock = threading.Lock()
        self._closed = False

    def now(self) -> float:
        return time.monotonic()

    @property
    def outstanding(self) -> int:
        """Tasks scheduled but neither run nor cancelled."""
        with self._lock:
            return len(self._handles)

    def _run(self, handle: TaskHandle, fn: Callable[..., Any], args: Tuple[Any, ...]) -> None:
        self._discard(handle)
        if handle.cancelled:
            return
        try:
            fn(*args)
        except Exception:
            LOGGER.exception("Scheduled task %s failed", handle.name or fn)

    def _discard(self, handle: TaskHandle) -> None:
        with self._lock:
            self._handles.discard(handle)

    def _track(self, handle: TaskHandle) -> None:
        handle._on_cancel = self._discard
        with self._lock:
            closed = self._closed
            if not closed:
                self._handles.add(handle)
        if closed:
            handle.cancel()

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any, name: str = "") -> TaskHandle:
        handle = TaskHandle(name)
        self._track(handle)
        if handle.cancelled:
            return handle
        timer = threading.Timer(max(delay, 0.0), self._run, args=(handle, fn, args))
        timer.daemon = True
        handle._timer = timer
        timer.start()
        return handle

    def submit(self, fn: Callable[..., Any], *args: Any, name: str = "") -> TaskHandle:
        handle = TaskHandle(name)
        self._track(handle)
        if handle.cancelled:
            return handle
        worker = threading.Thread(
            target=self._run,
            args=(handle, fn, args),
            name=name or "py-discourse-task",
            daemon=True,
        )
        worker.start()
        return handle

    def close(self) -> None:
        with self._lock:
            self._closed = True
            handles, self._handles = self._handles, set()
        for handle in handles:
            handle.cancel()


class VirtualScheduler(Scheduler):
    """Deterministic scheduler driven by ``advance()``.

    Submitted tasks run at the current virtual instant, in submission order,
    the next time time is advanced (``advance(0)`` drains them).
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: List[Tuple[float, int, TaskHandle, Callable[..., Any], Tuple[Any, ...]]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any, name: str = "") -> TaskHandle:
        handle = TaskHandle(name)
        due = self._now + max(delay, 0.0)
        heapq.heappush(self._queue, (due, next(self._counter), handle, fn, args))
        return handle

    def submit(self, fn: Callable[..., Any], *args: Any, name: str = "") -> TaskHandle:
        return self.call_later(0.0, fn, *args, name=name)

    def advance(self, seconds: float) -> int:
        """Move virtual time forward, running every task that falls due.

        Returns the number of tasks executed.
        """
        target = self._now + max(seconds, 0.0)
        executed = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, fn, args = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            if handle.cancelled:
                continue
            fn(*args)
            executed += 1
        self._now = target
        return executed

    def run_pending(self) -> int:
        return self.advance(0.0)

    def pending(self, name: Optional[str] = None) -> List[TaskHandle]:
        handles = [entry[2] for entry in sorted(self._queue) if not entry[2].cancelled]
        if name is None:
            return handles
        return [handle for handle in handles if handle.name == name]

    def next_due(self, name: Optional[str] = None) -> Optional[float]:
        for due, _, handle, _, _ in sorted(self._queue):
            if handle.cancelled:
                continue
            if name is None or handle.name == name:
                return due
        return None

    def close(self) -> None:
        for entry in self._queue:
            entry[2].cancel()
        self._queue.clear()
