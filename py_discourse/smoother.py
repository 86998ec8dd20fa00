"""Display-only progress animation.

The smoother follows the job's progress but never writes back to the store:
what the user sees may lag the authoritative value by one animation.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from py_discourse.models import StateChange
from py_discourse.scheduling import Scheduler, TaskHandle

LOGGER = logging.getLogger(__name__)

FRAME_TASK = "progress-frame"


def ease_out_quad(t: float) -> float:
    t = max(0.0, min(1.0, t))
    return 1.0 - (1.0 - t) ** 2


class ProgressSmoother:
    def __init__(
        self,
        scheduler: Scheduler,
        *,
        duration: float = 0.15,
        frame_interval: float = 1.0 / 60.0,
        on_frame: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._scheduler = scheduler
        self.duration = duration
        self.frame_interval = frame_interval
        self.on_frame = on_frame
        self._value = 0.0
        self._start_value = 0.0
        self._target = 0.0
        self._started_at = 0.0
        self._frame: Optional[TaskHandle] = None
        self._generation = 0
        self._lock = threading.RLock()

    @property
    def value(self) -> float:
        """Last rendered display progress."""
        return self._value

    @property
    def target(self) -> float:
        return self._target

    @property
    def animating(self) -> bool:
        return self._frame is not None and not self._frame.cancelled

    def value_at(self, now: float) -> float:
        if not self.animating or self.duration <= 0:
            return self._value
        t = (now - self._started_at) / self.duration
        if t >= 1.0:
            return self._target
        return self._start_value + (self._target - self._start_value) * ease_out_quad(t)

    def set_target(self, target: float) -> None:
        """Animate from the current on-screen value to ``target``.

        A running animation is abandoned at its current position.
        """
        with self._lock:
            now = self._scheduler.now()
            current = self.value_at(now)
            self._cancel_frame()
            self._value = current
            self._start_value = current
            self._target = target
            self._started_at = now
            self._generation += 1
            if self.duration <= 0 or current == target:
                frame = self._render(target)
            else:
                frame = None
                self._schedule_frame(self._generation)
        self._emit_frame(frame)

    def snap(self, value: float) -> None:
        with self._lock:
            self._cancel_frame()
            self._generation += 1
            self._start_value = value
            self._target = value
            frame = self._render(value)
        self._emit_frame(frame)

    def attach(self, store) -> Callable[[], None]:
        """Follow ``store`` progress changes; returns the unsubscribe callable."""

        def _on_change(change: StateChange) -> None:
            if change.kind == "reset":
                self.snap(0.0)
            elif change.progress_changed:
                self.set_target(change.snapshot.status.progress)

        return store.add_listener(_on_change)

    def close(self) -> None:
        with self._lock:
            self._cancel_frame()

    def _schedule_frame(self, generation: int) -> None:
        self._frame = self._scheduler.call_later(
            self.frame_interval, self._on_tick, generation, name=FRAME_TASK
        )

    def _on_tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            now = self._scheduler.now()
            if now - self._started_at >= self.duration:
                self._frame = None
                frame = self._render(self._target)
            else:
                frame = self._render(self.value_at(now))
                self._schedule_frame(generation)
        self._emit_frame(frame)

    def _render(self, value: float) -> Optional[float]:
        self._value = value
        return value if self.on_frame is not None else None

    def _emit_frame(self, value: Optional[float]) -> None:
        # Called without self._lock: on_frame may read the store, whose
        # listeners call set_target
        on_frame = self.on_frame
        if value is not None and on_frame is not None:
            on_frame(value)

    def _cancel_frame(self) -> None:
        if self._frame is not None:
            self._frame.cancel()
            self._frame = None
