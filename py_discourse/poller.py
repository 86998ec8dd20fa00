"""Adaptive status polling used after the push channel fails."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from py_discourse.errors import PollError
from py_discourse.job_state import JobStateStore
from py_discourse.models import JobPhase, StatusSnapshot
from py_discourse.scheduling import Scheduler, TaskHandle

LOGGER = logging.getLogger(__name__)

POLL_TASK = "poll"


@dataclass
class _PollLoop:
    job_id: str
    interval: float
    last_progress: Optional[float] = None
    unchanged: int = 0
    ticks: int = 0
    last_applied_tick: int = 0
    tick_started_at: float = 0.0
    next_tick: Optional[TaskHandle] = None
    cancelled: bool = False


class FallbackPoller:
    """Pull loop that owns job status while the push channel is down.

    Every tick fetches the full status and replaces the log history. The
    next tick is scheduled before the fetch starts, so a slow response only
    delays its own data. After more than ``unchanged_threshold`` ticks with
    the same progress the interval grows by ``backoff_factor``; any change
    restores the base interval right away.
    """

    def __init__(
        self,
        store: JobStateStore,
        api: Any,
        scheduler: Scheduler,
        *,
        base_interval: float = 0.5,
        backoff_factor: float = 4.0,
        unchanged_threshold: int = 3,
    ) -> None:
        self._store = store
        self._api = api
        self._scheduler = scheduler
        self.base_interval = base_interval
        self.backoff_factor = backoff_factor
        self.unchanged_threshold = unchanged_threshold
        self._loop: Optional[_PollLoop] = None
        self.loops_started = 0

    @property
    def active(self) -> bool:
        return self._loop is not None

    @property
    def job_id(self) -> Optional[str]:
        return self._loop.job_id if self._loop else None

    @property
    def interval(self) -> Optional[float]:
        return self._loop.interval if self._loop else None

    def start(self, job_id: str) -> None:
        with self._store.lock:
            self.stop()
            loop = _PollLoop(job_id=job_id, interval=self.base_interval)
            if self._store.job_id == job_id:
                loop.last_progress = self._store.status.progress
            self._loop = loop
            self.loops_started += 1
            LOGGER.info("Polling status for %s every %.2fs", job_id, loop.interval)
            loop.next_tick = self._scheduler.call_later(0.0, self._tick, loop, name=POLL_TASK)

    def stop(self) -> None:
        with self._store.lock:
            loop, self._loop = self._loop, None
            if loop is None:
                return
            loop.cancelled = True
            if loop.next_tick is not None:
                loop.next_tick.cancel()
            LOGGER.info("Stopped polling for %s after %d tick(s)", loop.job_id, loop.ticks)

    def _tick(self, loop: _PollLoop) -> None:
        with self._store.lock:
            if loop.cancelled or loop is not self._loop:
                return
            loop.ticks += 1
            tick_no = loop.ticks
            loop.tick_started_at = self._scheduler.now()
            loop.next_tick = self._scheduler.call_later(loop.interval, self._tick, loop, name=POLL_TASK)
        self._scheduler.submit(self._fetch, loop, tick_no, name=f"poll-fetch:{loop.job_id}")

    def _fetch(self, loop: _PollLoop, tick_no: int) -> None:
        if loop.cancelled:
            return
        try:
            snapshot = self._api.get_analysis_status(loop.job_id)
        except PollError as exc:
            LOGGER.warning("Status poll #%d for %s failed: %s", tick_no, loop.job_id, exc)
            return
        except Exception:
            LOGGER.exception("Status poll #%d for %s failed unexpectedly", tick_no, loop.job_id)
            return
        self._apply(loop, tick_no, snapshot)

    def _apply(self, loop: _PollLoop, tick_no: int, snapshot: StatusSnapshot) -> None:
        with self._store.lock:
            if loop.cancelled or loop is not self._loop:
                LOGGER.debug("Discarding poll #%d for %s: loop no longer active", tick_no, loop.job_id)
                return
            if tick_no < loop.last_applied_tick:
                LOGGER.debug("Discarding late poll #%d for %s", tick_no, loop.job_id)
                return
            loop.last_applied_tick = tick_no
            job_id = loop.job_id

            self._store.replace_logs(job_id, snapshot.log_entries())
            phase = snapshot.status
            if phase == JobPhase.COMPLETED:
                self._store.complete(job_id, snapshot.results or {}, snapshot.message)
                self._finish(loop)
                return
            if phase == JobPhase.ERROR:
                self._store.fail(job_id, snapshot.message)
                self._finish(loop)
                return
            if phase == JobPhase.STOPPED:
                self._store.apply_status(job_id, snapshot)
                self._finish(loop)
                return

            self._store.apply_status(job_id, snapshot)
            self._adapt_interval(loop, snapshot.progress)

    def _adapt_interval(self, loop: _PollLoop, progress: float) -> None:
        if loop.last_progress is not None and progress == loop.last_progress:
            loop.unchanged += 1
        else:
            loop.unchanged = 0
        loop.last_progress = progress

        interval = self.base_interval
        if loop.unchanged > self.unchanged_threshold:
            interval = self.base_interval * self.backoff_factor
        if interval == loop.interval:
            return
        LOGGER.debug(
            "Poll interval for %s -> %.2fs (%d unchanged tick(s))", loop.job_id, interval, loop.unchanged
        )
        loop.interval = interval
        if loop.next_tick is not None and not loop.next_tick.cancelled:
            loop.next_tick.cancel()
            delay = max(0.0, loop.tick_started_at + interval - self._scheduler.now())
            loop.next_tick = self._scheduler.call_later(delay, self._tick, loop, name=POLL_TASK)

    def _finish(self, loop: _PollLoop) -> None:
        loop.cancelled = True
        if loop.next_tick is not None:
            loop.next_tick.cancel()
        if self._loop is loop:
            self._loop = None
        LOGGER.info("Polling for %s finished after %d tick(s)", loop.job_id, loop.ticks)
