"""Shared job state record.

All writers (channel, poller, cancellation, submission) go through
``JobStateStore`` and hold ``store.lock`` while deciding and applying an
update, so updates from different threads are serialized.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from py_discourse.errors import JobActiveError
from py_discourse.models import (
    JobPhase,
    JobSnapshot,
    JobStatus,
    LogEntry,
    StateChange,
    StatusSnapshot,
)

LOGGER = logging.getLogger(__name__)

Listener = Callable[[StateChange], None]

DEFAULT_MESSAGES = {
    JobPhase.COMPLETED: "Analysis complete",
    JobPhase.ERROR: "Analysis failed",
    JobPhase.STOPPED: "Analysis stopped",
}


class JobStateStore:
    """Single record for the one live job.

    Invariants:
    - a status with a lower ``update_seq`` than the applied one is dropped
    - while queued/processing, progress never decreases
    - terminal states (completed/error/stopped) are only left through ``reset``
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.lock = threading.RLock()
        self._clock = clock
        self._job_id: Optional[str] = None
        self._status = JobStatus()
        self._logs: List[LogEntry] = []
        self._results: Optional[Dict[str, Any]] = None
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @property
    def job_id(self) -> Optional[str]:
        return self._job_id

    @property
    def status(self) -> JobStatus:
        return self._status

    @property
    def phase(self) -> JobPhase:
        return self._status.status

    @property
    def is_active(self) -> bool:
        return self._job_id is not None and self._status.status.is_active

    @property
    def awaiting_results(self) -> bool:
        """Completed by a status snapshot whose results have not arrived yet."""
        return self._status.status == JobPhase.COMPLETED and self._results is None

    def snapshot(self) -> JobSnapshot:
        with self.lock:
            return JobSnapshot(
                job_id=self._job_id,
                status=self._status,
                logs=tuple(self._logs),
                results=dict(self._results) if self._results is not None else None,
            )

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it.

        Listeners run synchronously under ``lock`` and must not block.
        """
        with self.lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self.lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def begin(self, job_id: str) -> None:
        """Start tracking a freshly submitted job (state must be idle)."""
        if not job_id:
            raise ValueError("job_id is required")
        with self.lock:
            if self._job_id is not None:
                raise JobActiveError(f"job {self._job_id} is still tracked; reset before starting {job_id}")
            previous = self._status
            self._job_id = job_id
            self._status = JobStatus(
                status=JobPhase.QUEUED,
                progress=0.0,
                message="Queued",
                observed_at=self._clock(),
                update_seq=0,
            )
            self._logs = []
            self._results = None
            LOGGER.info("Tracking job %s", job_id)
            self._emit("begin", previous)

    def apply_status(self, job_id: str, snapshot: StatusSnapshot) -> bool:
        """Apply a full status snapshot; returns True when accepted."""
        with self.lock:
            if not self._owns(job_id):
                return False
            current = self._status
            if current.status.is_terminal:
                LOGGER.debug("Ignoring status for %s: job already %s", job_id, current.status.value)
                return False
            if snapshot.update_seq is not None:
                seq = int(snapshot.update_seq)
                if seq < current.update_seq:
                    LOGGER.debug(
                        "Dropping stale status for %s (seq %s < %s)", job_id, seq, current.update_seq
                    )
                    return False
            else:
                seq = current.update_seq + 1

            phase = snapshot.status
            progress = snapshot.progress
            if phase.is_active and current.status.is_active:
                progress = max(progress, current.progress)
            elif phase == JobPhase.COMPLETED:
                progress = 100.0

            previous = current
            self._status = JobStatus(
                status=phase,
                progress=progress,
                message=snapshot.message or DEFAULT_MESSAGES.get(phase, current.message),
                observed_at=self._clock(),
                update_seq=seq,
            )
            if phase == JobPhase.COMPLETED and snapshot.results is not None:
                self._results = dict(snapshot.results)
            self._emit("terminal" if phase.is_terminal else "status", previous)
            return True

    def append_log(self, job_id: str, entry: LogEntry) -> bool:
        with self.lock:
            if not self._owns(job_id):
                return False
            self._logs.append(entry)
            self._emit("log", self._status)
            return True

    def replace_logs(self, job_id: str, entries: Iterable[LogEntry]) -> bool:
        with self.lock:
            if not self._owns(job_id):
                return False
            self._logs = list(entries)
            self._emit("logs", self._status)
            return True

    def complete(self, job_id: str, results: Optional[Dict[str, Any]] = None, message: str = "") -> bool:
        with self.lock:
            # A "completed" status snapshot may precede the envelope carrying results
            if self._owns(job_id) and self.awaiting_results and results is not None:
                self._results = dict(results)
                self._emit("results", self._status)
                return True
            message = message or DEFAULT_MESSAGES[JobPhase.COMPLETED]
            return self._finish(job_id, JobPhase.COMPLETED, message, results)

    def fail(self, job_id: str, message: str) -> bool:
        return self._finish(job_id, JobPhase.ERROR, message or DEFAULT_MESSAGES[JobPhase.ERROR])

    def force_stopped(self, job_id: str, message: str = DEFAULT_MESSAGES[JobPhase.STOPPED]) -> bool:
        """Client-authoritative stop: allowed only while the job is active."""
        with self.lock:
            if not self._owns(job_id) or not self._status.status.is_active:
                return False
            return self._finish(job_id, JobPhase.STOPPED, message)

    def reset(self) -> Optional[str]:
        """Return to idle, dropping the job id, logs and results."""
        with self.lock:
            previous_id = self._job_id
            previous = self._status
            self._job_id = None
            self._status = JobStatus(observed_at=self._clock())
            self._logs = []
            self._results = None
            if previous_id is not None:
                LOGGER.info("Reset job %s (%s) to idle", previous_id, previous.status.value)
            self._emit("reset", previous)
            return previous_id

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _owns(self, job_id: str) -> bool:
        return self._job_id is not None and job_id == self._job_id

    def _finish(
        self,
        job_id: str,
        phase: JobPhase,
        message: str,
        results: Optional[Dict[str, Any]] = None,
    ) -> bool:
        with self.lock:
            if not self._owns(job_id) or self._status.status.is_terminal:
                return False
            previous = self._status
            progress = 100.0 if phase == JobPhase.COMPLETED else previous.progress
            self._status = JobStatus(
                status=phase,
                progress=progress,
                message=message,
                observed_at=self._clock(),
                update_seq=previous.update_seq + 1,
            )
            if results is not None:
                self._results = dict(results)
            LOGGER.info("Job %s -> %s", job_id, phase.value)
            self._emit("terminal", previous)
            return True

    def _emit(self, kind: str, previous: JobStatus) -> None:
        change = StateChange(kind=kind, snapshot=self.snapshot(), previous=previous)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                LOGGER.exception("State listener failed on %s", kind)
