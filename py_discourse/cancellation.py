"""User-initiated stop of the live analysis job."""

from __future__ import annotations

import logging
from typing import Any, Optional

from py_discourse.channel import StatusChannelManager
from py_discourse.errors import CancellationNetworkFailure
from py_discourse.job_state import JobStateStore
from py_discourse.models import JobPhase
from py_discourse.poller import FallbackPoller
from py_discourse.scheduling import Scheduler, TaskHandle

LOGGER = logging.getLogger(__name__)

RESET_TASK = "stop-reset"


class CancellationController:
    """Client-authoritative stop.

    ``stop()`` marks the job stopped and tears down the channel and poller
    before anything else can run, so an in-flight update cannot revive the
    job. The server is told in the background; whether that request lands
    or not, the job resets to idle after ``grace_period`` seconds.
    """

    def __init__(
        self,
        store: JobStateStore,
        api: Any,
        channel_manager: StatusChannelManager,
        poller: FallbackPoller,
        scheduler: Scheduler,
        *,
        grace_period: float = 2.0,
    ) -> None:
        self._store = store
        self._api = api
        self._channels = channel_manager
        self._poller = poller
        self._scheduler = scheduler
        self.grace_period = grace_period
        self._reset_task: Optional[TaskHandle] = None
        self._pending_job: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self._pending_job is not None

    def stop(self) -> bool:
        with self._store.lock:
            if self.pending or not self._store.is_active:
                return False
            job_id = self._store.job_id
            if job_id is None or not self._store.force_stopped(job_id):
                return False
            self._channels.disconnect()
            self._poller.stop()
            self._pending_job = job_id
            self._reset_task = self._scheduler.call_later(
                self.grace_period, self._reset, job_id, name=RESET_TASK
            )
            LOGGER.info("Stopping %s; reset to idle in %.1fs", job_id, self.grace_period)
        self._scheduler.submit(self._send_stop, job_id, name=f"stop:{job_id}")
        return True

    def cancel_pending_reset(self) -> None:
        with self._store.lock:
            if self._reset_task is not None:
                self._reset_task.cancel()
            self._reset_task = None
            self._pending_job = None

    def _send_stop(self, job_id: str) -> None:
        try:
            acknowledged = self._api.stop_analysis(job_id)
        except CancellationNetworkFailure as exc:
            LOGGER.warning("Stop request for %s failed, job stays stopped locally: %s", job_id, exc)
            return
        if acknowledged:
            LOGGER.info("Server acknowledged stop of %s", job_id)
        else:
            LOGGER.warning("Server did not confirm stop of %s", job_id)

    def _reset(self, job_id: str) -> None:
        with self._store.lock:
            if self._pending_job != job_id:
                return
            self._reset_task = None
            self._pending_job = None
            if self._store.job_id != job_id or self._store.phase != JobPhase.STOPPED:
                return
            self._store.reset()
