"""Wires the job-sync components into one client session.

Example:
    with AnalysisSession(load_config()) as session:
        job_id = session.submit("lesson.mp4", on_upload_progress=print)
        snapshot = session.wait()
        print(snapshot.results)
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from py_discourse.api import AnalysisAPI
from py_discourse.cancellation import CancellationController
from py_discourse.channel import ChannelFactory, SSEMessageChannel, StatusChannelManager
from py_discourse.config import SyncConfig
from py_discourse.errors import JobActiveError, ServerReportedError
from py_discourse.job_state import JobStateStore
from py_discourse.models import AnalysisResults, JobPhase, JobSnapshot, StateChange
from py_discourse.poller import FallbackPoller
from py_discourse.scheduling import Scheduler, TaskHandle, ThreadScheduler
from py_discourse.smoother import ProgressSmoother
from py_discourse.submission import ConfirmCallback, QueueMonitor, SubmissionGate

LOGGER = logging.getLogger(__name__)

SubmitCallback = Callable[[Optional[str], Optional[Exception]], None]


class AnalysisSession:
    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        *,
        api: Any = None,
        scheduler: Optional[Scheduler] = None,
        confirm: Optional[ConfirmCallback] = None,
        channel_factory: Optional[ChannelFactory] = None,
        on_progress_frame: Optional[Callable[[float], None]] = None,
        watch_queue: bool = True,
    ) -> None:
        self.config = config or SyncConfig()
        self._owns_api = api is None
        self.api = api or AnalysisAPI(
            self.config.api_base,
            connect_timeout=self.config.connect_timeout_s,
            request_timeout=self.config.request_timeout_s,
            upload_timeout=self.config.upload_timeout_s,
        )
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or ThreadScheduler()

        self.store = JobStateStore()
        self.poller = FallbackPoller(
            self.store,
            self.api,
            self.scheduler,
            base_interval=self.config.poll_interval_s,
            backoff_factor=self.config.poll_backoff_factor,
            unchanged_threshold=self.config.poll_unchanged_threshold,
        )
        self.channels = StatusChannelManager(
            self.store,
            channel_factory or self._open_sse_channel,
            on_failure=self.poller.start,
        )
        self.smoother = ProgressSmoother(
            self.scheduler,
            duration=self.config.smoothing_duration_s,
            frame_interval=self.config.frame_interval_s,
            on_frame=on_progress_frame,
        )
        self.cancellation = CancellationController(
            self.store,
            self.api,
            self.channels,
            self.poller,
            self.scheduler,
            grace_period=self.config.stop_grace_s,
        )
        self.gate = SubmissionGate(
            self.api,
            self.store,
            self.channels,
            confirm=confirm,
            accepted_extensions=self.config.accepted_extensions,
        )
        self.queue = QueueMonitor(
            self.api, self.store, self.scheduler, refresh_interval=self.config.queue_refresh_s
        )

        self._settled = threading.Event()
        self._settled.set()
        self._unsubscribe = [
            self.smoother.attach(self.store),
            self.store.add_listener(self._track_settled),
        ]
        if watch_queue:
            self.queue.start()

    def __enter__(self) -> "AnalysisSession":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _open_sse_channel(self, job_id: str) -> SSEMessageChannel:
        return SSEMessageChannel(job_id, self.api, self.scheduler)

    def _track_settled(self, change: StateChange) -> None:
        if change.kind == "begin":
            self._settled.clear()
        elif change.kind in ("results", "reset"):
            self._settled.set()
        elif change.kind == "terminal":
            snap = change.snapshot
            if not (snap.phase == JobPhase.COMPLETED and snap.results is None):
                self._settled.set()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit(
        self,
        path: Path | str,
        on_upload_progress: Optional[Callable[[int], None]] = None,
    ) -> Optional[str]:
        return self.gate.submit(path, on_upload_progress)

    def submit_async(
        self,
        path: Path | str,
        on_upload_progress: Optional[Callable[[int], None]] = None,
        on_done: Optional[SubmitCallback] = None,
    ) -> TaskHandle:
        """Run ``submit`` on a background task; ``on_done(job_id, error)`` reports the outcome."""

        def _run() -> None:
            try:
                job_id = self.gate.submit(path, on_upload_progress)
            except Exception as exc:
                LOGGER.warning("Background submission of %s failed: %s", path, exc)
                if on_done is not None:
                    on_done(None, exc)
                return
            if on_done is not None:
                on_done(job_id, None)

        return self.scheduler.submit(_run, name="submit")

    def stop(self) -> bool:
        return self.cancellation.stop()

    def start_new_job(self) -> Optional[str]:
        """Clear a finished job so another can be submitted; returns the cleared id."""
        with self.store.lock:
            if self.store.is_active:
                raise JobActiveError(f"job {self.store.job_id} is still {self.store.phase.value}")
            self.cancellation.cancel_pending_reset()
            self.channels.disconnect()
            self.poller.stop()
            return self.store.reset()

    def snapshot(self) -> JobSnapshot:
        return self.store.snapshot()

    @property
    def display_progress(self) -> float:
        return self.smoother.value

    def results(self) -> Optional[AnalysisResults]:
        snap = self.store.snapshot()
        if snap.results is None:
            return None
        return AnalysisResults.model_validate(snap.results)

    def wait(self, timeout: Optional[float] = None) -> JobSnapshot:
        """Block until the tracked job settles.

        Raises:
            TimeoutError: the job did not settle within ``timeout``
            ServerReportedError: the server reported the job as failed
        """
        if not self._settled.wait(timeout):
            raise TimeoutError(f"job {self.store.job_id} still {self.store.phase.value} after {timeout}s")
        snap = self.store.snapshot()
        if snap.phase == JobPhase.ERROR:
            raise ServerReportedError(snap.status.message, job_id=snap.job_id)
        return snap

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self.queue.stop()
        self.smoother.close()
        self.cancellation.cancel_pending_reset()
        self.channels.disconnect()
        self.poller.stop()
        if self._owns_scheduler:
            self.scheduler.close()
        if self._owns_api:
            self.api.close()
