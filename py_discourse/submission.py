"""Queue advisory and job submission."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import requests
from pydantic import ValidationError

from py_discourse.channel import StatusChannelManager
from py_discourse.errors import InvalidVideoError, JobActiveError
from py_discourse.job_state import JobStateStore
from py_discourse.models import QueueState
from py_discourse.scheduling import Scheduler, TaskHandle

LOGGER = logging.getLogger(__name__)

DEFAULT_VIDEO_EXTENSIONS = (".mp4", ".avi", ".mov", ".mkv", ".wmv")
QUEUE_TASK = "queue-refresh"

ConfirmCallback = Callable[[QueueState], bool]


def fetch_queue_state(api: Any) -> Optional[QueueState]:
    """Fetch the queue advisory; failures are logged and yield None."""
    try:
        return api.fetch_queue_status()
    except requests.RequestException as exc:
        LOGGER.warning("Queue status unavailable: %s", exc)
    except (ValueError, ValidationError) as exc:
        LOGGER.warning("Queue status response unusable: %s", exc)
    return None


class QueueMonitor:
    """Refreshes the queue advisory periodically while no job is tracked."""

    def __init__(
        self,
        api: Any,
        store: JobStateStore,
        scheduler: Scheduler,
        *,
        refresh_interval: float = 30.0,
        on_update: Optional[Callable[[QueueState], None]] = None,
    ) -> None:
        self._api = api
        self._store = store
        self._scheduler = scheduler
        self.refresh_interval = refresh_interval
        self.on_update = on_update
        self.latest: Optional[QueueState] = None
        self._task: Optional[TaskHandle] = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = self._scheduler.call_later(0.0, self._tick, name=QUEUE_TASK)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def refresh(self) -> Optional[QueueState]:
        state = fetch_queue_state(self._api)
        if state is not None:
            self.latest = state
            if self.on_update is not None:
                self.on_update(state)
        return state

    def _tick(self) -> None:
        if self._task is None:
            return
        if self._store.job_id is None:
            self.refresh()
        if self._task is not None:
            self._task = self._scheduler.call_later(self.refresh_interval, self._tick, name=QUEUE_TASK)


class SubmissionGate:
    """Admits a new job: validate, consult the queue, upload, then connect.

    A busy queue (``warning_level`` other than none) is put to ``confirm``;
    declining returns ``None`` before anything is uploaded. Without a
    ``confirm`` callback the advisory is logged and the upload proceeds.
    """

    def __init__(
        self,
        api: Any,
        store: JobStateStore,
        channel_manager: StatusChannelManager,
        *,
        confirm: Optional[ConfirmCallback] = None,
        accepted_extensions: Iterable[str] = DEFAULT_VIDEO_EXTENSIONS,
    ) -> None:
        self._api = api
        self._store = store
        self._channels = channel_manager
        self.confirm = confirm
        self.accepted_extensions = tuple(ext.lower() for ext in accepted_extensions)
        self.upload_progress: Optional[int] = None
        self.last_queue_state: Optional[QueueState] = None

    def validate_video(self, path: Path | str) -> Path:
        video = Path(path)
        if video.suffix.lower() not in self.accepted_extensions:
            allowed = ", ".join(self.accepted_extensions)
            raise InvalidVideoError(f"{video.name}: unsupported file type (expected one of {allowed})")
        if not video.is_file():
            raise InvalidVideoError(f"{video}: file not found")
        return video

    def submit(
        self,
        path: Path | str,
        on_upload_progress: Optional[Callable[[int], None]] = None,
    ) -> Optional[str]:
        """Upload ``path`` and start tracking it.

        Returns the job id, or None when the user declined a queue warning.

        Raises:
            InvalidVideoError: not an accepted video file
            JobActiveError: a job is already tracked
            SubmissionError: the upload failed
        """
        video = self.validate_video(path)
        self._ensure_idle()

        queue_state = fetch_queue_state(self._api)
        self.last_queue_state = queue_state
        if queue_state is not None and queue_state.needs_confirmation:
            if self.confirm is None:
                LOGGER.warning(
                    "Queue is busy (%s): %s", queue_state.warning_level.value, queue_state.warning_message
                )
            elif not self.confirm(queue_state):
                LOGGER.info("Submission of %s declined at queue warning", video.name)
                return None

        def _progress(percent: int) -> None:
            self.upload_progress = percent
            if on_upload_progress is not None:
                on_upload_progress(percent)

        self.upload_progress = 0
        try:
            job_id = self._api.upload_video(video, on_progress=_progress)
        finally:
            if self.upload_progress != 100:
                self.upload_progress = None

        with self._store.lock:
            self._ensure_idle()
            self._store.begin(job_id)
            self._channels.connect(job_id)
        LOGGER.info("Submitted %s as %s", video.name, job_id)
        return job_id

    def _ensure_idle(self) -> None:
        job_id = self._store.job_id
        if job_id is not None:
            raise JobActiveError(f"job {job_id} is {self._store.phase.value}; start a new job first")
