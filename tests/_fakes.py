"""Scripted stand-ins for the analysis service and the push channel."""

from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List, Optional

from py_discourse.channel import ChannelObserver, MessageChannel
from py_discourse.errors import ChannelError, PollError
from py_discourse.models import QueueState, StatusSnapshot


def make_status(
    status: str,
    progress: float = 0.0,
    message: str = "",
    *,
    logs: Optional[List[Any]] = None,
    results: Optional[Dict[str, Any]] = None,
    seq: Optional[int] = None,
) -> StatusSnapshot:
    payload: Dict[str, Any] = {
        "status": status,
        "progress": progress,
        "message": message,
        "log_messages": logs or [],
        "results": results,
    }
    if seq is not None:
        payload["seq"] = seq
    return StatusSnapshot.model_validate(payload)


class FakeAPI:
    """In-memory service: queue, upload, status polling and stop."""

    def __init__(self) -> None:
        self.queue_state = QueueState()
        self.queue_error: Optional[Exception] = None
        self.queue_calls = 0

        self.upload_result = "job-1"
        self.upload_error: Optional[Exception] = None
        self.upload_calls: List[Any] = []

        self.status_responses: Deque[Any] = deque()
        self.default_status: Optional[StatusSnapshot] = None
        self.status_calls: List[str] = []

        self.stop_result = True
        self.stop_error: Optional[Exception] = None
        self.stop_calls: List[str] = []

    def fetch_queue_status(self) -> QueueState:
        self.queue_calls += 1
        if self.queue_error is not None:
            raise self.queue_error
        return self.queue_state

    def upload_video(self, path, *, on_progress=None, fields=None) -> str:
        self.upload_calls.append(path)
        if self.upload_error is not None:
            if on_progress is not None:
                on_progress(0)
            raise self.upload_error
        if on_progress is not None:
            for percent in (0, 40, 100):
                on_progress(percent)
        return self.upload_result

    def get_analysis_status(self, job_id: str) -> StatusSnapshot:
        self.status_calls.append(job_id)
        item = self.status_responses.popleft() if self.status_responses else self.default_status
        if callable(item):
            item = item()
        if item is None:
            raise PollError("no status scripted", job_id=job_id)
        if isinstance(item, Exception):
            raise item
        return item

    def stop_analysis(self, job_id: str) -> bool:
        self.stop_calls.append(job_id)
        if self.stop_error is not None:
            raise self.stop_error
        return self.stop_result

    def close(self) -> None:
        return None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class ScriptedChannel(MessageChannel):
    """Channel whose traffic is pushed by the test."""

    def __init__(self, job_id: str) -> None:
        super().__init__(job_id)
        self.opened = False

    def open(self, observer: ChannelObserver) -> None:
        self._observer = observer
        self.opened = True

    def send(self, kind: str, data: Any = None, *, event_name: str = "message") -> None:
        self._deliver(event_name, {"type": kind, "data": data})

    def send_raw(self, payload: Any, *, event_name: str = "message") -> None:
        self._deliver(event_name, payload)

    def drop(self, message: str = "connection reset") -> None:
        self._fail(ChannelError(message, job_id=self.job_id))


class ChannelRecorder:
    """Channel factory that keeps every channel it creates."""

    def __init__(self) -> None:
        self.created: List[ScriptedChannel] = []

    def __call__(self, job_id: str) -> ScriptedChannel:
        channel = ScriptedChannel(job_id)
        self.created.append(channel)
        return channel

    @property
    def last(self) -> ScriptedChannel:
        return self.created[-1]

    @property
    def live(self) -> List[ScriptedChannel]:
        return [channel for channel in self.created if not channel.closed]
