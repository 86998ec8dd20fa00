"""Push channel ownership and envelope demultiplexing."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Protocol

import requests

from py_discourse.envelopes import (
    CompleteEnvelope,
    ConnectedEnvelope,
    Envelope,
    ErrorEnvelope,
    LogEnvelope,
    StatusEnvelope,
    parse_envelope,
)
from py_discourse.errors import ChannelError, MalformedEnvelopeError, describe_error
from py_discourse.job_state import JobStateStore
from py_discourse.scheduling import Scheduler, TaskHandle
from py_discourse.sse import iter_sse_events

LOGGER = logging.getLogger(__name__)


class ChannelObserver(Protocol):
    def on_payload(self, channel: "MessageChannel", event_name: str, payload: Dict[str, Any]) -> None: ...

    def on_channel_error(self, channel: "MessageChannel", exc: Exception) -> None: ...


class MessageChannel(ABC):
    """One push channel for one job id.

    Subclasses call ``_deliver`` for each raw envelope and ``_fail`` once on
    transport failure; both are no-ops after ``close()``.
    """

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self._observer: Optional[ChannelObserver] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def open(self, observer: ChannelObserver) -> None:
        """Start delivering envelopes to ``observer``."""

    def close(self) -> None:
        self._closed = True

    def _deliver(self, event_name: str, payload: Dict[str, Any]) -> None:
        if self._closed or self._observer is None:
            return
        self._observer.on_payload(self, event_name, payload)

    def _fail(self, exc: Exception) -> None:
        if self._closed or self._observer is None:
            return
        self._observer.on_channel_error(self, exc)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"{type(self).__name__}({self.job_id!r}, {state})"


class SSEMessageChannel(MessageChannel):
    """Server-sent events channel read on a background task."""

    def __init__(self, job_id: str, api: Any, scheduler: Scheduler) -> None:
        super().__init__(job_id)
        self._api = api
        self._scheduler = scheduler
        self._task: Optional[TaskHandle] = None
        self._response: Optional[requests.Response] = None

    def open(self, observer: ChannelObserver) -> None:
        self._observer = observer
        self._task = self._scheduler.submit(self._read, name=f"sse:{self.job_id}")

    def _read(self) -> None:
        url = f"/analysis-stream/{self.job_id}"
        try:
            response = self._api.open_status_stream(self.job_id)
            url = response.url or url
            self._response = response
            if self._closed:
                response.close()
                return
            for event_name, payload in iter_sse_events(response):
                if self._closed:
                    break
                self._deliver(event_name, payload)
        except requests.RequestException as exc:
            self._fail(ChannelError(describe_error(url, exc), job_id=self.job_id))
            return
        except Exception as exc:
            # Closing the response from another thread can surface as a
            # non-requests error inside iter_lines
            if self._closed:
                return
            self._fail(ChannelError(f"{url} -> {exc}", job_id=self.job_id))
            return
        self._fail(ChannelError(f"{url} -> stream ended without a terminal envelope", job_id=self.job_id))

    def close(self) -> None:
        super().close()
        if self._task is not None:
            self._task.cancel()
        if self._response is not None:
            self._response.close()


ChannelFactory = Callable[[str], MessageChannel]


class StatusChannelManager:
    """Owns the single live push channel and applies its envelopes to the store.

    ``connect`` returns the channel handle; superseded channels are closed and
    anything they still deliver is ignored. On transport failure the channel
    reference is dropped first, then ``on_failure(job_id)`` runs once.
    """

    def __init__(
        self,
        store: JobStateStore,
        channel_factory: ChannelFactory,
        on_failure: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._store = store
        self._factory = channel_factory
        self.on_failure = on_failure
        self._channel: Optional[MessageChannel] = None

    @property
    def channel(self) -> Optional[MessageChannel]:
        return self._channel

    @property
    def active(self) -> bool:
        return self._channel is not None and not self._channel.closed

    def connect(self, job_id: str) -> MessageChannel:
        with self._store.lock:
            current = self._channel
            if current is not None and current.job_id == job_id and not current.closed:
                return current
            self.disconnect()
            channel = self._factory(job_id)
            self._channel = channel
            LOGGER.info("Opening status channel for %s", job_id)
            channel.open(self)
            return channel

    def disconnect(self) -> None:
        with self._store.lock:
            channel, self._channel = self._channel, None
            if channel is not None:
                LOGGER.debug("Closing status channel for %s", channel.job_id)
                channel.close()

    # ------------------------------------------------------------------
    # ChannelObserver
    # ------------------------------------------------------------------

    def on_payload(self, channel: MessageChannel, event_name: str, payload: Dict[str, Any]) -> None:
        with self._store.lock:
            if channel is not self._channel:
                LOGGER.debug("Dropping envelope from superseded channel %r", channel)
                return
            try:
                envelope = parse_envelope(payload, event_name=event_name)
            except MalformedEnvelopeError as exc:
                LOGGER.warning("Dropping malformed envelope for %s: %s", channel.job_id, exc)
                return
            self._dispatch(channel, envelope)

    def on_channel_error(self, channel: MessageChannel, exc: Exception) -> None:
        with self._store.lock:
            if channel is not self._channel:
                return
            self._channel = None
            channel.close()
            job_id = channel.job_id
            if self._store.job_id == job_id and self._store.awaiting_results:
                # Completed by a status envelope; the results still have to be fetched
                LOGGER.info("Status channel for %s failed before results arrived; polling for them", job_id)
                if self.on_failure is not None:
                    self.on_failure(job_id)
                return
            if self._store.job_id != job_id or not self._store.is_active:
                LOGGER.info("Status channel for %s closed after job left active state", job_id)
                return
            LOGGER.info("Status channel for %s failed (%s); falling back to polling", job_id, exc)
            if self.on_failure is not None:
                self.on_failure(job_id)

    def _dispatch(self, channel: MessageChannel, envelope: Envelope) -> None:
        job_id = channel.job_id
        if isinstance(envelope, LogEnvelope):
            self._store.append_log(job_id, envelope.entry)
        elif isinstance(envelope, StatusEnvelope):
            self._store.apply_status(job_id, envelope.snapshot)
        elif isinstance(envelope, CompleteEnvelope):
            self._store.complete(job_id, envelope.results)
            self._close(channel)
        elif isinstance(envelope, ErrorEnvelope):
            self._store.fail(job_id, envelope.message)
            self._close(channel)
        elif isinstance(envelope, ConnectedEnvelope):
            LOGGER.debug("Status channel for %s acknowledged", job_id)
        else:  # pragma: no cover - exhaustive over Envelope
            raise TypeError(f"unhandled envelope {envelope!r}")

    def _close(self, channel: MessageChannel) -> None:
        if self._channel is channel:
            self._channel = None
        channel.close()
