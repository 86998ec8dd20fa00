"""Unit tests for the adaptive fallback poller."""

from __future__ import annotations

import logging

import pytest

from py_discourse.errors import PollError
from py_discourse.models import JobPhase
from py_discourse.poller import POLL_TASK, FallbackPoller
from py_discourse.scheduling import TaskHandle, VirtualScheduler
from py_discourse.job_state import JobStateStore
from tests._fakes import make_status


class _HeldFetchScheduler(VirtualScheduler):
    """Holds poll fetches so the test decides when (and in which order) they finish."""

    def __init__(self) -> None:
        super().__init__()
        self.held = []

    def submit(self, fn, *args, name: str = "") -> TaskHandle:
        if name.startswith("poll-fetch"):
            self.held.append((fn, args))
            return TaskHandle(name)
        return super().submit(fn, *args, name=name)


@pytest.fixture
def poller(store, fake_api, scheduler):
    store.begin("job-1")
    return FallbackPoller(store, fake_api, scheduler, base_interval=0.5)


def test_first_tick_runs_immediately_and_replaces_logs(store, fake_api, scheduler, poller) -> None:
    fake_api.default_status = make_status(
        "processing",
        25,
        "Speech",
        logs=[{"message": "a", "progress": 10, "timestamp": 1.0}, {"message": "b", "progress": 25, "timestamp": 2.0}],
    )
    poller.start("job-1")
    scheduler.advance(0)
    assert fake_api.status_calls == ["job-1"]
    assert store.status.progress == 25.0
    assert [e.message for e in store.snapshot().logs] == ["a", "b"]

    fake_api.default_status = make_status("processing", 30, logs=[{"message": "c", "timestamp": 3.0}])
    scheduler.advance(0.5)
    assert [e.message for e in store.snapshot().logs] == ["c"]


def test_backs_off_after_four_unchanged_polls(store, fake_api, scheduler, poller) -> None:
    store.apply_status("job-1", make_status("processing", 10))
    fake_api.default_status = make_status("processing", 10)
    poller.start("job-1")

    scheduler.advance(0)
    for _ in range(3):
        assert poller.interval == 0.5
        scheduler.advance(0.5)
    # four unchanged polls at t=1000, 1000.5, 1001, 1001.5
    assert len(fake_api.status_calls) == 4
    assert poller.interval == 2.0
    assert scheduler.next_due(POLL_TASK) == pytest.approx(1003.5)

    scheduler.advance(1.5)
    assert len(fake_api.status_calls) == 4
    scheduler.advance(0.5)
    assert len(fake_api.status_calls) == 5


def test_change_restores_base_interval_immediately(store, fake_api, scheduler, poller) -> None:
    store.apply_status("job-1", make_status("processing", 10))
    fake_api.default_status = make_status("processing", 10)
    poller.start("job-1")
    scheduler.advance(0)
    scheduler.advance(1.5)
    assert poller.interval == 2.0

    fake_api.default_status = make_status("processing", 15)
    scheduler.advance(2.0)
    assert poller.interval == 0.5
    assert scheduler.next_due(POLL_TASK) == pytest.approx(1004.0)


def test_completed_stores_results_and_stops(store, fake_api, scheduler, poller) -> None:
    fake_api.default_status = make_status("completed", 100, results={"overall_score": 84})
    poller.start("job-1")
    scheduler.advance(0)
    snap = store.snapshot()
    assert snap.phase == JobPhase.COMPLETED
    assert snap.results == {"overall_score": 84}
    assert not poller.active
    assert scheduler.pending(POLL_TASK) == []
    scheduler.advance(10)
    assert len(fake_api.status_calls) == 1


def test_error_surfaces_message_and_stops(store, fake_api, scheduler, poller) -> None:
    fake_api.default_status = make_status("error", 60, "Transcription failed")
    poller.start("job-1")
    scheduler.advance(0)
    assert store.phase == JobPhase.ERROR
    assert store.status.message == "Transcription failed"
    assert not poller.active


def test_server_stopped_is_applied_and_stops(store, fake_api, scheduler, poller) -> None:
    fake_api.default_status = make_status("stopped", 40, "Stopped by user")
    poller.start("job-1")
    scheduler.advance(0)
    assert store.phase == JobPhase.STOPPED
    assert not poller.active


def test_poll_failures_are_logged_and_loop_continues(store, fake_api, scheduler, poller, caplog) -> None:
    fake_api.status_responses.extend(
        [PollError("boom", job_id="job-1"), make_status("processing", 55)]
    )
    with caplog.at_level(logging.WARNING, logger="py_discourse.poller"):
        poller.start("job-1")
        scheduler.advance(0)
        assert store.status.progress == 0.0
        scheduler.advance(0.5)
    assert store.status.progress == 55.0
    assert "boom" in caplog.text
    assert poller.active


def test_start_replaces_existing_loop(store, fake_api, scheduler, poller) -> None:
    fake_api.default_status = make_status("processing", 5)
    poller.start("job-1")
    poller.start("job-1")
    assert len(scheduler.pending(POLL_TASK)) == 1
    assert poller.loops_started == 2
    scheduler.advance(0)
    assert fake_api.status_calls == ["job-1"]


def test_stop_cancels_future_ticks(store, fake_api, scheduler, poller) -> None:
    fake_api.default_status = make_status("processing", 5)
    poller.start("job-1")
    scheduler.advance(0)
    poller.stop()
    scheduler.advance(5)
    assert fake_api.status_calls == ["job-1"]
    assert not poller.active


def test_slow_fetch_does_not_delay_next_tick(fake_api) -> None:
    held = _HeldFetchScheduler()
    store = JobStateStore(clock=held.now)
    store.begin("job-1")
    poller = FallbackPoller(store, fake_api, held, base_interval=0.5)
    poller.start("job-1")
    held.advance(0)
    held.advance(1.5)
    assert len(held.held) == 4
    assert fake_api.status_calls == []


def test_older_tick_landing_late_is_discarded(fake_api) -> None:
    held = _HeldFetchScheduler()
    store = JobStateStore(clock=held.now)
    store.begin("job-1")
    poller = FallbackPoller(store, fake_api, held, base_interval=0.5)
    poller.start("job-1")
    held.advance(0)
    held.advance(0.5)
    first, second = held.held

    fake_api.default_status = make_status(
        "processing", 40, "newer", logs=[{"message": "a", "timestamp": 1.0}, {"message": "b", "timestamp": 2.0}]
    )
    second[0](*second[1])
    fake_api.default_status = make_status("processing", 20, "older", logs=[{"message": "a", "timestamp": 1.0}])
    first[0](*first[1])

    assert store.status.message == "newer"
    assert [e.message for e in store.snapshot().logs] == ["a", "b"]


def test_in_flight_response_after_stop_is_discarded(fake_api) -> None:
    held = _HeldFetchScheduler()
    store = JobStateStore(clock=held.now)
    store.begin("job-1")
    poller = FallbackPoller(store, fake_api, held, base_interval=0.5)
    poller.start("job-1")
    held.advance(0)
    poller.stop()

    fake_api.default_status = make_status("processing", 50)
    fn, args = held.held[0]
    fn(*args)
    assert store.status.progress == 0.0
    assert fake_api.status_calls == []
