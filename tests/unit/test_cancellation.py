"""Unit tests for the client-authoritative stop."""

from __future__ import annotations

import logging

import pytest

from py_discourse.cancellation import RESET_TASK, CancellationController
from py_discourse.channel import StatusChannelManager
from py_discourse.errors import CancellationNetworkFailure
from py_discourse.models import JobPhase
from py_discourse.poller import POLL_TASK, FallbackPoller
from tests._fakes import make_status


@pytest.fixture
def wiring(store, fake_api, scheduler, channels):
    poller = FallbackPoller(store, fake_api, scheduler, base_interval=0.5)
    manager = StatusChannelManager(store, channels, on_failure=poller.start)
    controller = CancellationController(store, fake_api, manager, poller, scheduler, grace_period=2.0)
    return manager, poller, controller


def test_stop_without_job_is_noop(store, fake_api, wiring) -> None:
    _, _, controller = wiring
    assert controller.stop() is False
    assert fake_api.stop_calls == []


def test_stop_forces_stopped_and_tears_down(store, fake_api, scheduler, channels, wiring) -> None:
    manager, poller, controller = wiring
    store.begin("job-1")
    channel = manager.connect("job-1")
    channel.send("status", {"status": "processing", "progress": 30})

    assert controller.stop() is True
    assert store.phase == JobPhase.STOPPED
    assert store.status.progress == 30.0
    assert channel.closed
    assert manager.channel is None
    assert controller.pending

    scheduler.advance(0)
    assert fake_api.stop_calls == ["job-1"]


def test_stop_is_noop_while_pending(store, fake_api, scheduler, wiring) -> None:
    manager, _, controller = wiring
    store.begin("job-1")
    manager.connect("job-1")
    assert controller.stop() is True
    assert controller.stop() is False
    scheduler.advance(0)
    assert fake_api.stop_calls == ["job-1"]


def test_stop_while_polling_cancels_poll_loop(store, fake_api, scheduler, wiring) -> None:
    manager, poller, controller = wiring
    fake_api.default_status = make_status("processing", 20)
    store.begin("job-1")
    manager.connect("job-1").drop()
    assert poller.active
    scheduler.advance(0)

    controller.stop()
    assert not poller.active
    scheduler.advance(1.0)
    assert fake_api.status_calls == ["job-1"]
    assert scheduler.pending(POLL_TASK) == []


def test_late_update_after_stop_cannot_revive_job(store, channels, wiring) -> None:
    manager, _, controller = wiring
    store.begin("job-1")
    channel = manager.connect("job-1")
    controller.stop()
    # A delivery already in flight on the old channel
    manager.on_payload(channel, "message", {"type": "status", "data": {"status": "processing", "progress": 50}})
    store.apply_status("job-1", make_status("processing", 50))
    assert store.phase == JobPhase.STOPPED
    assert store.status.progress == 0.0


def test_reset_to_idle_after_grace_period(store, scheduler, wiring) -> None:
    manager, _, controller = wiring
    store.begin("job-1")
    manager.connect("job-1")
    controller.stop()

    scheduler.advance(1.9)
    assert store.phase == JobPhase.STOPPED
    scheduler.advance(0.2)
    assert store.phase == JobPhase.IDLE
    assert store.job_id is None
    assert not controller.pending


def test_network_failure_is_logged_and_treated_as_success(store, fake_api, scheduler, wiring, caplog) -> None:
    manager, _, controller = wiring
    fake_api.stop_error = CancellationNetworkFailure("connection refused", job_id="job-1")
    store.begin("job-1")
    manager.connect("job-1")
    with caplog.at_level(logging.WARNING, logger="py_discourse.cancellation"):
        assert controller.stop() is True
        scheduler.advance(0)
    assert "connection refused" in caplog.text
    assert store.phase == JobPhase.STOPPED
    scheduler.advance(2.0)
    assert store.phase == JobPhase.IDLE


def test_cancel_pending_reset(store, scheduler, wiring) -> None:
    manager, _, controller = wiring
    store.begin("job-1")
    manager.connect("job-1")
    controller.stop()
    controller.cancel_pending_reset()
    assert scheduler.pending(RESET_TASK) == []
    assert not controller.pending
    scheduler.advance(3.0)
    assert store.phase == JobPhase.STOPPED


def test_stale_reset_does_not_touch_new_job(store, scheduler, wiring) -> None:
    manager, _, controller = wiring
    store.begin("job-1")
    manager.connect("job-1")
    controller.stop()
    # Stopped job cleared early and a new one started before the timer fired
    store.reset()
    store.begin("job-2")
    scheduler.advance(3.0)
    assert store.job_id == "job-2"
    assert store.phase == JobPhase.QUEUED
