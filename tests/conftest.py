import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from py_discourse.job_state import JobStateStore  # noqa: E402
from py_discourse.scheduling import VirtualScheduler  # noqa: E402
from tests._fakes import ChannelRecorder, FakeAPI  # noqa: E402


@pytest.fixture
def scheduler():
    sched = VirtualScheduler(start=1000.0)
    yield sched
    sched.close()


@pytest.fixture
def store(scheduler):
    return JobStateStore(clock=scheduler.now)


@pytest.fixture
def fake_api():
    return FakeAPI()


@pytest.fixture
def channels():
    return ChannelRecorder()
