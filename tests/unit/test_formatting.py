from __future__ import annotations

from py_discourse.formatting import PROCESSING_STEPS, format_est, format_log_line, processing_steps
from py_discourse.models import LogEntry

# 2024-01-15 15:30:45 UTC
_TS = 1705332645.0


def test_format_est_converts_to_eastern() -> None:
    assert format_est(_TS) == "2024-01-15 10:30:45 AM ET"
    assert format_est("2024-01-15T15:30:45Z") == "2024-01-15 10:30:45 AM ET"


def test_format_est_other_timezone() -> None:
    assert format_est(_TS, "UTC") == "2024-01-15 03:30:45 PM UTC"


def test_format_est_bad_input_is_blank() -> None:
    assert format_est(None) == ""
    assert format_est("yesterday") == ""
    assert format_est(_TS, "Mars/Olympus") == ""


def test_format_log_line() -> None:
    line = format_log_line(LogEntry(_TS, 42.0, "Analysing speech"))
    assert line == "[2024-01-15 10:30:45 AM ET]  42.0% Analysing speech"


def test_processing_steps_states() -> None:
    states = [step["state"] for step in processing_steps(35)]
    assert states == ["completed", "active", "pending", "pending", "pending"]

    states = [step["state"] for step in processing_steps(0)]
    assert states == ["pending"] * len(PROCESSING_STEPS)

    steps = processing_steps(100)
    assert [step["state"] for step in steps] == ["completed", "completed", "completed", "completed", "active"]
    assert steps[-1]["label"] == "Finalising analysis report"


def test_step_boundaries() -> None:
    assert processing_steps(10)[0]["state"] == "active"
    assert processing_steps(29.9)[0]["state"] == "active"
    assert processing_steps(30)[0]["state"] == "completed"
