"""Presentation helpers: timestamps, log lines and processing steps."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from py_discourse.models import LogEntry

_TZ_EST = ZoneInfo("America/New_York")

# (minimum progress, label)
PROCESSING_STEPS = (
    (10, "Extracting audio and video components"),
    (30, "Analysing speech with Whisper AI"),
    (60, "Analysing gestures with GPT-4 Vision"),
    (80, "Generating pedagogical insights"),
    (95, "Finalising analysis report"),
)
_STEP_SPAN = 20


def format_est(ts: float | str | None, tz: Optional[str] = None) -> str:
    """Format timestamp in the display timezone (America/New_York by default)."""
    if ts is None:
        return ""
    try:
        zone = ZoneInfo(tz) if tz else _TZ_EST
        if isinstance(ts, str):
            dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
        else:
            dt = datetime.fromtimestamp(ts, tz=timezone.utc)
        suffix = "ET" if zone.key == "America/New_York" else dt.astimezone(zone).tzname()
        return dt.astimezone(zone).strftime(f"%Y-%m-%d %I:%M:%S %p {suffix}")
    except (ValueError, OverflowError, OSError, LookupError):
        return ""


def format_log_line(entry: LogEntry, tz: Optional[str] = None) -> str:
    stamp = format_est(entry.timestamp, tz)
    return f"[{stamp}] {entry.progress_at_time:5.1f}% {entry.message}"


def processing_steps(progress: float) -> List[Dict[str, Any]]:
    """Derive the pipeline step list shown next to the progress bar."""
    steps = []
    for minimum, label in PROCESSING_STEPS:
        if progress >= minimum + _STEP_SPAN:
            state = "completed"
        elif progress >= minimum:
            state = "active"
        else:
            state = "pending"
        steps.append({"label": label, "min_progress": minimum, "state": state})
    return steps
