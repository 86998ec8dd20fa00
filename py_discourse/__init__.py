"""Discourse analysis job client.

Keeps a local view of one remote video-analysis job in sync with the server:
- Submission behind a queue advisory, with upload progress
- Status stream (server-sent events) with an adaptive polling fallback
- Smoothed display progress
- Client-authoritative stop with a grace period before reset
"""

from __future__ import annotations

from .config import SyncConfig, load_config
from .errors import (
    CancellationNetworkFailure,
    ChannelError,
    InvalidVideoError,
    JobActiveError,
    MalformedEnvelopeError,
    PollError,
    ServerReportedError,
    SubmissionError,
    SubmissionErrorKind,
)
from .models import (
    AnalysisResults,
    JobPhase,
    JobSnapshot,
    JobStatus,
    LogEntry,
    QueueState,
    StatusSnapshot,
    WarningLevel,
)
from .session import AnalysisSession

__all__ = [
    # Session
    "AnalysisSession",
    "SyncConfig",
    "load_config",
    # Models
    "AnalysisResults",
    "JobPhase",
    "JobSnapshot",
    "JobStatus",
    "LogEntry",
    "QueueState",
    "StatusSnapshot",
    "WarningLevel",
    # Errors
    "CancellationNetworkFailure",
    "ChannelError",
    "InvalidVideoError",
    "JobActiveError",
    "MalformedEnvelopeError",
    "PollError",
    "ServerReportedError",
    "SubmissionError",
    "SubmissionErrorKind",
]
