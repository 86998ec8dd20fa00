"""Error taxonomy for the analysis job client.

Only ``SubmissionError`` and ``ServerReportedError`` are meant to reach the
user. Channel and poll errors are recovery events handled inside the client.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import requests


class SubmissionErrorKind(str, Enum):
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    NETWORK = "network"


class SubmissionError(Exception):
    """Upload failed before a job id was assigned."""

    def __init__(
        self,
        kind: SubmissionErrorKind,
        message: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class InvalidVideoError(ValueError):
    """The selected file is not an accepted video file."""


class JobActiveError(RuntimeError):
    """Raised when a second job is started while one is still live."""


class ChannelError(Exception):
    """Transport failure on the push channel (triggers fallback polling)."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id


class PollError(Exception):
    """A single status poll failed; the poll loop keeps going."""

    def __init__(self, message: str, job_id: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.job_id = job_id
        self.status_code = status_code


class MalformedEnvelopeError(ValueError):
    """Envelope payload could not be decoded into a known kind."""


class ServerReportedError(Exception):
    """The server reported the job as failed."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id


class CancellationNetworkFailure(Exception):
    """The stop request never reached the server."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id


def describe_error(url: str, exc: requests.RequestException) -> str:
    detail = str(exc)
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        try:
            detail = exc.response.text or exc.response.reason or detail
        except Exception:  # pragma: no cover
            detail = str(exc)
    return f"{url} -> {detail}"


def _truncate_error_message(message: str, limit: int = 300) -> str:
    message = message.strip()
    if len(message) <= limit:
        return message
    return message[: limit - 3] + "..."


def classify_upload_error(exc: Exception) -> tuple[SubmissionErrorKind, str]:
    """Return (kind, message) for an upload failure."""
    # ConnectTimeout is also a ConnectionError; check Timeout first
    if isinstance(exc, requests.Timeout):
        return SubmissionErrorKind.TIMEOUT, _truncate_error_message(str(exc))
    if isinstance(exc, (requests.HTTPError, requests.exceptions.JSONDecodeError)):
        return SubmissionErrorKind.REJECTED, _truncate_error_message(str(exc))
    if isinstance(exc, requests.RequestException):
        return SubmissionErrorKind.NETWORK, _truncate_error_message(str(exc))
    if isinstance(exc, (ValueError, KeyError)):
        # Response arrived but did not carry an analysis id
        return SubmissionErrorKind.REJECTED, _truncate_error_message(str(exc))
    return SubmissionErrorKind.NETWORK, _truncate_error_message(str(exc))
