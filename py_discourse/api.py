"""HTTP client for the discourse analysis service.

Endpoints:
- GET  /queue-status              queue advisory
- POST /upload-video              multipart upload, returns {analysis_id}
- GET  /analysis-stream/{id}      server-sent status envelopes
- GET  /analysis-status/{id}      status snapshot with full log history
- POST /stop-analysis/{id}        request stop, returns {success}
"""

from __future__ import annotations

import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

import requests
from pydantic import ValidationError

from py_discourse.errors import (
    CancellationNetworkFailure,
    PollError,
    SubmissionError,
    classify_upload_error,
    describe_error,
)
from py_discourse.models import QueueState, StatusSnapshot

LOGGER = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://discourse-analysis-backend.up.railway.app"
_UPLOAD_CHUNK_SIZE = 1024 * 1024  # 1 MB

ProgressCallback = Callable[[int], None]


class MultipartUpload:
    """Streaming multipart/form-data body that reports percent sent.

    Exposes ``__len__`` so requests sends a Content-Length header instead of
    chunked transfer encoding.
    """

    def __init__(
        self,
        path: Path,
        *,
        field_name: str = "file",
        fields: Optional[Mapping[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
        chunk_size: int = _UPLOAD_CHUNK_SIZE,
    ) -> None:
        self.path = Path(path)
        self.boundary = uuid.uuid4().hex
        self.chunk_size = chunk_size
        self._on_progress = on_progress
        self._last_percent = -1

        content_type = mimetypes.guess_type(self.path.name)[0] or "application/octet-stream"
        head_parts = []
        for name, value in (fields or {}).items():
            head_parts.append(
                f"--{self.boundary}\r\n"
                f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
                f"{value}\r\n"
            )
        head_parts.append(
            f"--{self.boundary}\r\n"
            f'Content-Disposition: form-data; name="{field_name}"; filename="{self.path.name}"\r\n'
            f"Content-Type: {content_type}\r\n\r\n"
        )
        self._head = "".join(head_parts).encode("utf-8")
        self._tail = f"\r\n--{self.boundary}--\r\n".encode("utf-8")
        self.file_size = self.path.stat().st_size
        self.total = len(self._head) + self.file_size + len(self._tail)

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def __len__(self) -> int:
        return self.total

    def _report(self, sent: int) -> None:
        if self._on_progress is None or self.total <= 0:
            return
        percent = min(100, round(sent * 100 / self.total))
        if percent != self._last_percent:
            self._last_percent = percent
            self._on_progress(percent)

    def __iter__(self) -> Iterator[bytes]:
        sent = 0
        self._report(sent)
        yield self._head
        sent += len(self._head)
        with self.path.open("rb") as handle:
            while True:
                chunk = handle.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk
                sent += len(chunk)
                self._report(sent)
        yield self._tail
        sent += len(self._tail)
        self._report(sent)


class AnalysisAPI:
    """requests-based client for the analysis service.

    Example:
        api = AnalysisAPI("https://analysis.example")
        queue = api.fetch_queue_status()
        job_id = api.upload_video(Path("lesson.mp4"), on_progress=print)
        snapshot = api.get_analysis_status(job_id)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        *,
        session: Optional[requests.Session] = None,
        connect_timeout: float = 10.0,
        request_timeout: float = 30.0,
        upload_timeout: float = 600.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout
        self._upload_timeout = upload_timeout

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def close(self) -> None:
        self._session.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    # ------------------------------------------------------------------
    # Queue collaborator
    # ------------------------------------------------------------------

    def fetch_queue_status(self) -> QueueState:
        """Fetch the queue advisory.

        Raises:
            requests.RequestException: transport or HTTP failure
            pydantic.ValidationError: unusable response body
        """
        url = self._url("/queue-status")
        resp = self._session.get(url, timeout=(self._connect_timeout, self._request_timeout))
        resp.raise_for_status()
        return QueueState.model_validate(resp.json() or {})

    # ------------------------------------------------------------------
    # Submission collaborator
    # ------------------------------------------------------------------

    def upload_video(
        self,
        path: Path | str,
        *,
        on_progress: Optional[ProgressCallback] = None,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Upload a video and return the analysis id.

        Raises:
            SubmissionError: classified as timeout, rejected or network
        """
        url = self._url("/upload-video")
        body = MultipartUpload(Path(path), fields=fields, on_progress=on_progress)
        LOGGER.info("Uploading %s (%s bytes) to %s", body.path.name, body.file_size, url)
        try:
            resp = self._session.post(
                url,
                data=body,
                headers={"Content-Type": body.content_type},
                timeout=(self._connect_timeout, self._upload_timeout),
            )
            resp.raise_for_status()
            payload = resp.json()
            analysis_id = payload.get("analysis_id") if isinstance(payload, dict) else None
            if not analysis_id:
                raise ValueError(f"upload response without analysis_id: {payload!r}")
        except Exception as exc:
            kind, message = classify_upload_error(exc)
            status_code = None
            if isinstance(exc, requests.HTTPError) and exc.response is not None:
                status_code = exc.response.status_code
                message = describe_error(url, exc)
            LOGGER.warning("Upload of %s failed (%s): %s", body.path.name, kind.value, message)
            raise SubmissionError(kind, message, status_code=status_code) from exc
        LOGGER.info("Upload accepted: analysis_id=%s", analysis_id)
        return str(analysis_id)

    # ------------------------------------------------------------------
    # Streaming collaborator
    # ------------------------------------------------------------------

    def open_status_stream(self, job_id: str) -> requests.Response:
        """Open the SSE stream for a job (no read timeout)."""
        url = self._url(f"/analysis-stream/{job_id}")
        resp = self._session.get(
            url,
            headers={"Accept": "text/event-stream"},
            stream=True,
            timeout=(self._connect_timeout, None),
        )
        resp.raise_for_status()
        return resp

    # ------------------------------------------------------------------
    # Polling collaborator
    # ------------------------------------------------------------------

    def get_analysis_status(self, job_id: str) -> StatusSnapshot:
        """Fetch the status snapshot and full log history for a job.

        Raises:
            PollError: transport, HTTP or decoding failure
        """
        url = self._url(f"/analysis-status/{job_id}")
        try:
            resp = self._session.get(url, timeout=(self._connect_timeout, None))
            resp.raise_for_status()
            return StatusSnapshot.model_validate(resp.json())
        except requests.RequestException as exc:
            status_code = exc.response.status_code if getattr(exc, "response", None) is not None else None
            raise PollError(describe_error(url, exc), job_id=job_id, status_code=status_code) from exc
        except (ValueError, ValidationError) as exc:
            raise PollError(f"{url} -> invalid status payload: {exc}", job_id=job_id) from exc

    # ------------------------------------------------------------------
    # Stop collaborator
    # ------------------------------------------------------------------

    def stop_analysis(self, job_id: str) -> bool:
        """Ask the server to stop a job; returns the server's ``success`` flag.

        Raises:
            CancellationNetworkFailure: the request could not be completed
        """
        url = self._url(f"/stop-analysis/{job_id}")
        try:
            resp = self._session.post(url, timeout=(self._connect_timeout, self._request_timeout))
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            detail = describe_error(url, exc) if isinstance(exc, requests.RequestException) else str(exc)
            raise CancellationNetworkFailure(detail, job_id=job_id) from exc
        return bool(payload.get("success")) if isinstance(payload, dict) else False
