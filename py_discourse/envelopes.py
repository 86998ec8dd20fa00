"""Typed envelopes delivered on the status push channel."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from py_discourse.errors import MalformedEnvelopeError
from py_discourse.models import LogEntry, StatusSnapshot


@dataclass(frozen=True)
class LogEnvelope:
    entry: LogEntry


@dataclass(frozen=True)
class StatusEnvelope:
    snapshot: StatusSnapshot


@dataclass(frozen=True)
class CompleteEnvelope:
    results: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorEnvelope:
    message: str


@dataclass(frozen=True)
class ConnectedEnvelope:
    pass


Envelope = Union[LogEnvelope, StatusEnvelope, CompleteEnvelope, ErrorEnvelope, ConnectedEnvelope]


def parse_envelope(
    payload: Mapping[str, Any],
    *,
    event_name: Optional[str] = None,
    now: Optional[float] = None,
) -> Envelope:
    """Decode ``{type, data}`` into an envelope.

    ``event_name`` is the SSE event name, used when the payload carries no
    ``type`` field.

    Raises:
        MalformedEnvelopeError: unknown kind or unusable data
    """
    if not isinstance(payload, Mapping):
        raise MalformedEnvelopeError(f"envelope must be an object, got {type(payload).__name__}")
    kind = payload.get("type") or event_name
    kind = str(kind or "").strip().lower()
    data = payload.get("data")
    now = now if now is not None else time.time()

    if kind == "connected":
        return ConnectedEnvelope()

    if kind == "log":
        if isinstance(data, str):
            if not data:
                raise MalformedEnvelopeError("empty log message")
            return LogEnvelope(LogEntry.from_payload(data, now=now))
        if not isinstance(data, Mapping) or data.get("message") is None:
            raise MalformedEnvelopeError("log envelope without message")
        return LogEnvelope(LogEntry.from_payload(data, now=now))

    if kind == "status":
        if not isinstance(data, Mapping) or not data:
            raise MalformedEnvelopeError("empty status payload")
        try:
            snapshot = StatusSnapshot.model_validate(data)
        except ValidationError as exc:
            raise MalformedEnvelopeError(f"invalid status payload: {exc.error_count()} error(s)") from exc
        return StatusEnvelope(snapshot)

    if kind == "complete":
        if data is None:
            return CompleteEnvelope()
        if not isinstance(data, Mapping):
            raise MalformedEnvelopeError("complete envelope data must be an object")
        results = data.get("results", data)
        return CompleteEnvelope(dict(results) if isinstance(results, Mapping) else {"value": results})

    if kind == "error":
        if isinstance(data, Mapping):
            message = data.get("message") or data.get("error")
        else:
            message = data
        return ErrorEnvelope(str(message) if message else "Analysis failed")

    raise MalformedEnvelopeError(f"unknown envelope kind: {kind or '<missing>'}")
