from __future__ import annotations

import json
from typing import Any, Dict, Generator, Iterable, List, Tuple

import requests


def iter_sse_lines(
    lines: Iterable[str | bytes | None],
) -> Generator[Tuple[str, Dict[str, Any]], None, None]:
    """Group raw SSE lines into ``(event_name, payload)`` pairs."""
    event_name = "message"
    data_lines: List[str] = []
    for raw_line in lines:
        if raw_line is None:
            continue
        line = raw_line.decode("utf-8", "replace") if isinstance(raw_line, (bytes, bytearray)) else raw_line
        line = line.strip()
        if not line:
            if data_lines:
                data_str = "\n".join(data_lines)
                try:
                    payload = json.loads(data_str)
                except json.JSONDecodeError:
                    payload = {"raw": data_str}
                if not isinstance(payload, dict):
                    payload = {"raw": payload}
                yield event_name or "message", payload
            event_name = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            event_name = line.split(":", 1)[1].strip()
        elif line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
    if data_lines:
        data_str = "\n".join(data_lines)
        try:
            payload = json.loads(data_str)
        except json.JSONDecodeError:
            payload = {"raw": data_str}
        if not isinstance(payload, dict):
            payload = {"raw": payload}
        yield event_name or "message", payload


def iter_sse_events(
    response: requests.Response,
) -> Generator[Tuple[str, Dict[str, Any]], None, None]:
    try:
        yield from iter_sse_lines(response.iter_lines(decode_unicode=True))
    finally:
        response.close()
