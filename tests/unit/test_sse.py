from __future__ import annotations

from py_discourse.sse import iter_sse_events, iter_sse_lines


class _DummyStream:
    def __init__(self, lines) -> None:
        self._lines = lines
        self.closed = False

    def iter_lines(self, decode_unicode: bool = False):
        yield from self._lines

    def close(self) -> None:
        self.closed = True


def test_groups_data_lines_into_events() -> None:
    lines = [
        ": keep-alive",
        "event: status",
        'data: {"type": "status", "data": {"status": "processing", "progress": 20}}',
        "",
        'data: {"type": "log", "data": "hi"}',
        "",
    ]
    events = list(iter_sse_lines(lines))
    assert events == [
        ("status", {"type": "status", "data": {"status": "processing", "progress": 20}}),
        ("message", {"type": "log", "data": "hi"}),
    ]


def test_multiline_data_and_bytes() -> None:
    lines = [b"data: {\"type\":", b"data:  \"connected\"}", b""]
    assert list(iter_sse_lines(lines)) == [("message", {"type": "connected"})]


def test_non_json_and_non_object_payloads_are_wrapped() -> None:
    lines = ["data: not json", "", "data: [1, 2]", ""]
    assert list(iter_sse_lines(lines)) == [
        ("message", {"raw": "not json"}),
        ("message", {"raw": [1, 2]}),
    ]


def test_trailing_event_without_blank_line_is_flushed() -> None:
    lines = ["event: complete", 'data: {"results": {}}']
    assert list(iter_sse_lines(lines)) == [("complete", {"results": {}})]


def test_iter_sse_events_closes_response() -> None:
    stream = _DummyStream(['data: {"type": "connected"}', ""])
    assert list(iter_sse_events(stream)) == [("message", {"type": "connected"})]
    assert stream.closed
