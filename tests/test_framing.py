"""Framer tests over hand-built chunk sequences."""

from __future__ import annotations

from interpreters.framing import JsonLineFramer, SentinelFramer

MARKER = "__RD_DONE___3"


def test_output_is_text_before_sentinel_line() -> None:
    framer = SentinelFramer(MARKER)
    buffer = bytearray(b"hello\nworld\n")
    assert framer.scan_stdout(buffer) is False
    buffer.extend(b"\n__RD_DONE___3\n")
    assert framer.scan_stdout(buffer) is True
    output = framer.output(buffer)
    assert output == "hello\nworld"
    assert "__RD_DONE" not in output


def test_sentinel_split_across_chunks() -> None:
    framer = SentinelFramer(MARKER)
    buffer = bytearray()
    for chunk in (b"result\n__RD_DO", b"NE___", b"3\n"):
        buffer.extend(chunk)
        complete = framer.scan_stdout(buffer)
    assert complete is True
    assert framer.output(buffer) == "result"


def test_quoted_sentinel_does_not_leak() -> None:
    framer = SentinelFramer(MARKER)
    buffer = bytearray(b'{100, 200}\n"__RD_DONE___3"\n')
    assert framer.scan_stdout(buffer)
    assert framer.output(buffer) == "{100, 200}"


def test_output_without_trailing_newline() -> None:
    framer = SentinelFramer(MARKER)
    buffer = bytearray(b"hi\n__RD_DONE___3\n")
    framer.scan_stdout(buffer)
    assert framer.output(buffer) == "hi"


def test_stderr_marker_required_when_expected() -> None:
    framer = SentinelFramer(MARKER, expect_stderr_marker=True)
    buffer = bytearray(b"partial\n__RD_DONE___3\n")
    assert framer.scan_stdout(buffer) is False
    assert framer.feed_stderr(b"not allowed assistive access\n") is False
    assert framer.feed_stderr(b"\n__RD_DONE___3\n") is True
    assert framer.diagnostics() == "not allowed assistive access"
    assert framer.output(buffer) == "partial"


def test_clean_stderr_marker_means_no_diagnostics() -> None:
    framer = SentinelFramer(MARKER, expect_stderr_marker=True)
    framer.feed_stderr(b"\n__RD_DONE___3\n")
    framer.scan_stdout(bytearray(b"ok\n__RD_DONE___3\n"))
    assert framer.complete
    assert framer.diagnostics() == ""


def test_json_framer_skips_malformed_line() -> None:
    framer = JsonLineFramer(1)
    buffer = bytearray(b'garbage{"ok"\n{"ok": true, "output": "hi", "id": 1}\n')
    record = framer.scan(buffer)
    assert record is not None
    assert record.ok is True
    assert record.output == "hi"


def test_json_framer_waits_for_complete_line() -> None:
    framer = JsonLineFramer(5)
    buffer = bytearray(b'{"ok": false, "err')
    assert framer.scan(buffer) is None
    buffer.extend(b'or": "boom", "id": 5}\n')
    record = framer.scan(buffer)
    assert record is not None
    assert record.ok is False
    assert record.error == "boom"


def test_json_framer_drops_stale_response() -> None:
    framer = JsonLineFramer(2)
    buffer = bytearray(
        b'{"ok": true, "output": "late", "id": 1}\n'
        b"\n"
        b'{"ok": true, "output": "fresh", "id": 2}\n'
    )
    record = framer.scan(buffer)
    assert record is not None
    assert record.output == "fresh"


def test_json_framer_accepts_record_without_id() -> None:
    framer = JsonLineFramer(9)
    record = framer.scan(bytearray(b'{"ok": true, "output": ""}\n'))
    assert record is not None
    assert record.id is None
    assert record.output == ""
