"""Response-boundary detection over chunked interpreter output.

Framers never perform I/O. They scan a call's append-only buffer from a
cursor and report when a complete response is present.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from interpreters.records import CodeResponse

logger = logging.getLogger("rd.framing")


def _line_start(buffer: bytes | bytearray, index: int) -> int:
    return buffer.rfind(b"\n", 0, index) + 1


class SentinelFramer:
    """Finds the token-qualified sentinel that ends one script's output.

    Output is everything before the line carrying the sentinel. When
    ``expect_stderr_marker`` is set the same sentinel must also appear on
    stderr, and only stderr text before it counts as diagnostics.
    """

    def __init__(self, marker: str, *, expect_stderr_marker: bool = False) -> None:
        self.marker = marker.encode("utf-8")
        self.expect_stderr_marker = expect_stderr_marker
        self.stderr = bytearray()
        self._stdout_cursor = 0
        self._stdout_at: int | None = None
        self._stderr_at: int | None = None

    @property
    def complete(self) -> bool:
        if self._stdout_at is None:
            return False
        return not self.expect_stderr_marker or self._stderr_at is not None

    def scan_stdout(self, buffer: bytearray) -> bool:
        if self._stdout_at is None:
            self._stdout_at = self._find(buffer, self._stdout_cursor)
            self._stdout_cursor = max(0, len(buffer) - len(self.marker) + 1)
        return self.complete

    def feed_stderr(self, chunk: bytes) -> bool:
        start = max(0, len(self.stderr) - len(self.marker) + 1)
        self.stderr.extend(chunk)
        if self.expect_stderr_marker and self._stderr_at is None:
            self._stderr_at = self._find(self.stderr, start)
        return self.complete

    def _find(self, buffer: bytearray, start: int) -> int | None:
        index = buffer.find(self.marker, start)
        return index if index >= 0 else None

    def output(self, buffer: bytearray) -> str:
        if self._stdout_at is None:
            return ""
        end = _line_start(buffer, self._stdout_at)
        return bytes(buffer[:end]).decode("utf-8", errors="replace").strip()

    def diagnostics(self) -> str:
        end = len(self.stderr)
        if self._stderr_at is not None:
            end = _line_start(self.stderr, self._stderr_at)
        return bytes(self.stderr[:end]).decode("utf-8", errors="replace").strip()


class JsonLineFramer:
    """Picks the response record for one request out of a JSON-lines stream.

    Lines that fail to decode, and records answering a different request,
    are skipped so the stream resynchronizes on the next line.
    """

    def __init__(self, token: int) -> None:
        self.token = token
        self._cursor = 0

    def scan(self, buffer: bytearray) -> CodeResponse | None:
        while True:
            newline = buffer.find(b"\n", self._cursor)
            if newline < 0:
                return None
            line = bytes(buffer[self._cursor:newline]).strip()
            self._cursor = newline + 1
            if not line:
                continue
            try:
                record = CodeResponse.model_validate_json(line)
            except ValidationError:
                logger.debug("Discarding undecodable helper line: %r", line[:200])
                continue
            if record.id is not None and record.id != self.token:
                logger.warning(
                    "Discarding stale helper response id=%s (waiting for %s)", record.id, self.token
                )
                continue
            return record
