"""Persistent script-engine channel.

Scripts are written to one long-lived interactive interpreter. Each call
appends a statement that prints ``<sentinel>_<token>``; output up to that
sentinel is the result. Anything the interpreter writes to stderr during the
call rejects it with a classified error, even when the sentinel arrived. A
call that outlives its timeout kills the interpreter; the next call respawns it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from core.event_bus import EventBus
from executor.command_executor import run_command
from interpreters.errors import (
    ChannelError,
    ScriptEngineTimeout,
    SpawnError,
    classify_error,
    error_kind,
)
from interpreters.framing import SentinelFramer
from interpreters.governor import PendingRequest
from interpreters.records import ScriptEngineSettings
from interpreters.supervisor import ProcessSupervisor

logger = logging.getLogger("rd.script_engine")


@dataclass(frozen=True)
class ScriptDialect:
    """How to drive one kind of script interpreter.

    Statement templates take a ``{marker}`` field and must print the marker on
    a line of its own.
    """

    name: str
    command: tuple[str, ...]
    one_shot_command: tuple[str, ...]
    sentinel_statement: str
    stderr_sentinel_statement: str | None = None

    def terminate(self, script: str, marker: str) -> str:
        """Append the sentinel statement(s) to a script."""
        lines = [script.rstrip("\n")]
        if self.stderr_sentinel_statement is not None:
            lines.append(self.stderr_sentinel_statement.format(marker=marker))
        lines.append(self.sentinel_statement.format(marker=marker))
        return "\n".join(lines) + "\n"


APPLESCRIPT = ScriptDialect(
    name="applescript",
    command=("osascript", "-i"),
    one_shot_command=("osascript", "-e"),
    sentinel_statement='"{marker}"',
)

SHELL = ScriptDialect(
    name="shell",
    command=("sh",),
    one_shot_command=("sh", "-c"),
    sentinel_statement="printf '\\n%s\\n' '{marker}'",
    stderr_sentinel_statement="printf '\\n%s\\n' '{marker}' >&2",
)

DIALECTS: dict[str, ScriptDialect] = {d.name: d for d in (APPLESCRIPT, SHELL)}


def escape_for_applescript(text: str) -> str:
    """Escape text for embedding inside an AppleScript string literal."""
    return (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\r", "\\r")
        .replace("\n", "\\n")
    )


async def run_script_once(
    script: str,
    *,
    dialect: ScriptDialect = APPLESCRIPT,
    timeout: float = 10.0,
) -> str:
    """Run a script in a fresh interpreter; process exit is the boundary."""
    command = [*dialect.one_shot_command, script]
    try:
        result = await run_command(command, timeout=timeout)
    except OSError as exc:
        raise SpawnError(f"Could not start {dialect.name} interpreter: {exc}") from exc
    if result.timed_out:
        raise ScriptEngineTimeout(f"Script timed out after {timeout:g} seconds.")
    if result.exit_code != 0:
        raise classify_error(result.stderr or "Unknown error")
    return result.stdout.strip()


class ScriptEngineChannel:
    """Single-flight execution channel over a persistent script interpreter."""

    def __init__(
        self,
        dialect: ScriptDialect = APPLESCRIPT,
        *,
        command: list[str] | None = None,
        timeout: float = 10.0,
        sentinel: str = "__RD_DONE__",
        persistent: bool = True,
        event_bus: EventBus | None = None,
    ) -> None:
        self.dialect = dialect
        self.timeout = timeout
        self.sentinel = sentinel
        self.persistent = persistent
        self.event_bus = event_bus
        self.supervisor = ProcessSupervisor(
            command or dialect.command,
            name=dialect.name,
            event_bus=event_bus,
        )
        self._counter = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: ScriptEngineSettings, event_bus: EventBus | None = None
    ) -> ScriptEngineChannel:
        return cls(
            DIALECTS[settings.dialect],
            command=settings.command,
            timeout=settings.timeout,
            sentinel=settings.sentinel,
            persistent=settings.persistent,
            event_bus=event_bus,
        )

    async def prewarm(self) -> None:
        """Start the interpreter now so the first call skips cold start."""
        if self.persistent:
            await self.supervisor.ensure_ready()

    async def execute(self, script: str, timeout: float | None = None) -> str:
        """Run one script and return its trimmed output."""
        budget = timeout if timeout is not None else self.timeout
        async with self._lock:
            self._counter += 1
            token = self._counter
            started = time.monotonic()
            try:
                if self.persistent:
                    output = await self._execute_persistent(script, token, budget)
                else:
                    output = await run_script_once(script, dialect=self.dialect, timeout=budget)
            except ChannelError as exc:
                self._emit_settled(token, script, started, ok=False, kind=error_kind(exc))
                raise
            self._emit_settled(token, script, started, ok=True)
            return output

    async def _execute_persistent(self, script: str, token: int, budget: float) -> str:
        process = await self.supervisor.ensure_ready()
        marker = f"{self.sentinel}_{token}"
        framer = SentinelFramer(
            marker, expect_stderr_marker=self.dialect.stderr_sentinel_statement is not None
        )

        def on_timeout() -> ScriptEngineTimeout:
            logger.warning(
                "%s call %s timed out after %gs; killing interpreter", self.dialect.name, token, budget
            )
            self.supervisor.kill(process)
            return ScriptEngineTimeout(f"Script timed out after {budget:g} seconds.")

        pending: PendingRequest[str] = PendingRequest(token, timeout=budget, on_timeout=on_timeout)

        def settle_if_complete() -> None:
            if not framer.complete:
                return
            diagnostics = framer.diagnostics()
            if diagnostics:
                pending.reject(classify_error(diagnostics))
            else:
                pending.resolve(framer.output(pending.buffer))

        def on_stdout(chunk: bytes) -> None:
            framer.scan_stdout(pending.append(chunk))
            settle_if_complete()

        def on_stderr(chunk: bytes) -> None:
            framer.feed_stderr(chunk)
            settle_if_complete()

        unsubscribe = process.subscribe(on_stdout, on_stderr)
        try:
            await process.write(self.dialect.terminate(script, marker))
            return await pending.wait()
        except asyncio.CancelledError:
            # the abandoned script would otherwise answer the next call
            logger.warning("%s call %s cancelled; killing interpreter", self.dialect.name, token)
            self.supervisor.kill(process)
            raise
        finally:
            unsubscribe()
            pending.cancel()

    async def close(self) -> None:
        await self.supervisor.close()

    def _emit_settled(
        self, token: int, script: str, started: float, *, ok: bool, kind: str | None = None
    ) -> None:
        if self.event_bus is None:
            return
        self.event_bus.emit(
            "call.settled",
            {
                "channel": "script_engine",
                "token": token,
                "payload": script,
                "ok": ok,
                "kind": kind,
                "duration": time.monotonic() - started,
            },
        )
