"""Persistent code-execution channel.

Talks JSON lines to ``code_helper.py`` running in a long-lived interpreter.
Requests carry an ``id`` that the helper echoes, so a late answer to a
timed-out request is recognized and dropped instead of being read as the
next call's result.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from collections.abc import Mapping
from pathlib import Path

from core.event_bus import EventBus
from executor.command_executor import run_command
from interpreters.code_helper import READY_MARKER
from interpreters.errors import (
    ChannelError,
    CodeExecutionError,
    CodeExecutionTimeout,
    SpawnError,
    error_kind,
)
from interpreters.framing import JsonLineFramer
from interpreters.governor import PendingRequest
from interpreters.records import CodeExecutionSettings, CodeRequest
from interpreters.supervisor import InterpreterProcess, ProcessSupervisor

HELPER_PATH = Path(__file__).resolve().with_name("code_helper.py")

logger = logging.getLogger("rd.code_execution")


async def run_code_once(code: str, *, python: str | None = None, timeout: float = 15.0) -> str:
    """Run code with ``python -c`` in a fresh interpreter and return its stdout."""
    command = [python or sys.executable, "-c", code]
    try:
        result = await run_command(command, timeout=timeout)
    except OSError as exc:
        raise SpawnError(f"Could not start code interpreter: {exc}") from exc
    if result.timed_out:
        raise CodeExecutionTimeout(f"Code execution timed out after {timeout:g} seconds.")
    if result.exit_code != 0:
        raise CodeExecutionError(result.stderr.strip() or f"Exited with code {result.exit_code}")
    return result.stdout.strip()


class CodeExecutionChannel:
    """Single-flight execution channel over the code helper process."""

    def __init__(
        self,
        *,
        python: str | None = None,
        preload: list[str] | None = None,
        timeout: float = 15.0,
        ready_timeout: float = 60.0,
        kill_on_timeout: bool = False,
        env: Mapping[str, str] | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.python = os.path.expanduser(python) if python else sys.executable
        self.preload = list(preload or [])
        self.timeout = timeout
        self.kill_on_timeout = kill_on_timeout
        self.event_bus = event_bus
        self.supervisor = ProcessSupervisor(
            [self.python, str(HELPER_PATH), *self.preload],
            name="code",
            ready_marker=READY_MARKER,
            ready_timeout=ready_timeout,
            env={**os.environ, **env} if env else None,
            event_bus=event_bus,
        )
        self._counter = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: CodeExecutionSettings, event_bus: EventBus | None = None
    ) -> CodeExecutionChannel:
        return cls(
            python=settings.python,
            preload=settings.preload,
            timeout=settings.timeout,
            ready_timeout=settings.ready_timeout,
            kill_on_timeout=settings.kill_on_timeout,
            env=settings.env,
            event_bus=event_bus,
        )

    async def prewarm(self) -> None:
        """Start the helper and wait for its imports to finish."""
        await self.supervisor.ensure_ready()

    async def execute(self, code: str, timeout: float | None = None) -> str:
        """Run code in the helper and return its captured stdout."""
        budget = timeout if timeout is not None else self.timeout
        async with self._lock:
            self._counter += 1
            token = self._counter
            started = time.monotonic()
            try:
                output = await self._execute(code, token, budget)
            except ChannelError as exc:
                self._emit_settled(token, code, started, ok=False, kind=error_kind(exc))
                raise
            self._emit_settled(token, code, started, ok=True)
            return output

    async def _execute(self, code: str, token: int, budget: float) -> str:
        framer = JsonLineFramer(token)
        process: InterpreterProcess | None = None

        def on_timeout() -> CodeExecutionTimeout:
            if self.kill_on_timeout and process is not None:
                self.supervisor.kill(process)
            else:
                logger.warning("Code call %s timed out after %gs; abandoning it", token, budget)
            return CodeExecutionTimeout(f"Code execution timed out after {budget:g} seconds.")

        # the deadline also covers a helper that is still importing its preloads
        pending: PendingRequest[str] = PendingRequest(token, timeout=budget, on_timeout=on_timeout)
        try:
            process = await pending.guard(self.supervisor.ensure_ready())
        except BaseException:
            pending.cancel()
            raise

        def on_stdout(chunk: bytes) -> None:
            record = framer.scan(pending.append(chunk))
            if record is None:
                return
            if record.ok:
                pending.resolve(record.output)
            else:
                pending.reject(CodeExecutionError(record.error))

        def on_stderr(chunk: bytes) -> None:
            logger.debug("helper stderr: %s", chunk.decode("utf-8", errors="replace").rstrip())

        unsubscribe = process.subscribe(on_stdout, on_stderr)
        try:
            await process.write(CodeRequest(id=token, code=code).to_line())
            return await pending.wait()
        finally:
            unsubscribe()
            pending.cancel()

    async def close(self) -> None:
        await self.supervisor.close()

    def _emit_settled(
        self, token: int, code: str, started: float, *, ok: bool, kind: str | None = None
    ) -> None:
        if self.event_bus is None:
            return
        self.event_bus.emit(
            "call.settled",
            {
                "channel": "code_execution",
                "token": token,
                "payload": code,
                "ok": ok,
                "kind": kind,
                "duration": time.monotonic() - started,
            },
        )
