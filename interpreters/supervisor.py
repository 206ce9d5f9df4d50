"""Lifecycle owner for one long-lived interpreter process.

The supervisor spawns lazily, waits for an optional readiness marker on the
interpreter's stderr, watches for exit and clears its cached handle so the next
``ensure_ready()`` call spawns a fresh interpreter. Spawn failures are raised to
the caller and never retried here.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Literal

from core.event_bus import EventBus
from executor.command_executor import kill_process_tree
from interpreters.errors import ProcessUnavailableError, SpawnError

ProcessState = Literal["starting", "ready", "dead"]
StreamListener = Callable[[bytes], None]

_CHUNK_SIZE = 65536
_STARTUP_TAIL_LINES = 20

logger = logging.getLogger("rd.supervisor")


class InterpreterProcess:
    """Handle to a spawned interpreter and the listeners on its output streams."""

    def __init__(self, proc: asyncio.subprocess.Process, name: str) -> None:
        self.proc = proc
        self.name = name
        self.state: ProcessState = "starting"
        self.ready_event = asyncio.Event()
        self.exited_event = asyncio.Event()
        self.startup_lines: deque[str] = deque(maxlen=_STARTUP_TAIL_LINES)
        self.tasks: list[asyncio.Task[Any]] = []
        self._stdout_listeners: list[StreamListener] = []
        self._stderr_listeners: list[StreamListener] = []

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def returncode(self) -> int | None:
        return self.proc.returncode

    @property
    def alive(self) -> bool:
        return self.state != "dead" and self.proc.returncode is None

    def subscribe(
        self,
        on_stdout: StreamListener,
        on_stderr: StreamListener | None = None,
    ) -> Callable[[], None]:
        """Attach stream listeners; returns a callable that detaches them."""
        self._stdout_listeners.append(on_stdout)
        if on_stderr is not None:
            self._stderr_listeners.append(on_stderr)

        def unsubscribe() -> None:
            if on_stdout in self._stdout_listeners:
                self._stdout_listeners.remove(on_stdout)
            if on_stderr is not None and on_stderr in self._stderr_listeners:
                self._stderr_listeners.remove(on_stderr)

        return unsubscribe

    def dispatch_stdout(self, chunk: bytes) -> None:
        self._dispatch(self._stdout_listeners, chunk)

    def dispatch_stderr(self, chunk: bytes) -> None:
        self._dispatch(self._stderr_listeners, chunk)

    def _dispatch(self, listeners: list[StreamListener], chunk: bytes) -> None:
        for listener in list(listeners):
            try:
                listener(chunk)
            except Exception:
                logger.exception("%s stream listener failed", self.name)

    async def write(self, text: str) -> None:
        """Write UTF-8 text to the interpreter's stdin and drain."""
        stdin = self.proc.stdin
        if not self.alive or stdin is None:
            raise ProcessUnavailableError(f"{self.name} interpreter is not running.")
        try:
            stdin.write(text.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise ProcessUnavailableError(f"{self.name} interpreter input closed: {exc}") from exc

    def kill(self) -> None:
        """Forcibly terminate the interpreter and anything it started."""
        self.state = "dead"
        kill_process_tree(self.proc)

    def startup_tail(self) -> str:
        return "\n".join(self.startup_lines).strip()


class ProcessSupervisor:
    """Owns at most one live interpreter process and respawns it on demand."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        name: str,
        ready_marker: str | None = None,
        ready_timeout: float = 60.0,
        env: Mapping[str, str] | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        if not command:
            raise ValueError("Interpreter command must not be empty.")
        self.command = list(command)
        self.name = name
        self.ready_marker = ready_marker
        self.ready_timeout = ready_timeout
        self.env = dict(env) if env is not None else None
        self.event_bus = event_bus
        self._process: InterpreterProcess | None = None
        self._spawned: list[InterpreterProcess] = []
        self._spawn_lock = asyncio.Lock()

    @property
    def process(self) -> InterpreterProcess | None:
        return self._process

    def _usable(self, process: InterpreterProcess | None) -> bool:
        return process is not None and process.state == "ready" and process.alive

    async def ensure_ready(self) -> InterpreterProcess:
        """Return the live interpreter, spawning one if needed."""
        if self._usable(self._process):
            return self._process  # type: ignore[return-value]
        async with self._spawn_lock:
            if self._usable(self._process):
                return self._process  # type: ignore[return-value]
            return await self._spawn()

    async def _spawn(self) -> InterpreterProcess:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            raise SpawnError(
                f"Could not start {self.name} interpreter ({self.command[0]}): {exc}"
            ) from exc

        process = InterpreterProcess(proc, self.name)
        self._process = process
        self._spawned = [p for p in self._spawned if not all(t.done() for t in p.tasks)]
        self._spawned.append(process)
        process.tasks = [
            asyncio.create_task(self._pump_stdout(process)),
            asyncio.create_task(self._pump_stderr(process)),
            asyncio.create_task(self._watch(process)),
        ]
        logger.info("Spawned %s interpreter pid=%s", self.name, process.pid)
        self._emit("process.spawned", {"interpreter": self.name, "pid": process.pid})

        try:
            if self.ready_marker is not None:
                await self._await_ready(process)
        except BaseException:
            self._discard(process)
            raise

        process.state = "ready"
        logger.info("%s interpreter ready pid=%s", self.name, process.pid)
        self._emit("process.ready", {"interpreter": self.name, "pid": process.pid})
        return process

    async def _await_ready(self, process: InterpreterProcess) -> None:
        ready = asyncio.create_task(process.ready_event.wait())
        exited = asyncio.create_task(process.exited_event.wait())
        try:
            done, _ = await asyncio.wait(
                {ready, exited},
                timeout=self.ready_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            ready.cancel()
            exited.cancel()

        if process.ready_event.is_set():
            return
        if exited in done:
            # let the stderr pump drain whatever the dying interpreter printed
            await asyncio.wait(process.tasks[:2], timeout=1.0)
        detail = process.startup_tail() or "no diagnostic output"
        if exited in done:
            raise SpawnError(
                f"{self.name} interpreter exited with code {process.returncode} "
                f"before becoming ready: {detail}"
            )
        raise SpawnError(
            f"{self.name} interpreter not ready after {self.ready_timeout:g}s: {detail}"
        )

    async def _pump_stdout(self, process: InterpreterProcess) -> None:
        stream = process.proc.stdout
        assert stream is not None
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                return
            process.dispatch_stdout(chunk)

    async def _pump_stderr(self, process: InterpreterProcess) -> None:
        stream = process.proc.stderr
        assert stream is not None
        marker = self.ready_marker.encode("utf-8") if self.ready_marker else None
        waiting = marker is not None
        startup = b""
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                return
            if waiting:
                startup += chunk
                while waiting and b"\n" in startup:
                    line, _, startup = startup.partition(b"\n")
                    if line.strip() == marker:
                        waiting = False
                        process.ready_event.set()
                    else:
                        process.startup_lines.append(line.decode("utf-8", errors="replace"))
                if waiting or not startup:
                    continue
                chunk, startup = startup, b""
            process.dispatch_stderr(chunk)

    async def _watch(self, process: InterpreterProcess) -> None:
        returncode = await process.proc.wait()
        process.state = "dead"
        process.exited_event.set()
        if self._process is process:
            self._process = None
        logger.info("%s interpreter pid=%s exited with code %s", self.name, process.pid, returncode)
        self._emit(
            "process.exited",
            {"interpreter": self.name, "pid": process.pid, "returncode": returncode},
        )

    def kill(self, process: InterpreterProcess | None = None) -> None:
        """Forcibly terminate ``process`` (default: the current interpreter)."""
        process = process or self._process
        if process is None or not process.alive:
            return
        self._discard(process)
        logger.warning("Killed %s interpreter pid=%s", self.name, process.pid)
        self._emit("process.killed", {"interpreter": self.name, "pid": process.pid})

    def _discard(self, process: InterpreterProcess) -> None:
        process.kill()
        if self._process is process:
            self._process = None

    async def close(self) -> None:
        """Tear down the interpreter and the background tasks of every spawn."""
        process = self._process
        if process is not None:
            self._discard(process)
            if process.proc.stdin is not None:
                process.proc.stdin.close()
        for spawned in self._spawned:
            spawned.kill()
            try:
                await asyncio.wait_for(spawned.proc.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning(
                    "%s interpreter pid=%s did not exit after kill", self.name, spawned.pid
                )
            for task in spawned.tasks:
                task.cancel()
            await asyncio.gather(*spawned.tasks, return_exceptions=True)
        self._spawned.clear()

    def _emit(self, event_name: str, payload: dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event_name, payload)
