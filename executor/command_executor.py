"""One-shot command execution for the non-persistent fallback paths."""

from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass
from pathlib import Path


@dataclass
class CommandResult:
    """Exit status and full output of a finished (or killed) command."""

    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False


async def run_command(
    command: list[str],
    *,
    timeout: float,
    cwd: Path | None = None,
) -> CommandResult:
    """Run command to completion, killing it when ``timeout`` elapses.

    ``OSError`` from a missing executable propagates to the caller.
    """
    proc = await asyncio.create_subprocess_exec(
        *command,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=os.name == "posix",
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        kill_process_tree(proc)
        stdout, stderr = await proc.communicate()
        return CommandResult(
            exit_code=proc.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            timed_out=True,
        )
    return CommandResult(
        exit_code=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def kill_process_tree(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the process group led by ``proc`` (plain kill off POSIX).

    Callers must have started ``proc`` with ``start_new_session=True`` on POSIX.
    """
    if proc.returncode is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
