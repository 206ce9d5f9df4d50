"""Script-engine channel tests driven through the shell dialect."""

from __future__ import annotations

import asyncio
import shutil
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import pytest

from core.event_bus import EventBus
from interpreters.errors import ScriptEngineError, ScriptEngineTimeout
from interpreters.records import ScriptEngineSettings
from interpreters.script_engine import (
    APPLESCRIPT,
    SHELL,
    ScriptEngineChannel,
    escape_for_applescript,
    run_script_once,
)

pytestmark = pytest.mark.skipif(
    sys.platform == "win32" or shutil.which("sh") is None,
    reason="needs a POSIX shell",
)

T = TypeVar("T")


def _with_channel(
    body: Callable[[ScriptEngineChannel], Awaitable[T]], **kwargs: Any
) -> T:
    async def scenario() -> T:
        channel = ScriptEngineChannel(SHELL, **kwargs)
        try:
            return await body(channel)
        finally:
            await channel.close()

    return asyncio.run(scenario())


def test_execute_returns_trimmed_output() -> None:
    async def body(channel: ScriptEngineChannel) -> str:
        return await channel.execute("echo '  hi  '")

    assert _with_channel(body) == "hi"


def test_sequential_calls_never_see_previous_output() -> None:
    async def body(channel: ScriptEngineChannel) -> list[str]:
        return [
            await channel.execute("echo one"),
            await channel.execute("echo two"),
            await channel.execute("true"),
        ]

    assert _with_channel(body) == ["one", "two", ""]


def test_multiline_output_without_sentinel_leak() -> None:
    async def body(channel: ScriptEngineChannel) -> str:
        return await channel.execute("printf 'a\\nb\\n'\nprintf 'no newline'")

    output = _with_channel(body)
    assert output == "a\nb\nno newline"
    assert "__RD_DONE__" not in output


def test_diagnostics_take_precedence_over_output() -> None:
    async def body(channel: ScriptEngineChannel) -> tuple[ScriptEngineError, str]:
        with pytest.raises(ScriptEngineError) as info:
            await channel.execute(
                "echo visible\necho 'execution error: not allowed assistive access.' >&2"
            )
        recovered = await channel.execute("echo after")
        return info.value, recovered

    error, recovered = _with_channel(body)
    assert error.kind == "accessibility_denied"
    assert recovered == "after"


def test_unclassified_diagnostic_keeps_text() -> None:
    async def body(channel: ScriptEngineChannel) -> ScriptEngineError:
        with pytest.raises(ScriptEngineError) as info:
            await channel.execute("echo 'something odd' >&2")
        return info.value

    error = _with_channel(body)
    assert error.kind == "unknown"
    assert str(error) == "something odd"


def test_timeout_kills_interpreter_and_next_call_respawns() -> None:
    async def body(channel: ScriptEngineChannel) -> tuple[int, int, str]:
        await channel.prewarm()
        first_pid = channel.supervisor.process.pid
        with pytest.raises(ScriptEngineTimeout) as info:
            await channel.execute("sleep 30", timeout=0.5)
        assert info.value.kind == "timeout"
        assert channel.supervisor.process is None
        output = await channel.execute("echo recovered")
        return first_pid, channel.supervisor.process.pid, output

    first_pid, second_pid, output = _with_channel(body)
    assert first_pid != second_pid
    assert output == "recovered"


def test_cancelled_call_output_never_reaches_next_call() -> None:
    async def body(channel: ScriptEngineChannel) -> tuple[bool, str]:
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(channel.execute("sleep 0.5; echo stale"), 0.1)
        killed = channel.supervisor.process is None
        output = await channel.execute("echo fresh")
        await asyncio.sleep(0.6)
        return killed, output + "|" + await channel.execute("echo again")

    killed, outputs = _with_channel(body)
    assert killed
    assert outputs == "fresh|again"


def test_interpreter_exit_is_backstopped_by_timeout() -> None:
    async def body(channel: ScriptEngineChannel) -> str:
        with pytest.raises(ScriptEngineTimeout):
            await channel.execute("exit 0", timeout=0.5)
        return await channel.execute("echo back")

    assert _with_channel(body) == "back"


def test_concurrent_calls_are_serialized() -> None:
    async def body(channel: ScriptEngineChannel) -> list[str]:
        return list(
            await asyncio.gather(
                channel.execute("sleep 0.2; echo first"),
                channel.execute("echo second"),
            )
        )

    assert _with_channel(body) == ["first", "second"]


def test_prewarm_spawns_once() -> None:
    async def body(channel: ScriptEngineChannel) -> tuple[int, int]:
        await channel.prewarm()
        pid = channel.supervisor.process.pid
        await channel.execute("echo warm")
        return pid, channel.supervisor.process.pid

    before, after = _with_channel(body)
    assert before == after


def test_settled_calls_are_published() -> None:
    bus = EventBus()
    events: list[dict[str, Any]] = []
    bus.subscribe("call.settled", events.append)

    async def body(channel: ScriptEngineChannel) -> None:
        await channel.execute("echo ok")
        with pytest.raises(ScriptEngineError):
            await channel.execute("echo \"Can't get window 1\" >&2")

    _with_channel(body, event_bus=bus)
    assert [(e["token"], e["ok"], e["kind"]) for e in events] == [
        (1, True, None),
        (2, False, "element_not_found"),
    ]
    assert events[0]["channel"] == "script_engine"
    assert events[0]["payload"] == "echo ok"


def test_one_shot_mode() -> None:
    async def body(channel: ScriptEngineChannel) -> str:
        result = await channel.execute("echo once")
        assert channel.supervisor.process is None
        return result

    assert _with_channel(body, persistent=False) == "once"


def test_run_script_once_classifies_failure() -> None:
    with pytest.raises(ScriptEngineError) as info:
        asyncio.run(
            run_script_once("echo \"Application isn't running\" >&2; exit 1", dialect=SHELL)
        )
    assert info.value.kind == "app_not_running"


def test_run_script_once_timeout() -> None:
    with pytest.raises(ScriptEngineTimeout):
        asyncio.run(run_script_once("sleep 5; echo never", dialect=SHELL, timeout=0.3))


def test_from_settings_picks_dialect_and_command() -> None:
    settings = ScriptEngineSettings(dialect="shell", command=["/bin/sh"], timeout=3)
    channel = ScriptEngineChannel.from_settings(settings)
    assert channel.dialect is SHELL
    assert channel.supervisor.command == ["/bin/sh"]
    assert channel.timeout == 3


def test_applescript_sentinel_statement() -> None:
    wrapped = APPLESCRIPT.terminate('tell application "Finder" to activate\n', "__RD_DONE___4")
    assert wrapped == 'tell application "Finder" to activate\n"__RD_DONE___4"\n'


def test_escape_for_applescript() -> None:
    assert escape_for_applescript('say "hi"\\\r\n') == 'say \\"hi\\"\\\\\\r\\n'
