"""Channel error types and script diagnostic classification."""

from __future__ import annotations

from typing import Literal

ErrorKind = Literal[
    "accessibility_denied",
    "app_not_running",
    "element_not_found",
    "timeout",
    "unknown",
]


class ChannelError(RuntimeError):
    """Base class for all interpreter channel failures."""


class SpawnError(ChannelError):
    """Interpreter process could not be started or never became ready."""


class ProcessUnavailableError(ChannelError):
    """Interpreter process went away while a request was being written."""


class ChannelTimeoutError(ChannelError):
    """No response boundary was observed within the call's budget."""


class ScriptEngineError(ChannelError):
    """Script engine reported a diagnostic, classified by kind."""

    def __init__(self, message: str, kind: ErrorKind = "unknown") -> None:
        super().__init__(message)
        self.kind: ErrorKind = kind


class ScriptEngineTimeout(ScriptEngineError, ChannelTimeoutError):
    """Script engine call exceeded its deadline; the interpreter was killed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "timeout")


class CodeExecutionError(ChannelError):
    """Code helper raised while executing a payload. Message is the raw error text."""


class CodeExecutionTimeout(CodeExecutionError, ChannelTimeoutError):
    """Code helper did not answer within the call's budget."""


def classify_error(stderr: str) -> ScriptEngineError:
    """Map raw diagnostic text to a classified error with user guidance.

    Rules are checked in order; the first match wins.
    """
    msg = stderr.strip()

    if "not allowed assistive access" in msg or "accessibility" in msg:
        return ScriptEngineError(
            "Accessibility permission denied. Enable this app in "
            "System Settings > Privacy & Security > Accessibility.",
            "accessibility_denied",
        )
    if "application isn't running" in msg or "Application isn't running" in msg:
        return ScriptEngineError(
            "Application is not running. Launch it first.",
            "app_not_running",
        )
    if "Can't get" in msg or "doesn't understand" in msg:
        return ScriptEngineError(f"Element not found: {msg}", "element_not_found")

    return ScriptEngineError(msg or "Unknown script error", "unknown")


def error_kind(exc: BaseException) -> str:
    """Short taxonomy label for a channel failure, used in events and audit records."""
    if isinstance(exc, ScriptEngineError):
        return exc.kind
    if isinstance(exc, ChannelTimeoutError):
        return "timeout"
    if isinstance(exc, SpawnError):
        return "spawn_failure"
    if isinstance(exc, ProcessUnavailableError):
        return "process_unavailable"
    if isinstance(exc, CodeExecutionError):
        return "diagnostic_error"
    return "unknown"
