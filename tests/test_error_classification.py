"""Script diagnostic classification tests."""

from __future__ import annotations

from interpreters.errors import (
    ChannelTimeoutError,
    CodeExecutionError,
    CodeExecutionTimeout,
    ScriptEngineError,
    ScriptEngineTimeout,
    SpawnError,
    classify_error,
    error_kind,
)


def test_assistive_access_is_accessibility_denied() -> None:
    error = classify_error(
        "execution error: osascript is not allowed assistive access. (-1719)\n"
    )
    assert error.kind == "accessibility_denied"
    assert "Privacy & Security" in str(error)


def test_app_not_running_in_either_case() -> None:
    assert classify_error("Application isn't running. (-600)").kind == "app_not_running"
    assert classify_error("the application isn't running").kind == "app_not_running"


def test_missing_element_and_unknown_message() -> None:
    error = classify_error("  Can't get window 1 of process \"Notes\". (-1728)  ")
    assert error.kind == "element_not_found"
    assert str(error) == "Element not found: Can't get window 1 of process \"Notes\". (-1728)"
    assert classify_error("Notes got an error: doesn't understand").kind == "element_not_found"


def test_rules_are_checked_in_order() -> None:
    # Both the accessibility and element rules match; the first rule wins.
    error = classify_error("Can't get UI element: accessibility is off")
    assert error.kind == "accessibility_denied"


def test_unclassified_text_keeps_the_raw_message() -> None:
    error = classify_error("  something odd happened \n")
    assert error.kind == "unknown"
    assert str(error) == "something odd happened"
    assert str(classify_error("   ")) == "Unknown script error"


def test_timeouts_share_a_common_base() -> None:
    script_timeout = ScriptEngineTimeout("Script timed out after 10 seconds.")
    code_timeout = CodeExecutionTimeout("Code execution timed out after 15 seconds.")

    assert isinstance(script_timeout, ScriptEngineError)
    assert isinstance(script_timeout, ChannelTimeoutError)
    assert script_timeout.kind == "timeout"
    assert isinstance(code_timeout, CodeExecutionError)
    assert isinstance(code_timeout, ChannelTimeoutError)


def test_error_kind_labels() -> None:
    assert error_kind(classify_error("accessibility")) == "accessibility_denied"
    assert error_kind(CodeExecutionTimeout("late")) == "timeout"
    assert error_kind(SpawnError("no interpreter")) == "spawn_failure"
    assert error_kind(CodeExecutionError("boom")) == "diagnostic_error"
    assert error_kind(ValueError("other")) == "unknown"
