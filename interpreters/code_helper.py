"""Long-lived code execution helper.

Run as ``python code_helper.py [module ...]`` inside the interpreter that owns
the heavyweight native bindings. Each named module is imported once and bound
under its last dotted component. The helper then announces readiness on
stderr and answers one JSON line per request line read from stdin.

This file must stay importable on a bare interpreter: standard library only.
"""

from __future__ import annotations

import contextlib
import importlib
import io
import json
import sys
from typing import Any

READY_MARKER = "__RD_HELPER_READY__"


def preload(modules: list[str]) -> dict[str, Any]:
    bindings: dict[str, Any] = {}
    for name in modules:
        bindings[name.rsplit(".", 1)[-1]] = importlib.import_module(name)
    return bindings


def run_request(line: str, bindings: dict[str, Any]) -> dict[str, Any]:
    """Execute one request line and build its response record."""
    try:
        request = json.loads(line)
        code = request["code"]
    except (ValueError, KeyError, TypeError) as exc:
        return {"ok": False, "error": f"Malformed request: {exc}"}

    response: dict[str, Any]
    captured = io.StringIO()
    try:
        with contextlib.redirect_stdout(captured):
            compiled = compile(code, "<request>", "exec", dont_inherit=True)
            exec(compiled, {"__name__": "__request__", **bindings})
        response = {"ok": True, "output": captured.getvalue().rstrip("\n")}
    except (Exception, SystemExit) as exc:
        response = {"ok": False, "error": str(exc) or type(exc).__name__}
    if isinstance(request, dict) and "id" in request:
        response["id"] = request["id"]
    return response


def main(argv: list[str] | None = None) -> int:
    bindings = preload(list(sys.argv[1:] if argv is None else argv))
    protocol_out = sys.stdout
    sys.stderr.write(READY_MARKER + "\n")
    sys.stderr.flush()
    for line in sys.stdin:
        if not line.strip():
            continue
        response = run_request(line, bindings)
        protocol_out.write(json.dumps(response) + "\n")
        protocol_out.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
