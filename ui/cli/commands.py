"""Typer command handlers."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer

from core.orchestrator import ChannelBundle, Orchestrator
from interpreters.errors import ChannelError, classify_error, error_kind
from interpreters.script_engine import DIALECTS, run_script_once


def _runtime(root: Path | None = None) -> ChannelBundle:
    bundle = Orchestrator(root=root).build()
    level = str(bundle.config.get("logging", {}).get("level", "WARNING")).upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return bundle


def _fail(exc: ChannelError) -> None:
    typer.echo(f"error [{error_kind(exc)}]: {exc}", err=True)
    raise typer.Exit(code=1)


def run_script(script: str, timeout: float | None = None, once: bool = False) -> None:
    """Run one script on the script engine."""
    bundle = _runtime()

    async def _go() -> str:
        try:
            if once:
                channel = bundle.script_engine
                return await run_script_once(
                    script, dialect=channel.dialect, timeout=timeout or channel.timeout
                )
            return await bundle.script_engine.execute(script, timeout=timeout)
        finally:
            await bundle.close()

    try:
        typer.echo(asyncio.run(_go()))
    except ChannelError as exc:
        _fail(exc)


def run_code(code: str, timeout: float | None = None) -> None:
    """Run one code payload on the code helper."""
    bundle = _runtime()

    async def _go() -> str:
        try:
            return await bundle.code_execution.execute(code, timeout=timeout)
        finally:
            await bundle.close()

    try:
        typer.echo(asyncio.run(_go()))
    except ChannelError as exc:
        _fail(exc)


def prewarm() -> None:
    """Start both interpreters and report readiness."""
    bundle = _runtime()

    async def _go() -> None:
        try:
            await bundle.prewarm()
        finally:
            await bundle.close()

    try:
        asyncio.run(_go())
    except ChannelError as exc:
        _fail(exc)
    typer.echo("Interpreters ready.")


def session(channel: str) -> None:
    """Interactive loop that keeps one interpreter alive between inputs."""
    if channel not in {"script", "code"}:
        typer.echo(f"Unknown channel '{channel}'. Use 'script' or 'code'.", err=True)
        raise typer.Exit(code=2)
    bundle = _runtime()
    target = bundle.script_engine if channel == "script" else bundle.code_execution
    typer.echo(f"{channel} session. Type 'exit' to quit.")
    with asyncio.Runner() as runner:
        try:
            while True:
                text = typer.prompt(channel)
                if text.strip().lower() in {"exit", "quit"}:
                    typer.echo("bye")
                    break
                try:
                    typer.echo(runner.run(target.execute(text)))
                except ChannelError as exc:
                    typer.echo(f"error [{error_kind(exc)}]: {exc}", err=True)
        finally:
            runner.run(bundle.close())


def classify(text: str) -> None:
    """Show how diagnostic text would be classified."""
    error = classify_error(text)
    typer.echo(json.dumps({"kind": error.kind, "message": str(error)}, indent=2))


def config_show() -> None:
    """Show effective runtime config."""
    bundle = _runtime()
    typer.echo(json.dumps(bundle.config, indent=2, default=str))


def dialects_list() -> None:
    """List script dialects and their interpreter commands."""
    for name, dialect in sorted(DIALECTS.items()):
        typer.echo(f"{name}: {' '.join(dialect.command)}")
