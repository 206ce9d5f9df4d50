"""CLI entrypoint for remote-desk."""

from __future__ import annotations

import typer

from ui.cli import commands

app = typer.Typer(help="Persistent interpreter channels for desktop remote control")
config_app = typer.Typer(help="Configuration commands")
dialects_app = typer.Typer(help="Script dialect commands")


@app.command("run-script")
def run_script_cmd(
    script: str = typer.Argument(..., help="Script text to execute"),
    timeout: float | None = typer.Option(None, help="Seconds before the interpreter is killed"),
    once: bool = typer.Option(False, "--once", help="Use a one-shot interpreter"),
) -> None:
    """Run a script on the script engine."""
    commands.run_script(script=script, timeout=timeout, once=once)


@app.command("run-code")
def run_code_cmd(
    code: str = typer.Argument(..., help="Code to execute in the helper"),
    timeout: float | None = typer.Option(None, help="Seconds to wait for the response"),
) -> None:
    """Run code on the code-execution helper."""
    commands.run_code(code=code, timeout=timeout)


@app.command("prewarm")
def prewarm_cmd() -> None:
    """Start both interpreters and wait until they are ready."""
    commands.prewarm()


@app.command("session")
def session_cmd(
    channel: str = typer.Option("code", help="Channel to drive: script or code"),
) -> None:
    """Interactive session over one persistent interpreter."""
    commands.session(channel=channel)


@app.command("classify")
def classify_cmd(text: str = typer.Argument(..., help="Diagnostic text")) -> None:
    """Classify script-engine diagnostic text."""
    commands.classify(text=text)


@config_app.command("show")
def config_show_cmd() -> None:
    """Show effective configuration."""
    commands.config_show()


@dialects_app.command("list")
def dialects_list_cmd() -> None:
    """List script dialects."""
    commands.dialects_list()


app.add_typer(config_app, name="config")
app.add_typer(dialects_app, name="dialects")


def main() -> None:
    """Console script entrypoint."""
    app()


if __name__ == "__main__":
    main()
