"""Wire records and channel settings."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class CodeRequest(BaseModel):
    """One request line sent to the code helper."""

    id: int
    code: str

    def to_line(self) -> str:
        return self.model_dump_json() + "\n"


class CodeResponse(BaseModel):
    """One response line written by the code helper.

    ``id`` is absent when the helper answers a request that carried none.
    """

    ok: bool
    output: str = ""
    error: str = ""
    id: int | None = None


class ScriptEngineSettings(BaseModel):
    """Configuration for the script-engine channel."""

    dialect: Literal["applescript", "shell"] = "applescript"
    command: list[str] | None = None
    persistent: bool = True
    timeout: float = Field(default=10.0, gt=0)
    sentinel: str = "__RD_DONE__"


class CodeExecutionSettings(BaseModel):
    """Configuration for the code-execution channel."""

    python: str | None = None
    preload: list[str] = Field(default_factory=list)
    timeout: float = Field(default=15.0, gt=0)
    ready_timeout: float = Field(default=60.0, gt=0)
    kill_on_timeout: bool = False
    env: dict[str, str] = Field(default_factory=dict)
