"""Top-level wiring of configuration, observers and both interpreter channels."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.event_bus import EventBus
from core.policy_runtime import (
    code_execution_settings,
    ensure_runtime_dirs,
    load_effective_config,
    script_engine_settings,
)
from governance.audit_logger import AuditLogger
from interpreters.code_execution import CodeExecutionChannel
from interpreters.script_engine import ScriptEngineChannel


@dataclass
class ChannelBundle:
    """Holds initialized runtime components."""

    config: dict[str, Any]
    event_bus: EventBus
    audit_logger: AuditLogger
    script_engine: ScriptEngineChannel
    code_execution: CodeExecutionChannel

    async def prewarm(self) -> None:
        """Start both interpreters concurrently; the first failure is raised once both finish."""
        results = await asyncio.gather(
            self.script_engine.prewarm(),
            self.code_execution.prewarm(),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise errors[0]

    async def close(self) -> None:
        await self.script_engine.close()
        await self.code_execution.close()


class Orchestrator:
    """Creates and wires runtime components for CLI use."""

    def __init__(self, root: Path | None = None, config: dict[str, Any] | None = None) -> None:
        default_root = Path(__file__).resolve().parents[1]
        self.root = (root or default_root).resolve()
        self.config = config

    def build(self) -> ChannelBundle:
        config = self.config if self.config is not None else load_effective_config(self.root)
        paths = ensure_runtime_dirs(self.root, config)

        event_bus = EventBus()
        audit_logger = AuditLogger(paths["audit_log_path"])
        audit_logger.attach(event_bus)

        return ChannelBundle(
            config=config,
            event_bus=event_bus,
            audit_logger=audit_logger,
            script_engine=ScriptEngineChannel.from_settings(
                script_engine_settings(config), event_bus=event_bus
            ),
            code_execution=CodeExecutionChannel.from_settings(
                code_execution_settings(config), event_bus=event_bus
            ),
        )
