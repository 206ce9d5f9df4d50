"""Configuration loading and runtime directory bootstrapping."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from interpreters.records import CodeExecutionSettings, ScriptEngineSettings


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML from file, returning empty mapping when missing."""
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries."""
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def ensure_runtime_dirs(root: Path, config: dict[str, Any]) -> dict[str, Path]:
    """Ensure the log directory exists and return resolved paths."""
    paths_cfg = config.get("paths", {})
    audit_log_path = (root / paths_cfg.get("audit_log_path", "logs/audit.jsonl")).resolve()
    audit_log_path.parent.mkdir(parents=True, exist_ok=True)
    return {"audit_log_path": audit_log_path}


def load_effective_config(root: Path) -> dict[str, Any]:
    """Load ``config/default.yaml`` with ``config/local.yaml`` merged over it."""
    config_dir = root / "config"
    default_cfg = load_yaml(config_dir / "default.yaml")
    local_cfg = load_yaml(config_dir / "local.yaml")
    return merge_dicts(default_cfg, local_cfg)


def script_engine_settings(config: dict[str, Any]) -> ScriptEngineSettings:
    return ScriptEngineSettings.model_validate(
        config.get("channels", {}).get("script_engine", {}) or {}
    )


def code_execution_settings(config: dict[str, Any]) -> CodeExecutionSettings:
    return CodeExecutionSettings.model_validate(
        config.get("channels", {}).get("code_execution", {}) or {}
    )
