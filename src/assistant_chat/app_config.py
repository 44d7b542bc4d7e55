from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class AppConfig:
    cli_command: str
    cli_args: list[str]
    working_directory: str | None
    continue_prompt: str
    max_in_memory_messages: int
    recovery_enabled: bool
    recovery_db_path: str
    recovery_scope: str
    heartbeat_interval_seconds: float
    heartbeat_stale_seconds: float
    log_level: str
    log_consumers: list | None


def load_json_config(config_path: Path | None = None) -> dict:
    path = config_path or Path.cwd() / "config.json"
    if path.exists():
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _to_args(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    if isinstance(value, list):
        return [str(v) for v in value]
    raise ValueError(f"CliArgs must be a list or a string, got {type(value).__name__}")


def parse_app_config(config: dict) -> AppConfig:
    cli_command = os.environ.get("ASSISTANT_CLI_COMMAND") or config.get("CliCommand", "claude")
    return AppConfig(
        cli_command=str(cli_command).strip(),
        cli_args=_to_args(config.get("CliArgs")),
        working_directory=config.get("WorkingDirectory"),
        continue_prompt=str(config.get("ContinuePrompt", "continue")),
        max_in_memory_messages=int(config.get("MaxInMemoryMessages", 200)),
        recovery_enabled=_to_bool(config.get("RecoveryEnabled", True), default=True),
        recovery_db_path=str(config.get("RecoveryDbPath", ".assistant_chat/recovery.db")),
        recovery_scope=str(config.get("RecoveryScope", "default")).strip() or "default",
        heartbeat_interval_seconds=float(config.get("HeartbeatIntervalSeconds", 1.0)),
        heartbeat_stale_seconds=float(config.get("HeartbeatStaleSeconds", 5.0)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )
