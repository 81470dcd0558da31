"""Per-project configuration: ``.ben10/config.json`` plus ``BEN10_*`` env overrides."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from .errors import ErrorCode, Err, Ok, Result, fail
from .fs import FileSystem

CONFIG_FILE = "config.json"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_EXPORTERS = {"none", "stdout", "otlp"}


@dataclass
class BenTenConfig:
    """Runtime settings for hooks and the MCP server."""

    log_level: str = "INFO"
    log_json: bool = False
    excerpt_max_chars: int = 2000
    max_key_files: int = 50
    telemetry_exporter: str = "none"  # "stdout" | "otlp" | "none"
    max_replay_percent: int = 50
    context_window_size: int = 100_000

    @property
    def replay_max_tokens(self) -> int:
        """Token budget for the conversation replay."""
        return self.context_window_size * self.max_replay_percent // 100

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def build_config(data: Mapping[str, Any] | None = None,
                 env: Mapping[str, str] | None = None) -> BenTenConfig:
    """Merge file values and environment overrides onto the defaults.

    Out-of-range numbers are clamped and unknown values fall back to defaults;
    unknown keys are ignored.
    """
    data = data or {}
    env = os.environ if env is None else env
    cfg = BenTenConfig()

    level = str(env.get("BEN10_LOG_LEVEL") or data.get("logLevel", cfg.log_level)).upper()
    if level == "WARN":
        level = "WARNING"
    if level in _LOG_LEVELS:
        cfg.log_level = level

    if "BEN10_LOG_JSON" in env:
        cfg.log_json = _as_bool(env["BEN10_LOG_JSON"])
    elif "logJson" in data:
        cfg.log_json = _as_bool(data["logJson"])

    excerpt = data.get("excerptMaxChars")
    if isinstance(excerpt, int) and not isinstance(excerpt, bool):
        cfg.excerpt_max_chars = _clamp(excerpt, 0, 20_000)

    max_files = data.get("maxKeyFiles")
    if isinstance(max_files, int) and not isinstance(max_files, bool):
        cfg.max_key_files = _clamp(max_files, 1, 500)

    replay_percent = data.get("maxReplayPercent")
    if isinstance(replay_percent, int) and not isinstance(replay_percent, bool):
        cfg.max_replay_percent = _clamp(replay_percent, 1, 90)

    window = data.get("contextWindowSize")
    if isinstance(window, int) and not isinstance(window, bool):
        cfg.context_window_size = max(window, 10_000)

    exporter = str(env.get("BEN10_TELEMETRY_EXPORTER")
                   or data.get("telemetryExporter", cfg.telemetry_exporter)).lower()
    if exporter in _EXPORTERS:
        cfg.telemetry_exporter = exporter

    return cfg


async def load_config(
    fs: FileSystem, project_dir: str, env: Mapping[str, str] | None = None
) -> Result[BenTenConfig]:
    """Load ``{project_dir}/.ben10/config.json``; a missing file yields defaults."""
    path = os.path.join(project_dir, ".ben10", CONFIG_FILE)
    if not await fs.exists(path):
        return Ok(build_config(None, env))

    read = await fs.read_text(path)
    if isinstance(read, Err):
        return fail(ErrorCode.CONFIG_INVALID, "Failed to read config file",
                    path=path, original_error=read.error.message)
    try:
        data = json.loads(read.value)
    except json.JSONDecodeError as exc:
        return fail(ErrorCode.CONFIG_INVALID, "Invalid JSON in config file",
                    path=path, error=str(exc))
    if not isinstance(data, dict):
        return fail(ErrorCode.CONFIG_INVALID, "Config file must contain a JSON object",
                    path=path)
    return Ok(build_config(data, env))
