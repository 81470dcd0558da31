"""Tests for configuration loading and env overrides."""

from __future__ import annotations

import json

import pytest

from ben_ten.config import BenTenConfig, build_config, load_config
from ben_ten.errors import ErrorCode
from ben_ten.fs import MemoryFileSystem

PROJECT = "/work/project"
CONFIG_PATH = f"{PROJECT}/.ben10/config.json"


def test_defaults():
    cfg = build_config({}, env={})
    assert cfg == BenTenConfig()
    assert cfg.to_dict()["excerpt_max_chars"] == 2000


def test_file_values_are_clamped_and_unknown_keys_ignored():
    cfg = build_config(
        {"excerptMaxChars": 999_999, "maxKeyFiles": 0, "logLevel": "warn", "other": 1},
        env={},
    )
    assert cfg.excerpt_max_chars == 20_000
    assert cfg.max_key_files == 1
    assert cfg.log_level == "WARNING"


def test_invalid_values_fall_back_to_defaults():
    cfg = build_config(
        {"logLevel": "chatty", "telemetryExporter": "zipkin", "maxKeyFiles": "ten"},
        env={},
    )
    assert cfg.log_level == "INFO"
    assert cfg.telemetry_exporter == "none"
    assert cfg.max_key_files == 50


def test_replay_budget_settings():
    assert BenTenConfig().replay_max_tokens == 50_000
    cfg = build_config({"maxReplayPercent": 25, "contextWindowSize": 200_000}, env={})
    assert cfg.replay_max_tokens == 50_000
    clamped = build_config({"maxReplayPercent": 95, "contextWindowSize": 500}, env={})
    assert clamped.max_replay_percent == 90
    assert clamped.context_window_size == 10_000
    ignored = build_config({"maxReplayPercent": True, "contextWindowSize": "big"}, env={})
    assert ignored.max_replay_percent == 50
    assert ignored.context_window_size == 100_000


def test_env_overrides_file():
    cfg = build_config(
        {"logLevel": "ERROR", "logJson": False, "telemetryExporter": "otlp"},
        env={
            "BEN10_LOG_LEVEL": "debug",
            "BEN10_LOG_JSON": "true",
            "BEN10_TELEMETRY_EXPORTER": "stdout",
        },
    )
    assert cfg.log_level == "DEBUG"
    assert cfg.log_json is True
    assert cfg.telemetry_exporter == "stdout"


@pytest.mark.asyncio
async def test_load_config_missing_file_gives_defaults():
    result = await load_config(MemoryFileSystem(), PROJECT, env={})
    assert result.ok
    assert result.value == BenTenConfig()


@pytest.mark.asyncio
async def test_load_config_reads_file():
    fs = MemoryFileSystem({CONFIG_PATH: json.dumps({"maxKeyFiles": 7, "logJson": True})})
    result = await load_config(fs, PROJECT, env={})
    assert result.ok
    assert result.value.max_key_files == 7
    assert result.value.log_json is True


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["{nope", "[1, 2]"])
async def test_load_config_invalid(content):
    fs = MemoryFileSystem({CONFIG_PATH: content})
    result = await load_config(fs, PROJECT, env={})
    assert result.error.code is ErrorCode.CONFIG_INVALID
    assert result.error.details["path"] == CONFIG_PATH
