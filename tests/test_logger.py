"""Tests for logger construction."""

from __future__ import annotations

import io
import json

from ben_ten.config import BenTenConfig
from ben_ten.logger import create_logger


def test_text_logger_respects_level():
    stream = io.StringIO()
    logger = create_logger(BenTenConfig(log_level="WARNING"), stream=stream, name="ben_ten.t1")
    logger.info("hidden")
    logger.warning("shown %d", 1)
    out = stream.getvalue()
    assert "hidden" not in out
    assert "WARNING ben_ten.t1: shown 1" in out


def test_json_logger_emits_one_object_per_line():
    stream = io.StringIO()
    logger = create_logger(BenTenConfig(log_json=True), stream=stream, name="ben_ten.t2")
    logger.info("hello")
    logger.error("bye")
    lines = stream.getvalue().strip().splitlines()
    records = [json.loads(line) for line in lines]
    assert [r["message"] for r in records] == ["hello", "bye"]
    assert records[1]["level"] == "ERROR"
    assert records[0]["logger"] == "ben_ten.t2"


def test_recreating_logger_does_not_duplicate_handlers():
    stream = io.StringIO()
    create_logger(stream=stream, name="ben_ten.t3")
    logger = create_logger(stream=stream, name="ben_ten.t3")
    assert len(logger.handlers) == 1
    assert logger.propagate is False
    logger.info("once")
    assert stream.getvalue().count("once") == 1
