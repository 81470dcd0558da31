"""Logger construction. Output goes to stderr only.

stdout belongs to the hook's status block and to JSON-RPC traffic, so a
stray log line there would corrupt the host's input.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TextIO

from .config import BenTenConfig

LOGGER_NAME = "ben_ten"
TEXT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def create_logger(
    config: BenTenConfig | None = None,
    stream: TextIO | None = None,
    name: str = LOGGER_NAME,
) -> logging.Logger:
    """Build the process logger from *config*.

    Re-running replaces previously installed handlers, so calling it twice
    never duplicates output.
    """
    config = config or BenTenConfig()
    logger = logging.getLogger(name)
    logger.setLevel(config.log_level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter() if config.log_json else logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
    return logger
