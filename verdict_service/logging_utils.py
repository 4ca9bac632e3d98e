# Copyright 2025 Verdict Service Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Structured JSON logging utilities."""

import json
import logging
import sys
import time
from typing import Any

_ROOT_NAME = "verdict_service"


class StructuredLogger:
    """Structured JSON logger with consistent formatting.

    Every record is a single JSON object carrying ``ts``, ``level``, ``logger``
    and ``event`` plus any keyword fields supplied by the caller.
    """

    def __init__(self, name: str, level: int | None = None):
        self.name = name
        self.logger = logging.getLogger(name)
        root = logging.getLogger(_ROOT_NAME)
        if not root.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter("%(message)s"))  # JSON output
            root.addHandler(handler)
            root.setLevel(logging.INFO)
        if level is not None:
            self.logger.setLevel(level)

    def _log(self, level: int, event: str, **fields: Any) -> None:
        record = {
            "ts": round(time.time(), 3),
            "level": logging.getLevelName(level),
            "logger": self.name,
            "event": event,
            **fields,
        }
        try:
            self.logger.log(level, json.dumps(record, separators=(",", ":"), default=str))
        except Exception as err:  # noqa: BLE001
            # Fallback to basic logging if JSON serialization fails
            self.logger.log(level, f"LOG_SERIALIZE_ERROR event={event} error={err}")

    def debug(self, event: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self._log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self._log(logging.ERROR, event, **fields)

    def critical(self, event: str, **fields: Any) -> None:
        self._log(logging.CRITICAL, event, **fields)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance for a specific module."""
    if not name.startswith(_ROOT_NAME):
        name = f"{_ROOT_NAME}.{name}"
    return StructuredLogger(name)


def configure_logging(level: str | int = "INFO") -> None:
    """Set the level for every logger under the package root."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    StructuredLogger(_ROOT_NAME)
    logging.getLogger(_ROOT_NAME).setLevel(level)

    # web3 and httpx are chatty at INFO
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def truncate(text: str | None, max_length: int = 80) -> str:
    """Shorten text for log fields."""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
