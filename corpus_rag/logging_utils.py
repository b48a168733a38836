from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict

LEVEL_ENV_VARS = ("CORPUS_RAG_LOG_LEVEL", "LOG_LEVEL")
NOISY_LOGGERS = ("urllib3", "requests", "asyncio")


class _PlainFormatter(logging.Formatter):
    """Single-line formatter for stderr."""

    default_fmt = "%(levelname)s %(name)s - %(message)s"
    verbose_fmt = "%(asctime)s %(levelname)s %(name)s [%(taskName)s] %(filename)s:%(lineno)d - %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    def __init__(self, debug: bool = False) -> None:
        super().__init__(fmt=self.verbose_fmt if debug else self.default_fmt, datefmt=self.datefmt, defaults={"taskName": "-"})


class _JsonFormatter(logging.Formatter):
    """JSON lines formatter (each record is one JSON object)."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "file": record.filename,
            "line": record.lineno,
        }
        task = getattr(record, "taskName", None)
        if task:
            payload["task"] = task
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _coerce_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        upper = level.strip().upper()
        if upper in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}:
            return getattr(logging, upper)
        if upper.isdigit():
            return int(upper)
    return logging.INFO


def env_level() -> str | None:
    for name in LEVEL_ENV_VARS:
        value = os.getenv(name)
        if value:
            return value
    return None


def setup_logging(level: str | int | None = None, json_logs: bool = False) -> int:
    """
    Configure root logging for the process and return the effective level.

    Precedence: explicit `level`, then CORPUS_RAG_LOG_LEVEL, then LOG_LEVEL,
    then INFO. Calling it again replaces the previous handler.
    """
    final_level = _coerce_level(level or env_level() or logging.INFO)

    root = logging.getLogger()
    root.setLevel(final_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(stream=sys.stderr)
    if json_logs:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(_PlainFormatter(debug=final_level <= logging.DEBUG))
    root.addHandler(handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(final_level, logging.WARNING))
    return final_level
