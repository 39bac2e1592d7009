"""Structured logging for the prediction market engine.

One line per record, pipe-separated:

    2026-03-02T12:00:00.123Z | INFO | [rid=3f2a9c1e] | RESOLVE | Poll resolved | {"poll_id": "p1"}

The request-id field only appears while an HTTP request is in flight.
Structured payloads go in ``extra={"data": {...}}`` and are redacted
key-by-key before serialization, so secrets never reach the output even
when nested.

Usage:
    from pollmarket.common.logging import get_logger
    logger = get_logger("ODDS")
    logger.info("Odds computed", extra={"data": {"poll_id": "p1", "options": 3}})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from pollmarket.common.config import get_settings

# Set by RequestIdMiddleware, read by the formatter
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MODULE_TAGS = frozenset(
    {
        "ODDS",
        "ANALYTICS",
        "RESOLVE",
        "LEADERBOARD",
        "PREDICT",
        "STORE",
        "CACHE",
        "EVENTS",
        "API",
        "SYSTEM",
        "TEST",
    }
)

REDACTED = "[REDACTED]"
_SECRET_WORDS = ("key", "secret", "password", "token", "private", "credential")


def is_secret_key(key: str) -> bool:
    """True when a field name suggests it carries secret data."""
    key_lower = key.lower()
    return any(word in key_lower for word in _SECRET_WORDS)


def redact(value: Any) -> Any:
    """Return a copy of value with every secret-looking key masked.

    Walks dicts, lists and tuples; other values are returned unchanged.
    """
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and is_secret_key(k) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


class StructuredFormatter(logging.Formatter):
    """Render records as ``timestamp | LEVEL | [rid] | TAG | message | data``."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        stamp = datetime.fromtimestamp(record.created, UTC)
        return stamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{stamp.microsecond // 1000:03d}Z"

    def format(self, record: logging.LogRecord) -> str:
        parts = [self.formatTime(record), record.levelname]

        rid = request_id_var.get("")
        if rid:
            parts.append(f"[rid={rid[:8]}]")

        parts.append(getattr(record, "module_tag", "SYSTEM"))
        parts.append(record.getMessage())

        data = getattr(record, "data", None)
        if data is not None:
            parts.append(json.dumps(redact(data), default=str))

        line = " | ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class ModuleTagLogger(logging.LoggerAdapter):
    """Adapter that stamps every record with its module tag."""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = dict(kwargs.get("extra") or {})
        extra["module_tag"] = self.extra["module_tag"]
        kwargs["extra"] = extra
        return msg, kwargs


_loggers: dict[str, ModuleTagLogger] = {}


def _configured_level() -> int:
    """The Settings.log_level name as a logging level, INFO if unrecognised."""
    level = logging.getLevelName(get_settings().log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def get_logger(module_tag: str) -> ModuleTagLogger:
    """Get the structured logger for a module tag.

    Loggers are created once per tag and write to stdout without
    propagating to the root logger.

    Args:
        module_tag: One of MODULE_TAGS (ODDS, RESOLVE, PREDICT, ...).

    Raises:
        ValueError: If module_tag is not a known tag.
    """
    if module_tag in _loggers:
        return _loggers[module_tag]
    if module_tag not in MODULE_TAGS:
        msg = f"Unknown module tag {module_tag!r}; expected one of {sorted(MODULE_TAGS)}"
        raise ValueError(msg)

    logger = logging.getLogger(f"pollmarket.{module_tag.lower()}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(_configured_level())

    adapter = ModuleTagLogger(logger, {"module_tag": module_tag})
    _loggers[module_tag] = adapter
    return adapter


def configure_logging(level: str | None = None) -> None:
    """Apply a log level to every pollmarket logger created so far.

    Called at application startup so a level changed through the
    environment takes effect for loggers created at import time.
    """
    resolved = logging.getLevelName((level or get_settings().log_level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    for adapter in _loggers.values():
        adapter.logger.setLevel(resolved)
