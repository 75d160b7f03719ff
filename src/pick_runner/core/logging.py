"""Logging helpers for pick-runner."""

from __future__ import annotations

import atexit
import contextlib
import json
import logging
import os
import re
import sys
from datetime import UTC, datetime
from typing import TextIO

from pick_runner.core.constants import VALID_LOG_LEVELS

_LOG_RECORD_RESERVED_FIELDS = set(logging.makeLogRecord({}).__dict__.keys()) | {"message", "asctime", "extra_fields"}
_REDACTION_FLAG_ATTR = "_pick_runner_redacted"
_REDACTED_VALUE = "[REDACTED]"
_SENSITIVE_FIELD_PARTS = {"token", "secret", "password", "authorization"}

# GitHub token formats: classic/OAuth/app/refresh prefixes and fine-grained PATs
_GITHUB_TOKEN_PATTERN = re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})\b")
_BEARER_PATTERN = re.compile(r"(?i)\b(bearer)\s+([A-Za-z0-9._~+/=-]{8,})")
_KEY_VALUE_PATTERN = re.compile(
    r"""(?ix)
    (?P<key>["']?(?:github[_-]?token|access[_-]?token|token|secret|password|authorization)["']?)
    (?P<separator>\s*[:=]\s*)
    (?P<value>"[^"]*"|'[^']*'|[^,\s;}\]]+)
    """
)


def _safe_str(value: object) -> str:
    try:
        return str(value)
    except Exception:
        return "<unprintable>"


def _safe_record_message(record: logging.LogRecord) -> str:
    try:
        return record.getMessage()
    except Exception:
        # Keep logging resilient when message formatting fails (bad placeholders or broken __str__).
        return f"{_safe_str(getattr(record, 'msg', ''))} [log-message-format-error]"


def _is_sensitive_field(name: str) -> bool:
    parts = [part for part in re.split(r"[^a-z0-9]+", name.lower()) if part]
    return any(part in _SENSITIVE_FIELD_PARTS for part in parts)


def _redact_key_value_match(match: re.Match[str]) -> str:
    value = match.group("value")
    if len(value) >= 2 and value[0] in {"'", '"'} and value[-1] == value[0]:
        redacted = f"{value[0]}{_REDACTED_VALUE}{value[0]}"
    else:
        redacted = _REDACTED_VALUE
    return f"{match.group('key')}{match.group('separator')}{redacted}"


def redact_message(message: str) -> str:
    """Mask GitHub tokens and credential-looking key/value pairs in a message."""
    redacted = _GITHUB_TOKEN_PATTERN.sub(_REDACTED_VALUE, message)
    redacted = _BEARER_PATTERN.sub(lambda m: f"{m.group(1)} {_REDACTED_VALUE}", redacted)
    return _KEY_VALUE_PATTERN.sub(_redact_key_value_match, redacted)


def _redact_value(value: object) -> object:
    if isinstance(value, dict):
        return {
            key: _REDACTED_VALUE if _is_sensitive_field(_safe_str(key)) else _redact_value(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(item) for item in value)
    if isinstance(value, str):
        return redact_message(value)
    return value


class SensitiveDataFilter(logging.Filter):
    """Best-effort redaction for sensitive values in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.__dict__.get(_REDACTION_FLAG_ATTR):
            return True

        record.msg = redact_message(_safe_record_message(record))
        record.args = ()

        for key, value in list(record.__dict__.items()):
            if key in _LOG_RECORD_RESERVED_FIELDS or key.startswith("_"):
                continue
            if _is_sensitive_field(key):
                record.__dict__[key] = _REDACTED_VALUE
                continue
            with contextlib.suppress(Exception):
                record.__dict__[key] = _redact_value(value)
        record.__dict__[_REDACTION_FLAG_ATTR] = True
        return True


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging output.

    Each log record is a single JSON object on one line.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        message = _safe_record_message(record)
        if not record.__dict__.get(_REDACTION_FLAG_ATTR):
            message = redact_message(message)

        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process": record.process,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Custom LogRecord attributes set via logging's `extra`.
        for key, value in record.__dict__.items():
            if key in _LOG_RECORD_RESERVED_FIELDS or key.startswith("_"):
                continue
            log_entry.setdefault(key, _REDACTED_VALUE if _is_sensitive_field(key) else _redact_value(value))

        return json.dumps(log_entry, default=str)


_atexit_registered = False


def setup_logging(
    log_level: str | None = None,
    log_format: str = "text",
    stream: TextIO | None = None,
) -> logging.Logger:
    """Configure console logging for the CLI.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format - "text" (default) or "json" for structured logging
        stream: Output stream (default: stdout, where the Actions log is captured)

    Returns:
        Configured package logger

    Priority: 1) Passed parameter, 2) Environment variable LOG_LEVEL, 3) Default INFO
    """
    global _atexit_registered

    # Register atexit handler once to ensure logs are flushed on exit
    if not _atexit_registered:
        atexit.register(logging.shutdown)
        _atexit_registered = True

    if log_level is None:
        log_level = os.environ.get("LOG_LEVEL", "INFO")

    if log_level.upper() not in VALID_LOG_LEVELS:
        print(f"Warning: Invalid log level '{log_level}', using INFO", file=sys.stderr)
        log_level = "INFO"

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Clear any existing handlers from root logger
    for handler in logging.root.handlers[:]:
        handler.close()
        logging.root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    if log_format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
    handler.setLevel(numeric_level)
    handler.addFilter(SensitiveDataFilter())
    logging.root.addHandler(handler)
    logging.root.setLevel(numeric_level)

    logger = logging.getLogger("pick_runner")
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    logger.debug(f"Logging initialized at {log_level.upper()} ({log_format})")
    return logger
