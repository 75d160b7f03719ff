"""GitHub Actions workflow command and output-file helpers."""

from __future__ import annotations

import logging
import os
import sys
import uuid
from typing import TextIO

from pick_runner.core.constants import ENV_OUTPUT, ENV_STEP_SUMMARY


def _escape_command_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def format_output_entry(name: str, value: str) -> str:
    """Format one ``GITHUB_OUTPUT`` entry, using heredoc form for multi-line values."""
    if "\n" not in value and "\r" not in value:
        return f"{name}={value}\n"
    delimiter = f"ghadelimiter_{uuid.uuid4()}"
    while delimiter in value:
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
    return f"{name}<<{delimiter}\n{value}\n{delimiter}\n"


def set_output(name: str, value: str, logger: logging.Logger | None = None) -> bool:
    """Write a step output. Returns False when no output file is available."""
    log = logger or logging.getLogger(__name__)
    output_path = os.environ.get(ENV_OUTPUT)
    if not output_path:
        log.info(f"Output {name}={value}")
        return False

    try:
        with open(output_path, "a", encoding="utf-8") as f:
            f.write(format_output_entry(name, value))
        return True
    except OSError as e:
        log.warning(f"Failed to write step output {name}: {e}")
        return False


def append_step_summary(markdown: str, logger: logging.Logger | None = None) -> bool:
    """Append markdown to GitHub Actions job summary when available."""
    summary_path = os.environ.get(ENV_STEP_SUMMARY)
    if not summary_path:
        return False

    try:
        with open(summary_path, "a", encoding="utf-8") as f:
            f.write(markdown.rstrip() + "\n\n")
        return True
    except OSError as e:
        if logger is not None:
            logger.warning(f"Failed to write GitHub step summary: {e}")
        return False


def mask_value(value: str | None, stream: TextIO | None = None) -> None:
    """Ask the runner to mask ``value`` in all later log output."""
    if not value:
        return
    print(f"::add-mask::{_escape_command_data(value)}", file=stream or sys.stdout, flush=True)


def set_failed(message: str, stream: TextIO | None = None) -> int:
    """Emit an error annotation and return the failing exit code."""
    print(f"::error::{_escape_command_data(message)}", file=stream or sys.stdout, flush=True)
    return 1
