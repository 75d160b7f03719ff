"""CLI module - Command-line interface components."""

from pick_runner.cli.main import main
from pick_runner.cli.parser import parse_arguments

__all__ = ["main", "parse_arguments"]
