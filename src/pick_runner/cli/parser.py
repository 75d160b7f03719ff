"""Command-line argument parsing for pick-runner."""

from __future__ import annotations

import argparse
import sys

from pick_runner.core.constants import DEFAULT_LOG, VALID_LOG_LEVELS
from pick_runner.core.version import __version__

COMMANDS: tuple[str, ...] = ("select", "release", "status")
DEFAULT_COMMAND = "select"


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        type=str.upper,
        choices=VALID_LOG_LEVELS,
        default=None,
        help="Logging level (default: LOG_LEVEL environment variable or INFO)",
    )
    common.add_argument(
        "--log-format",
        choices=("text", "json"),
        default=DEFAULT_LOG.format,
        help="Log output format (default: text)",
    )
    common.add_argument("--token", default=None, help="GitHub token (default: github-token input)")
    common.add_argument(
        "--repository",
        metavar="OWNER/REPO",
        default=None,
        help="Repository holding lock refs (default: GITHUB_REPOSITORY)",
    )
    common.add_argument(
        "--mutex-timeout",
        metavar="SECONDS",
        default=None,
        help="How long to wait for the mutex lock (default: 300)",
    )
    common.add_argument(
        "--mutex-retry-interval",
        metavar="SECONDS",
        default=None,
        help="Wait between attempts while the lock is busy (default: 3)",
    )
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_options()
    parser = argparse.ArgumentParser(
        prog="pick-runner",
        description="Pick between self-hosted and GitHub-hosted runners, optionally serialized by a Git ref mutex",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Select a runner from action inputs (INPUT_* variables)
  pick-runner

  # Select with a mutex and keep the lock for a later release step
  pick-runner select --mutex-key deploy-runner --keep-lock

  # Release a kept lock
  pick-runner release --mutex-key deploy-runner

  # Inspect a lock
  pick-runner status --mutex-key deploy-runner --repository octo-org/app

Inputs may also be given as PICK_RUNNER_<NAME> variables or in a .env file,
e.g. PICK_RUNNER_SELF_HOSTED_TAGS=linux,self-hosted
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    select = subparsers.add_parser("select", parents=[common], help="Select a runner (default)")
    select.add_argument("--self-hosted-tags", default=None, help="Comma-separated self-hosted runner labels")
    select.add_argument("--github-hosted-tags", default=None, help="Comma-separated GitHub-hosted runner labels")
    select.add_argument("--github-hosted-limit", default=None, help="Minimum remaining hosted minutes")
    select.add_argument("--mutex-key", default=None, help="Serialize self-hosted runner use under this key")
    select.add_argument(
        "--keep-lock",
        action="store_true",
        help="Leave an acquired lock in place for a later 'release' step",
    )

    release = subparsers.add_parser("release", parents=[common], help="Release a mutex lock")
    release.add_argument("--mutex-key", default=None, help="Key of the lock to release")

    status = subparsers.add_parser("status", parents=[common], help="Show a mutex lock as JSON")
    status.add_argument("--mutex-key", default=None, help="Key of the lock to inspect")

    return parser


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments, defaulting to the ``select`` command."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or (args[0] not in COMMANDS and args[0] not in ("-h", "--help", "--version")):
        args.insert(0, DEFAULT_COMMAND)
    return build_parser().parse_args(args)
