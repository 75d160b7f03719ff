"""
pick-runner - choose between self-hosted and GitHub-hosted runners

Selects a runner from self-hosted availability and remaining GitHub-hosted
minutes, optionally serializing self-hosted use across workflow runs with a
mutex stored as a Git reference.
"""

from __future__ import annotations

from pick_runner.core.locks import GitMutex, GitRefStore, InMemoryRefStore, LifecycleGuard
from pick_runner.core.version import __version__

__all__ = ["GitMutex", "GitRefStore", "InMemoryRefStore", "LifecycleGuard", "__version__", "main"]


def main(argv: list[str] | None = None) -> int:
    from pick_runner.cli.main import main as cli_main

    return cli_main(argv)
