"""CLI entrypoint for pick-runner."""

from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os

from pick_runner.api.github import GitHubClient
from pick_runner.cli.parser import parse_arguments
from pick_runner.core.constants import (
    ENV_SHA,
    INPUT_GITHUB_HOSTED_LIMIT,
    INPUT_GITHUB_HOSTED_TAGS,
    INPUT_GITHUB_TOKEN,
    INPUT_MUTEX_KEY,
    INPUT_MUTEX_RETRY_INTERVAL,
    INPUT_MUTEX_TIMEOUT,
    INPUT_SELF_HOSTED_TAGS,
)
from pick_runner.core.exceptions import ConfigurationError, PickRunnerError
from pick_runner.core.inputs import InputResolver, bootstrap_dotenv
from pick_runner.core.locks import (
    GitMutex,
    GitRefStore,
    LifecycleGuard,
    describe_lock,
    release_lock_record,
    validate_lock_key,
)
from pick_runner.core.logging import setup_logging
from pick_runner.outputs import append_step_summary, mask_value, set_failed, set_output
from pick_runner.selection import (
    RunnerSelection,
    build_selection_step_summary,
    fetch_runner_state,
    select_runner,
)


def _input_overrides(args: argparse.Namespace) -> dict[str, str | None]:
    """Map command-line options onto action input names."""
    return {
        INPUT_SELF_HOSTED_TAGS: getattr(args, "self_hosted_tags", None),
        INPUT_GITHUB_HOSTED_TAGS: getattr(args, "github_hosted_tags", None),
        INPUT_GITHUB_HOSTED_LIMIT: getattr(args, "github_hosted_limit", None),
        INPUT_GITHUB_TOKEN: args.token,
        INPUT_MUTEX_KEY: getattr(args, "mutex_key", None),
        INPUT_MUTEX_TIMEOUT: args.mutex_timeout,
        INPUT_MUTEX_RETRY_INTERVAL: args.mutex_retry_interval,
    }


def _lock_store(resolver: InputResolver, args: argparse.Namespace, logger: logging.Logger) -> tuple[GitRefStore, str]:
    """Build the ref store and validated key for the release/status commands."""
    key = validate_lock_key(resolver.get(INPUT_MUTEX_KEY, required=True))
    token = resolver.get(INPUT_GITHUB_TOKEN, required=True)
    mask_value(token)
    owner, repo = resolver.resolve_repository(args.repository)
    if repo is None:
        raise ConfigurationError(
            "A repository is required to store mutex locks",
            field="repository",
            details="set GITHUB_REPOSITORY or pass --repository owner/repo",
        )
    client = GitHubClient.from_environment(token, logger=logger)
    return GitRefStore(client, owner, repo, base_sha=os.environ.get(ENV_SHA), logger=logger), key


def _publish(selection: RunnerSelection, summary: str, logger: logging.Logger) -> None:
    for name, value in selection.to_outputs().items():
        set_output(name, value, logger)
    append_step_summary(summary, logger)
    logger.info(f"Selected {selection.runner_type} runner {selection.selected_runner}: {selection.reason}")


def run_select(args: argparse.Namespace, logger: logging.Logger) -> int:
    resolver = InputResolver(_input_overrides(args), logger=logger)
    inputs = resolver.resolve(repository=args.repository, keep_lock=args.keep_lock)
    mask_value(inputs.github_token)

    client = GitHubClient.from_environment(inputs.github_token, logger=logger)
    runners, billing = fetch_runner_state(client, inputs, logger)

    mutex = None
    if inputs.mutex_key:
        store = GitRefStore(
            client,
            inputs.owner,
            inputs.repository,
            base_sha=os.environ.get(ENV_SHA),
            logger=logger,
        )
        mutex = GitMutex(store, inputs.mutex_key, ttl_ms=inputs.mutex.ttl_ms, logger=logger)

    # release is a no-op unless select_runner took the lock
    if mutex is None or inputs.mutex.keep_lock:
        scope = contextlib.nullcontext()
    else:
        scope = LifecycleGuard(mutex.release, name=f"mutex lock {mutex.key}", logger=logger)

    with scope:
        selection = select_runner(inputs, runners, billing, mutex, logger)
        summary = build_selection_step_summary(selection, inputs)
        _publish(selection, summary, logger)

    if mutex is not None and mutex.acquired and inputs.mutex.keep_lock:
        logger.info(f"Keeping mutex lock {mutex.key}; release it with 'pick-runner release --mutex-key {mutex.key}'")
    return 0


def run_release(args: argparse.Namespace, logger: logging.Logger) -> int:
    resolver = InputResolver(_input_overrides(args), logger=logger)
    store, key = _lock_store(resolver, args, logger)
    release_lock_record(store, key, logger)
    return 0


def run_status(args: argparse.Namespace, logger: logging.Logger) -> int:
    resolver = InputResolver(_input_overrides(args), logger=logger)
    store, key = _lock_store(resolver, args, logger)
    print(json.dumps(describe_lock(store, key), indent=2))
    return 0


COMMAND_HANDLERS = {
    "select": run_select,
    "release": run_release,
    "status": run_status,
}


def main(argv: list[str] | None = None) -> int:
    """Run pick-runner and return the process exit code."""
    args = parse_arguments(argv)
    logger = setup_logging(args.log_level, args.log_format)
    bootstrap_dotenv(logger)

    try:
        return COMMAND_HANDLERS[args.command](args, logger)
    except (PickRunnerError, OSError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        return set_failed(f"Action failed: {e}")
