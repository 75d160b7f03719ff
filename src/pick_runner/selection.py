"""Runner selection between self-hosted and GitHub-hosted runners."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from pick_runner.api.github import BillingInfo, GitHubClient
from pick_runner.core.config import ActionInputs
from pick_runner.core.constants import (
    OUTPUT_MUTEX_ACQUIRED,
    OUTPUT_REASON,
    OUTPUT_RUNNER_TYPE,
    OUTPUT_SELECTED_RUNNER,
    RUNNER_TYPE_GITHUB_HOSTED,
    RUNNER_TYPE_SELF_HOSTED,
)
from pick_runner.core.locks import GitMutex


@dataclass
class RunnerSelection:
    """Outcome of a runner selection, one field per action output."""

    selected_runner: str
    runner_type: str
    reason: str
    mutex_acquired: bool = False

    def to_outputs(self) -> dict[str, str]:
        return {
            OUTPUT_SELECTED_RUNNER: self.selected_runner,
            OUTPUT_RUNNER_TYPE: self.runner_type,
            OUTPUT_REASON: self.reason,
            OUTPUT_MUTEX_ACQUIRED: "true" if self.mutex_acquired else "false",
        }


def format_runner_labels(tags: list[str]) -> str:
    """JSON for ``runs-on``: a bare string for one label, a list otherwise."""
    if len(tags) == 1:
        return json.dumps(tags[0])
    return json.dumps(tags, separators=(",", ":"))


def format_minutes(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def has_available_self_hosted_runners(runners: Iterable[dict[str, Any]], tags: list[str]) -> bool:
    """True if some runner is online, idle, and carries every required label."""
    required = [tag.strip() for tag in tags]
    for runner in runners:
        if runner.get("status") != "online" or runner.get("busy"):
            continue
        labels = {label.get("name") for label in runner.get("labels") or []}
        if all(tag in labels for tag in required):
            return True
    return False


def has_sufficient_hosted_minutes(billing: BillingInfo, limit: int) -> bool:
    return billing.remaining_minutes >= limit


def select_runner(
    inputs: ActionInputs,
    runners: list[dict[str, Any]],
    billing: BillingInfo,
    mutex: GitMutex | None = None,
    logger: logging.Logger | None = None,
) -> RunnerSelection:
    """Pick a runner type from runner availability and remaining hosted minutes.

    When ``mutex`` is given, an available self-hosted runner is only chosen
    if the lock can be acquired within the configured timeout; otherwise
    selection continues with the GitHub-hosted minutes check. The caller
    owns releasing an acquired lock.

    Raises:
        APIError: If acquiring the lock fails for a reason other than contention.
    """
    log = logger or logging.getLogger(__name__)
    self_hosted = format_runner_labels(inputs.self_hosted_tags)

    if has_available_self_hosted_runners(runners, inputs.self_hosted_tags):
        log.info("Self-hosted runners are available and not busy")
        if mutex is None:
            return RunnerSelection(self_hosted, RUNNER_TYPE_SELF_HOSTED, "Self-hosted runners are available")

        log.info(f"Acquiring mutex lock: {mutex.key}")
        if mutex.acquire(inputs.mutex.timeout_ms, inputs.mutex.retry_interval_ms):
            return RunnerSelection(
                self_hosted,
                RUNNER_TYPE_SELF_HOSTED,
                f"Self-hosted runners available with mutex protection ({mutex.key})",
                mutex_acquired=True,
            )
        log.info("Could not acquire mutex lock, checking GitHub-hosted runners")
    else:
        log.info("Self-hosted runners are not available or busy")

    remaining = format_minutes(billing.remaining_minutes)
    limit = inputs.github_hosted_limit
    if has_sufficient_hosted_minutes(billing, limit):
        log.info(f"GitHub-hosted runners have sufficient remaining minutes: {remaining} >= {limit}")
        return RunnerSelection(
            format_runner_labels(inputs.github_hosted_tags),
            RUNNER_TYPE_GITHUB_HOSTED,
            f"GitHub-hosted runners have sufficient remaining minutes ({remaining} >= {limit})",
        )

    log.info(f"GitHub-hosted runners do not have sufficient remaining minutes: {remaining} < {limit}")
    log.info("Falling back to self-hosted runners even if busy")
    return RunnerSelection(
        self_hosted,
        RUNNER_TYPE_SELF_HOSTED,
        f"GitHub-hosted runners insufficient ({remaining} < {limit}), using self-hosted as fallback",
    )


def fetch_runner_state(
    client: GitHubClient, inputs: ActionInputs, logger: logging.Logger | None = None
) -> tuple[list[dict[str, Any]], BillingInfo]:
    """Fetch self-hosted runners and Actions billing for the inputs' owner."""
    log = logger or logging.getLogger(__name__)
    log.info(f"Checking runners for owner: {inputs.owner}")
    log.info(f"Self-hosted tags: {', '.join(inputs.self_hosted_tags)}")
    log.info(f"GitHub-hosted tags: {', '.join(inputs.github_hosted_tags)}")
    log.info(f"GitHub-hosted limit: {inputs.github_hosted_limit} minutes")

    is_org = client.is_organization(inputs.owner)
    log.info("Fetching runner information...")
    runners = client.list_self_hosted_runners(inputs.owner, inputs.repository, is_org=is_org)
    billing = client.get_billing_info(inputs.owner, is_org=is_org)

    log.info(f"Found {len(runners)} self-hosted runners")
    log.info(
        f"GitHub Actions billing - Used: {format_minutes(billing.total_minutes_used)}/"
        f"{format_minutes(billing.included_minutes)} minutes"
    )
    return runners, billing


def build_selection_step_summary(selection: RunnerSelection, inputs: ActionInputs) -> str:
    """Build markdown summary for the job summary page."""
    lines = [
        "### Runner Selection",
        "",
        "| Output | Value |",
        "|---|---|",
        f"| Runner type | {selection.runner_type} |",
        f"| Selected runner | `{selection.selected_runner}` |",
        f"| Reason | {selection.reason} |",
    ]
    if inputs.mutex_key:
        lines.append(f"| Mutex ({inputs.mutex_key}) | {'acquired' if selection.mutex_acquired else 'not acquired'} |")
    return "\n".join(lines)
