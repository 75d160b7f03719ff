"""Configuration dataclasses for pick-runner.

These dataclasses centralize all configuration options for type safety
and easy testing. They can be created from command-line arguments or
used directly in code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class RetryConfig:
    """Configuration for retry logic with exponential backoff.

    Only read-only API calls are retried. Lock store mutations are single
    attempts so an outage is never mistaken for contention.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay cap in seconds (default: 30.0)
        exponential_base: Multiplier for exponential backoff (default: 2)
        jitter: Add randomization to delays (default: True)
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: int = 2
    jitter: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for the retry helpers."""
        return {
            "max_retries": self.max_retries,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "exponential_base": self.exponential_base,
            "jitter": self.jitter,
        }


@dataclass
class LogConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level string (default: "INFO")
        format: "text" or "json" (default: "text")
    """

    level: str = "INFO"
    format: str = "text"


@dataclass
class MutexConfig:
    """Configuration for the Git ref mutex.

    Attributes:
        timeout_ms: How long acquire keeps retrying (default: 5 minutes)
        retry_interval_ms: Sleep between contended attempts (default: 3 seconds)
        ttl_ms: Age after which a lock record is reclaimable (default: 10 minutes)
        keep_lock: Leave an acquired lock in place after the command exits
    """

    timeout_ms: int = 300_000
    retry_interval_ms: int = 3_000
    ttl_ms: int = 600_000
    keep_lock: bool = False


@dataclass
class ActionInputs:
    """Resolved inputs for a runner selection.

    Attributes:
        self_hosted_tags: Labels a self-hosted runner must carry
        github_hosted_tags: Labels emitted when GitHub-hosted runners are picked
        github_hosted_limit: Minimum remaining hosted minutes
        github_token: Token with org admin (runners, billing) and contents permissions
        owner: Repository owner (organization or user)
        repository: Repository name, without owner
        mutex_key: Optional key serializing self-hosted runner use
        mutex: Mutex timing configuration
    """

    self_hosted_tags: list[str]
    github_hosted_tags: list[str]
    github_hosted_limit: int
    github_token: str
    owner: str
    repository: str | None = None
    mutex_key: str | None = None
    mutex: MutexConfig = field(default_factory=MutexConfig)
