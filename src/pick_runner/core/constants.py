"""Constants and default values for pick-runner.

This module centralizes all magic numbers, default configurations,
and environment variable names used throughout the application.
"""

from typing import Any

from pick_runner.core.config import LogConfig, MutexConfig, RetryConfig

# ==================== GITHUB API ====================

DEFAULT_API_URL: str = "https://api.github.com"
GITHUB_API_VERSION: str = "2022-11-28"
DEFAULT_HTTP_TIMEOUT: float = 30.0  # Seconds per HTTP request
RUNNERS_PAGE_SIZE: int = 100

# Included Actions minutes assumed when the billing API does not report them
DEFAULT_INCLUDED_MINUTES: int = 3000

# ==================== MUTEX ====================

# Namespace for lock records; full Git ref is refs/<prefix>/<key>
MUTEX_REF_PREFIX: str = "mutex"
DEFAULT_LOCK_TIMEOUT_MS: int = 300_000  # 5 minutes
DEFAULT_LOCK_RETRY_INTERVAL_MS: int = 3_000  # 3 seconds
LOCK_TTL_MS: int = 600_000  # Records older than 10 minutes are reclaimable
# Consecutive reclaim/vanish retries allowed before falling back to a normal sleep
MAX_IMMEDIATE_RETRIES: int = 3
UNKNOWN_VALUE: str = "unknown"

# Characters Git forbids in reference names (see git-check-ref-format)
FORBIDDEN_REF_CHARACTERS: frozenset[str] = frozenset("~^:?*[\\")

# ==================== LOGGING DEFAULTS ====================

VALID_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# ==================== DEFAULT CONFIG INSTANCES ====================

DEFAULT_RETRY = RetryConfig()
DEFAULT_LOG = LogConfig()
DEFAULT_MUTEX = MutexConfig(
    timeout_ms=DEFAULT_LOCK_TIMEOUT_MS,
    retry_interval_ms=DEFAULT_LOCK_RETRY_INTERVAL_MS,
    ttl_ms=LOCK_TTL_MS,
)

DEFAULT_RETRY_CONFIG: dict[str, Any] = DEFAULT_RETRY.to_dict()

# ==================== RETRYABLE ERRORS ====================

# HTTP status codes that should trigger a retry on read-only calls
RETRYABLE_STATUS_CODES: set[int] = {408, 429, 500, 502, 503, 504}

# ==================== ACTION INPUTS ====================

# Action input names (as declared in action.yml)
INPUT_SELF_HOSTED_TAGS: str = "self-hosted-tags"
INPUT_GITHUB_HOSTED_TAGS: str = "github-hosted-tags"
INPUT_GITHUB_HOSTED_LIMIT: str = "github-hosted-limit"
INPUT_GITHUB_TOKEN: str = "github-token"
INPUT_MUTEX_KEY: str = "mutex-key"
INPUT_MUTEX_TIMEOUT: str = "mutex-timeout"
INPUT_MUTEX_RETRY_INTERVAL: str = "mutex-retry-interval"

DEFAULT_GITHUB_HOSTED_LIMIT: int = 1000

# Plain environment fallbacks (also loaded from .env) for local runs
ENV_VAR_PREFIX: str = "PICK_RUNNER_"

# Environment provided by the Actions runner
ENV_RUN_ID: str = "GITHUB_RUN_ID"
ENV_JOB: str = "GITHUB_JOB"
ENV_SHA: str = "GITHUB_SHA"
ENV_REPOSITORY: str = "GITHUB_REPOSITORY"
ENV_REPOSITORY_OWNER: str = "GITHUB_REPOSITORY_OWNER"
ENV_API_URL: str = "GITHUB_API_URL"
ENV_OUTPUT: str = "GITHUB_OUTPUT"
ENV_STEP_SUMMARY: str = "GITHUB_STEP_SUMMARY"

# ==================== OUTPUTS ====================

OUTPUT_SELECTED_RUNNER: str = "selected-runner"
OUTPUT_RUNNER_TYPE: str = "runner-type"
OUTPUT_REASON: str = "reason"
OUTPUT_MUTEX_ACQUIRED: str = "mutex-acquired"

RUNNER_TYPE_SELF_HOSTED: str = "self-hosted"
RUNNER_TYPE_GITHUB_HOSTED: str = "github-hosted"
