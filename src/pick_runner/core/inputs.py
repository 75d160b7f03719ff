"""Action input loading and resolution for pick-runner."""

from __future__ import annotations

import logging
import math
import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from dotenv import load_dotenv

from pick_runner.core.config import ActionInputs, MutexConfig
from pick_runner.core.constants import (
    DEFAULT_GITHUB_HOSTED_LIMIT,
    DEFAULT_MUTEX,
    ENV_REPOSITORY,
    ENV_REPOSITORY_OWNER,
    ENV_VAR_PREFIX,
    INPUT_GITHUB_HOSTED_LIMIT,
    INPUT_GITHUB_HOSTED_TAGS,
    INPUT_GITHUB_TOKEN,
    INPUT_MUTEX_KEY,
    INPUT_MUTEX_RETRY_INTERVAL,
    INPUT_MUTEX_TIMEOUT,
    INPUT_SELF_HOSTED_TAGS,
)
from pick_runner.core.exceptions import ConfigurationError
from pick_runner.core.locks.records import validate_lock_key


def normalize_input_value(value: Any) -> str:
    """Normalize an input value consistently across all sources.

    Handles stripping whitespace and quotes from values.
    """
    if value is None:
        return ""
    s = str(value).strip()
    # Remove surrounding quotes (common in .env files and YAML)
    if len(s) >= 2 and ((s.startswith('"') and s.endswith('"')) or (s.startswith("'") and s.endswith("'"))):
        s = s[1:-1].strip()
    return s


def parse_tags(value: str | None) -> list[str]:
    """Split a comma-separated label list, dropping empty entries."""
    if not value:
        return []
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def parse_non_negative_int(value: str, field: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Input '{field}' must be an integer", field=field, details=repr(value)) from e
    if parsed < 0:
        raise ConfigurationError(f"Input '{field}' cannot be negative", field=field, details=repr(value))
    return parsed


def parse_seconds_to_ms(value: str, field: str, *, allow_zero: bool = True) -> int:
    try:
        seconds = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Input '{field}' must be a number of seconds", field=field, details=repr(value)) from e
    if not math.isfinite(seconds) or seconds < 0 or (seconds == 0 and not allow_zero):
        raise ConfigurationError(f"Input '{field}' is out of range", field=field, details=repr(value))
    return int(seconds * 1000)


def bootstrap_dotenv(logger: logging.Logger) -> None:
    """Load a local .env file into the environment without overriding it."""
    try:
        if load_dotenv(override=False):
            logger.debug(".env file found and loaded")
        else:
            logger.debug(".env file not found")
    except OSError as e:
        logger.debug(f"Failed to load .env via python-dotenv: {e}")


# ==================== INPUT SOURCES ====================


class InputSource(ABC):
    """Abstract base class for a place action inputs can come from."""

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Return the name of this input source."""

    def get(self, name: str) -> str | None:
        value = normalize_input_value(self._get_raw(name))
        return value or None

    @abstractmethod
    def _get_raw(self, name: str) -> Any:
        """Implementation-specific lookup for the input ``name`` (e.g. ``mutex-key``)."""


class MappingInputSource(InputSource):
    """Inputs given explicitly, e.g. from command-line arguments."""

    def __init__(self, values: Mapping[str, Any], name: str = "cli"):
        self.values = values
        self._name = name

    @property
    def source_name(self) -> str:
        return self._name

    def _get_raw(self, name: str) -> Any:
        return self.values.get(name)


class ActionInputSource(InputSource):
    """Inputs passed by the Actions runner as ``INPUT_<NAME>`` variables."""

    @property
    def source_name(self) -> str:
        return "action"

    @staticmethod
    def env_name(name: str) -> str:
        return "INPUT_" + name.replace(" ", "_").upper()

    def _get_raw(self, name: str) -> Any:
        return os.environ.get(self.env_name(name))


class EnvironmentInputSource(InputSource):
    """Inputs from ``PICK_RUNNER_<NAME>`` variables, e.g. loaded from .env."""

    @property
    def source_name(self) -> str:
        return "environment"

    @staticmethod
    def env_name(name: str) -> str:
        return ENV_VAR_PREFIX + name.replace("-", "_").upper()

    def _get_raw(self, name: str) -> Any:
        return os.environ.get(self.env_name(name))


# ==================== INPUT RESOLVER ====================


class InputResolver:
    """Resolves action inputs using a priority-ordered list of sources.

    Default priority order:
    1. Explicit values (command-line arguments)
    2. Actions inputs (``INPUT_*``)
    3. Environment variables (``PICK_RUNNER_*``, optionally from .env)
    """

    def __init__(
        self,
        overrides: Mapping[str, Any] | None = None,
        *,
        sources: list[InputSource] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        if sources is None:
            sources = [ActionInputSource(), EnvironmentInputSource()]
            if overrides:
                sources.insert(0, MappingInputSource(overrides))
        self.sources = sources

    def get(self, name: str, *, required: bool = False, default: str | None = None) -> str | None:
        for source in self.sources:
            value = source.get(name)
            if value is not None:
                self.logger.debug(f"Input '{name}' resolved from {source.source_name}")
                return value
        if required and default is None:
            raise ConfigurationError(
                f"Input required and not supplied: {name}",
                field=name,
                details=f"set '{name}' in the workflow or {EnvironmentInputSource.env_name(name)}",
            )
        return default

    def resolve_repository(self, repository: str | None = None) -> tuple[str, str | None]:
        """Return (owner, repo) from an explicit ``owner/repo`` or the Actions environment."""
        full_name = normalize_input_value(repository) or normalize_input_value(os.environ.get(ENV_REPOSITORY))
        owner = normalize_input_value(os.environ.get(ENV_REPOSITORY_OWNER))
        repo = None
        if full_name:
            repo_owner, _, repo_name = full_name.partition("/")
            if not repo_owner or not repo_name:
                raise ConfigurationError("Repository must be in 'owner/repo' form", field="repository", details=full_name)
            if repository or not owner:
                owner = repo_owner
            repo = repo_name
        if not owner:
            raise ConfigurationError(
                "Cannot determine repository owner",
                field="repository",
                details=f"set {ENV_REPOSITORY_OWNER} or pass --repository owner/repo",
            )
        return owner, repo

    def resolve(self, repository: str | None = None, keep_lock: bool = False) -> ActionInputs:
        """Resolve and validate all inputs for a runner selection."""
        self_hosted_tags = parse_tags(self.get(INPUT_SELF_HOSTED_TAGS, required=True))
        github_hosted_tags = parse_tags(self.get(INPUT_GITHUB_HOSTED_TAGS, required=True))
        if not self_hosted_tags:
            raise ConfigurationError("At least one self-hosted tag is required", field=INPUT_SELF_HOSTED_TAGS)
        if not github_hosted_tags:
            raise ConfigurationError("At least one GitHub-hosted tag is required", field=INPUT_GITHUB_HOSTED_TAGS)

        limit = parse_non_negative_int(
            self.get(INPUT_GITHUB_HOSTED_LIMIT, default=str(DEFAULT_GITHUB_HOSTED_LIMIT)),
            INPUT_GITHUB_HOSTED_LIMIT,
        )
        token = self.get(INPUT_GITHUB_TOKEN, required=True)
        owner, repo = self.resolve_repository(repository)

        mutex_key = self.get(INPUT_MUTEX_KEY)
        if mutex_key is not None:
            mutex_key = validate_lock_key(mutex_key)
            if repo is None:
                raise ConfigurationError(
                    "A repository is required to store mutex locks",
                    field="repository",
                    details=f"set {ENV_REPOSITORY} or pass --repository owner/repo",
                )

        timeout = self.get(INPUT_MUTEX_TIMEOUT)
        interval = self.get(INPUT_MUTEX_RETRY_INTERVAL)
        mutex = MutexConfig(
            timeout_ms=parse_seconds_to_ms(timeout, INPUT_MUTEX_TIMEOUT) if timeout else DEFAULT_MUTEX.timeout_ms,
            retry_interval_ms=(
                parse_seconds_to_ms(interval, INPUT_MUTEX_RETRY_INTERVAL, allow_zero=False)
                if interval
                else DEFAULT_MUTEX.retry_interval_ms
            ),
            ttl_ms=DEFAULT_MUTEX.ttl_ms,
            keep_lock=keep_lock,
        )

        return ActionInputs(
            self_hosted_tags=self_hosted_tags,
            github_hosted_tags=github_hosted_tags,
            github_hosted_limit=limit,
            github_token=token,
            owner=owner,
            repository=repo,
            mutex_key=mutex_key,
            mutex=mutex,
        )
