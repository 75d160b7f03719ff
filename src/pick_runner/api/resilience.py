"""API resilience utilities for pick-runner.

This module provides error messages and retry logic for read-only GitHub
API calls (runners, billing, organization lookups). Lock store mutations
never go through here: an outage must surface as an error, not be absorbed
into a retry loop.
"""

from __future__ import annotations

import logging
import math
import os
import random
import time
from collections.abc import Callable
from typing import Any, TypeVar

from pick_runner.core.constants import DEFAULT_RETRY_CONFIG
from pick_runner.core.exceptions import RetryableHTTPError


def _parse_env_numeric(value: str | None, cast: Callable[[str], Any]) -> Any | None:
    """Parse an environment value, returning None when invalid."""
    if value is None:
        return None
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        return None
    if isinstance(parsed, float) and not math.isfinite(parsed):
        return None
    return parsed


def _effective_retry_config() -> dict[str, Any]:
    """Return retry config with env-var overrides applied.

    ``MAX_RETRIES``, ``RETRY_BASE_DELAY`` and ``RETRY_MAX_DELAY`` override the
    defaults without mutating DEFAULT_RETRY_CONFIG.
    """
    cfg = dict(DEFAULT_RETRY_CONFIG)
    logger = logging.getLogger(__name__)

    parsed_max_retries = _parse_env_numeric(os.environ.get("MAX_RETRIES"), int)
    if parsed_max_retries is not None and parsed_max_retries >= 0:
        cfg["max_retries"] = parsed_max_retries
    elif "MAX_RETRIES" in os.environ:
        logger.warning(
            f"Ignoring invalid MAX_RETRIES={os.environ.get('MAX_RETRIES')!r}; using default {cfg['max_retries']}"
        )

    parsed_base_delay = _parse_env_numeric(os.environ.get("RETRY_BASE_DELAY"), float)
    if parsed_base_delay is not None and parsed_base_delay >= 0:
        cfg["base_delay"] = parsed_base_delay
    elif "RETRY_BASE_DELAY" in os.environ:
        logger.warning(
            f"Ignoring invalid RETRY_BASE_DELAY={os.environ.get('RETRY_BASE_DELAY')!r}; "
            f"using default {cfg['base_delay']}"
        )

    parsed_max_delay = _parse_env_numeric(os.environ.get("RETRY_MAX_DELAY"), float)
    if parsed_max_delay is not None and parsed_max_delay >= 0:
        cfg["max_delay"] = parsed_max_delay
    elif "RETRY_MAX_DELAY" in os.environ:
        logger.warning(
            f"Ignoring invalid RETRY_MAX_DELAY={os.environ.get('RETRY_MAX_DELAY')!r}; using default {cfg['max_delay']}"
        )

    # Guard against invalid windows that can otherwise cause negative sleep.
    if cfg["max_delay"] < cfg["base_delay"]:
        logger.warning(
            f"Ignoring invalid retry delay window (max_delay={cfg['max_delay']} < base_delay={cfg['base_delay']}); "
            f"using max_delay={cfg['base_delay']}"
        )
        cfg["max_delay"] = cfg["base_delay"]

    return cfg


class ErrorMessageHelper:
    """Provides contextual error messages with actionable suggestions."""

    @staticmethod
    def get_http_error_message(status_code: int, operation: str = "API call") -> str:
        """Get detailed error message with suggestions for HTTP status codes."""
        messages = {
            401: {
                "title": "Authentication Failed",
                "reason": "The github-token is invalid or has expired",
                "suggestions": [
                    "Check that the github-token input is set from a secret",
                    "Regenerate the token if it has expired",
                ],
            },
            403: {
                "title": "Access Forbidden",
                "reason": "The token lacks a required permission or hit a secondary rate limit",
                "suggestions": [
                    "Runners and billing need an org admin (or repo admin) token",
                    "Mutex locks need contents: write on the repository",
                    "Wait a few minutes if a secondary rate limit was reported",
                ],
            },
            404: {
                "title": "Resource Not Found",
                "reason": "The owner or repository does not exist or is not visible to the token",
                "suggestions": [
                    "Verify GITHUB_REPOSITORY / --repository",
                    "Confirm the token can see the repository",
                ],
            },
            429: {
                "title": "Rate Limit Exceeded",
                "reason": "Too many requests sent to the API",
                "suggestions": [
                    "Wait for the rate limit window to reset",
                    "Increase RETRY_MAX_DELAY to back off longer",
                ],
            },
            500: {
                "title": "Internal Server Error",
                "reason": "GitHub encountered an error",
                "suggestions": [
                    "This is typically temporary - retry in a few minutes",
                    "Check https://www.githubstatus.com/ for incidents",
                ],
            },
            502: {
                "title": "Bad Gateway",
                "reason": "Upstream server error or network issue",
                "suggestions": ["Wait a few minutes and retry", "Increase MAX_RETRIES"],
            },
            503: {
                "title": "Service Unavailable",
                "reason": "GitHub is temporarily unavailable",
                "suggestions": [
                    "Check https://www.githubstatus.com/ for incidents",
                    "Increase MAX_RETRIES to retry automatically",
                ],
            },
        }

        error_info = messages.get(
            status_code,
            {
                "title": f"HTTP {status_code}",
                "reason": "An unexpected HTTP error occurred",
                "suggestions": ["Check your network connection", "Review logs for more details"],
            },
        )

        output = [
            f"HTTP {status_code}: {error_info['title']}",
            f"Operation: {operation}",
            f"Why this happened: {error_info['reason']}",
            "How to fix it:",
        ]
        for i, suggestion in enumerate(error_info["suggestions"], 1):
            output.append(f"  {i}. {suggestion}")
        return "\n".join(output)

    @staticmethod
    def get_network_error_message(error: Exception, operation: str = "operation") -> str:
        """Get detailed message for network-related errors."""
        return "\n".join(
            [
                f"Network Error: {type(error).__name__}",
                f"During: {operation}",
                f"Error details: {error!s}",
                "How to fix it:",
                "  1. Check connectivity to the GitHub API from the runner",
                "  2. Verify proxy settings (HTTPS_PROXY) if the runner is behind one",
                "  3. Increase MAX_RETRIES to retry automatically",
            ]
        )


# Exceptions that should trigger a retry (transient errors).
# requests.RequestException derives from OSError, so transport failures are included.
RETRYABLE_EXCEPTIONS: tuple[type, ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
    RetryableHTTPError,
)


T = TypeVar("T")


def make_api_call_with_retry(
    api_func: Callable[..., T],
    *args: Any,
    logger: logging.Logger | None = None,
    operation_name: str = "API call",
    **kwargs: Any,
) -> T:
    """
    Execute an API call with retry logic and exponential backoff.

    Args:
        api_func: The API function to call
        *args: Positional arguments to pass to the function
        logger: Logger instance for retry messages
        operation_name: Human-readable name for logging
        **kwargs: Keyword arguments to pass to the function

    Returns:
        Result from the API call

    Raises:
        The last exception if all retries fail, or the first non-retryable one

    Backoff Formula:
        delay = min(base_delay * (exponential_base ** attempt), max_delay)
        if jitter: delay = delay * random.uniform(0.5, 1.5)
    """
    _logger = logger or logging.getLogger(__name__)
    _cfg = _effective_retry_config()
    max_retries = _cfg["max_retries"]
    base_delay = _cfg["base_delay"]
    max_delay = _cfg["max_delay"]
    exponential_base = _cfg["exponential_base"]
    jitter = _cfg["jitter"]

    for attempt in range(max_retries + 1):
        try:
            result = api_func(*args, **kwargs)
            if attempt > 0:
                _logger.info(f"✓ {operation_name} succeeded on attempt {attempt + 1}/{max_retries + 1}")
            return result
        except RETRYABLE_EXCEPTIONS as e:
            if attempt == max_retries:
                _logger.error(f"All {max_retries + 1} attempts failed for {operation_name}")
                if isinstance(e, RetryableHTTPError):
                    _logger.error("\n" + ErrorMessageHelper.get_http_error_message(e.status_code, operation_name))
                else:
                    _logger.error("\n" + ErrorMessageHelper.get_network_error_message(e, operation_name))
                raise

            delay = min(base_delay * (exponential_base**attempt), max_delay)
            if jitter:
                delay = delay * random.uniform(0.5, 1.5)

            _logger.warning(
                f"⚠ {operation_name} attempt {attempt + 1}/{max_retries + 1} failed: {e!s}. Retrying in {delay:.1f}s..."
            )
            time.sleep(delay)
        except Exception as e:
            _logger.debug(f"{operation_name} failed with non-retryable error: {e!s}")
            raise

    # Unreachable: the last attempt always returns or raises.
    raise RuntimeError(f"Retry loop exited unexpectedly for {operation_name}")
