"""API module - GitHub REST integration components.

This module provides:
- The GitHub REST client (runners, billing, Git data)
- Error message helpers with actionable suggestions
- Retry logic with exponential backoff for read-only calls
"""

from pick_runner.api.github import BillingInfo, GitHubClient
from pick_runner.api.resilience import (
    RETRYABLE_EXCEPTIONS,
    ErrorMessageHelper,
    make_api_call_with_retry,
)

__all__ = [
    "RETRYABLE_EXCEPTIONS",
    "BillingInfo",
    "ErrorMessageHelper",
    "GitHubClient",
    "make_api_call_with_retry",
]
