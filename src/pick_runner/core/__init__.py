"""Core module - Foundation components with no internal dependencies.

This module provides the basic building blocks used throughout the application:
- Version information
- Custom exceptions
- Configuration dataclasses
- Constants and defaults
"""

from pick_runner.core.version import __version__

from pick_runner.core.exceptions import (
    PickRunnerError,
    ConfigurationError,
    APIError,
    RefStoreError,
    LockConflictError,
    LockRecordNotFoundError,
    MutexStateError,
    RetryableHTTPError,
)

from pick_runner.core.config import (
    RetryConfig,
    LogConfig,
    MutexConfig,
    ActionInputs,
)

__all__ = [
    "__version__",
    "PickRunnerError",
    "ConfigurationError",
    "APIError",
    "RefStoreError",
    "LockConflictError",
    "LockRecordNotFoundError",
    "MutexStateError",
    "RetryableHTTPError",
    "RetryConfig",
    "LogConfig",
    "MutexConfig",
    "ActionInputs",
]
