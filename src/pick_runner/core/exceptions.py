"""Custom exceptions for pick-runner.

All exception classes carry a short message plus optional details so that
failures surface as a single actionable line in workflow logs.
"""


class PickRunnerError(Exception):
    """Base exception for all pick-runner errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(PickRunnerError):
    """Exception raised for invalid or missing action inputs.

    Examples:
        - Missing github-token
        - Non-numeric github-hosted-limit
        - Mutex key that cannot be used as a Git ref name
    """

    def __init__(self, message: str, field: str | None = None, details: str | None = None):
        self.field = field
        super().__init__(message, details)


class APIError(PickRunnerError):
    """Exception raised for GitHub API communication failures.

    Wraps HTTP errors and network failures with context about
    the operation that failed.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        operation: str | None = None,
        details: str | None = None,
        original_error: Exception | None = None,
    ):
        self.status_code = status_code
        self.operation = operation
        self.original_error = original_error
        super().__init__(message, details)

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code:
            parts.append(f"HTTP {self.status_code}")
        if self.operation:
            parts.append(f"during {self.operation}")
        if self.details:
            parts.append(self.details)
        return " - ".join(parts)


class RefStoreError(PickRunnerError):
    """Base exception for expected outcomes of lock store operations.

    Attributes:
        name: Record name the operation targeted (e.g. ``mutex/deploy``)
    """

    def __init__(self, message: str, name: str, details: str | None = None):
        self.name = name
        super().__init__(message, details)


class LockConflictError(RefStoreError):
    """Raised by ``create_atomic`` when a record with the same name already exists."""

    def __init__(self, name: str, details: str | None = None):
        super().__init__(f"Lock record '{name}' already exists", name, details)


class LockRecordNotFoundError(RefStoreError):
    """Raised by ``read``/``delete`` when no record exists under the name."""

    def __init__(self, name: str, details: str | None = None):
        super().__init__(f"Lock record '{name}' does not exist", name, details)


class MutexStateError(PickRunnerError):
    """Raised when a mutex handle is used in a way its state does not allow.

    Acquiring a handle that already holds its lock is a caller bug; locks
    are not reentrant.
    """

    def __init__(self, key: str, state: str):
        self.key = key
        self.state = state
        super().__init__(f"Mutex '{key}' cannot be acquired while {state}", "locks are not reentrant")


class RetryableHTTPError(Exception):
    """Exception raised when API returns a retryable HTTP status code."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}" if message else f"HTTP {status_code}")
