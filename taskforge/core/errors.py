"""Exception hierarchy for taskforge.

Validation errors are raised synchronously and never retried. Timeouts are
handled locally by the component that owns the timed operation. Everything
else raised inside a decomposition session is caught at the session boundary
and recorded on the session.
"""

from typing import Any


# =============================================================================
# BASE
# =============================================================================


class TaskforgeError(Exception):
    """Base exception for taskforge errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and session records."""
        return {"type": type(self).__name__, "message": self.message, **self.context}


# =============================================================================
# INPUT / CONFIGURATION
# =============================================================================


class ValidationError(TaskforgeError):
    """Malformed or missing input."""

    def __init__(self, message: str, field: str | None = None, **context: Any) -> None:
        super().__init__(message, field=field, **context)
        self.field = field


class ConfigurationError(TaskforgeError):
    """Missing or invalid required configuration."""

    pass


# =============================================================================
# EXECUTION
# =============================================================================


class OperationTimeoutError(TaskforgeError, TimeoutError):
    """An operation exceeded the budget of its timeout class."""

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Operation '{operation}' timed out after {timeout_seconds:.1f}s",
            operation=operation,
            timeout_seconds=timeout_seconds,
        )
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class TaskExecutionError(TaskforgeError):
    """A failure during orchestration that may succeed on another attempt."""

    def __init__(self, message: str, retryable: bool = True, **context: Any) -> None:
        super().__init__(message, retryable=retryable, **context)
        self.retryable = retryable


class CyclicDependencyError(TaskforgeError):
    """A dependency graph contains a cycle where an ordering is required."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(
            f"Circular dependency detected: {' -> '.join(cycle)}",
            cycle=cycle,
        )
        self.cycle = cycle


class SessionStateError(TaskforgeError):
    """Unknown session or illegal session state transition."""

    pass


# =============================================================================
# GENERATIVE TEXT
# =============================================================================


class LLMError(TaskforgeError):
    """Failure reported by the generative-text capability."""

    def __init__(self, message: str, retryable: bool = False, **context: Any) -> None:
        super().__init__(message, retryable=retryable, **context)
        self.retryable = retryable


class RateLimitError(LLMError):
    """The generative-text capability is rate limiting requests."""

    def __init__(self, message: str = "Rate limit exceeded", **context: Any) -> None:
        super().__init__(message, retryable=True, **context)


class LLMResponseError(LLMError):
    """The generative-text response could not be parsed."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, retryable=False, **context)
