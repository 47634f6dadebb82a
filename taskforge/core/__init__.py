"""Core settings, errors, logging and timeouts."""

from taskforge.core.config import Settings, clear_settings_cache, get_settings
from taskforge.core.errors import (
    ConfigurationError,
    CyclicDependencyError,
    LLMError,
    LLMResponseError,
    OperationTimeoutError,
    RateLimitError,
    SessionStateError,
    TaskExecutionError,
    TaskforgeError,
    ValidationError,
)
from taskforge.core.logging import configure_logging
from taskforge.core.timeouts import RetryPolicy, TimeoutManager, TimeoutOperation

__all__ = [
    "ConfigurationError",
    "CyclicDependencyError",
    "LLMError",
    "LLMResponseError",
    "OperationTimeoutError",
    "RateLimitError",
    "RetryPolicy",
    "SessionStateError",
    "Settings",
    "TaskExecutionError",
    "TaskforgeError",
    "TimeoutManager",
    "TimeoutOperation",
    "ValidationError",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
]
