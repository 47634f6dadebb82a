"""Named timeout classes and retry with exponential backoff.

Every suspension point of the pipeline (generative-text calls and task
splits) runs under one of the timeout classes defined here. Retries are
reserved for rate-limit style failures.
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from taskforge.core.errors import OperationTimeoutError, RateLimitError

if TYPE_CHECKING:
    from taskforge.core.config import Settings

T = TypeVar("T")


class TimeoutOperation(str, Enum):
    """Named timeout classes."""

    LLM_REQUEST = "llm_request"
    TASK_DECOMPOSITION = "task_decomposition"
    RECURSIVE_TASK_DECOMPOSITION = "recursive_task_decomposition"


DEFAULT_TIMEOUTS: dict[TimeoutOperation, float] = {
    TimeoutOperation.LLM_REQUEST: 60.0,
    TimeoutOperation.TASK_DECOMPOSITION: 300.0,
    TimeoutOperation.RECURSIVE_TASK_DECOMPOSITION: 900.0,
}


class RetryPolicy(BaseModel):
    """Exponential backoff policy for retryable failures."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based), capped at max_delay."""
        return min(self.initial_delay * (self.backoff_multiplier**attempt), self.max_delay)


class TimeoutManager:
    """
    Apply timeout classes and retry policy to awaitables.

    Example:
        >>> manager = TimeoutManager()
        >>> result = await manager.run(TimeoutOperation.LLM_REQUEST, client.generate(...))
    """

    def __init__(
        self,
        timeouts: dict[TimeoutOperation, float] | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._timeouts = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TimeoutManager":
        """Create a manager from application settings."""
        return cls(
            timeouts={
                TimeoutOperation.LLM_REQUEST: settings.taskforge_llm_request_timeout,
                TimeoutOperation.TASK_DECOMPOSITION: settings.taskforge_task_decomposition_timeout,
                TimeoutOperation.RECURSIVE_TASK_DECOMPOSITION: (
                    settings.taskforge_recursive_task_decomposition_timeout
                ),
            },
            retry_policy=RetryPolicy(
                max_retries=settings.taskforge_max_retries,
                initial_delay=settings.taskforge_initial_retry_delay,
                max_delay=settings.taskforge_max_retry_delay,
                backoff_multiplier=settings.taskforge_backoff_multiplier,
            ),
        )

    def get_timeout(self, operation: TimeoutOperation) -> float:
        """Get the configured budget in seconds for a timeout class."""
        return self._timeouts[operation]

    async def run(
        self,
        operation: TimeoutOperation,
        awaitable: Awaitable[T],
        timeout: float | None = None,
    ) -> T:
        """
        Await ``awaitable`` under the budget of ``operation``.

        Args:
            operation: Timeout class to apply.
            awaitable: Coroutine or future to await.
            timeout: Explicit budget overriding the configured one.

        Returns:
            Result of the awaitable.

        Raises:
            OperationTimeoutError: If the budget is exceeded.
        """
        budget = timeout if timeout is not None else self.get_timeout(operation)
        try:
            return await asyncio.wait_for(awaitable, timeout=budget)
        except TimeoutError:
            logger.warning(f"{operation.value} exceeded {budget:.1f}s budget")
            raise OperationTimeoutError(operation.value, budget) from None

    async def retry(
        self,
        factory: Callable[[], Awaitable[T]],
        retryable: tuple[type[BaseException], ...] = (RateLimitError,),
        operation_name: str = "operation",
    ) -> T:
        """
        Call ``factory`` until it succeeds, retrying only ``retryable`` errors.

        Args:
            factory: Zero-argument callable returning a fresh awaitable per attempt.
            retryable: Exception types that trigger a retry.
            operation_name: Name used in log messages.

        Returns:
            Result of the first successful attempt.

        Raises:
            The last retryable error once retries are exhausted, or any
            non-retryable error immediately.
        """
        policy = self.retry_policy
        for attempt in range(policy.max_retries + 1):
            try:
                return await factory()
            except retryable as e:
                if attempt >= policy.max_retries:
                    logger.error(f"{operation_name} failed after {attempt + 1} attempts: {e}")
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{operation_name} attempt {attempt + 1} failed ({type(e).__name__}), "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        raise RuntimeError("unreachable")  # pragma: no cover

    def to_dict(self) -> dict[str, Any]:
        """Describe configured budgets and retry policy."""
        return {
            "timeouts": {op.value: seconds for op, seconds in self._timeouts.items()},
            "retry_policy": self.retry_policy.model_dump(),
        }
