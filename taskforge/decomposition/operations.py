"""Registry of in-flight decomposition operations.

Every decomposition work item and split call is recorded while it runs so
that health checks can report long-running operations and a cleanup pass
can drop entries that were never finished.
"""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loguru import logger

from taskforge.decomposition.models import utc_now

DEFAULT_LONG_RUNNING_SECONDS = 300.0
DEFAULT_STALE_SECONDS = 900.0


class OperationKind(str, Enum):
    """Kind of tracked operation."""

    DECOMPOSITION = "decomposition"
    SPLIT = "split"
    ANALYSIS = "analysis"


@dataclass
class TrackedOperation:
    """An in-flight operation."""

    operation_id: str
    kind: OperationKind
    task_id: str
    started_at: datetime = field(default_factory=utc_now)

    def age(self, now: datetime) -> timedelta:
        return now - self.started_at

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        """Convert to dictionary for health reports."""
        now = now or utc_now()
        return {
            "operation_id": self.operation_id,
            "kind": self.kind.value,
            "task_id": self.task_id,
            "started_at": self.started_at.isoformat(),
            "age_seconds": round(self.age(now).total_seconds(), 1),
        }


class OperationRegistry:
    """
    Side-table of in-flight operations keyed by work-item id.

    Example:
        >>> registry = OperationRegistry()
        >>> async with registry.track(OperationKind.SPLIT, task.id, "item-1"):
        ...     await split(task)
        >>> registry.health()["active_operations"]
        0
    """

    def __init__(
        self,
        long_running_seconds: float = DEFAULT_LONG_RUNNING_SECONDS,
        stale_seconds: float = DEFAULT_STALE_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.long_running_threshold = timedelta(seconds=long_running_seconds)
        self.stale_threshold = timedelta(seconds=stale_seconds)
        self._clock = clock
        self._operations: dict[str, TrackedOperation] = {}

    def __len__(self) -> int:
        return len(self._operations)

    def start(self, kind: OperationKind, task_id: str, operation_id: str) -> TrackedOperation:
        """Record the start of an operation."""
        operation = TrackedOperation(
            operation_id=operation_id,
            kind=kind,
            task_id=task_id,
            started_at=self._clock(),
        )
        self._operations[operation_id] = operation
        return operation

    def finish(self, operation_id: str) -> None:
        """Record completion of an operation (no-op if unknown)."""
        self._operations.pop(operation_id, None)

    @asynccontextmanager
    async def track(
        self,
        kind: OperationKind,
        task_id: str,
        operation_id: str,
    ) -> AsyncIterator[TrackedOperation]:
        """Track an operation for the duration of the ``async with`` block."""
        operation = self.start(kind, task_id, operation_id)
        try:
            yield operation
        finally:
            self.finish(operation_id)

    def active_operations(self) -> list[TrackedOperation]:
        return list(self._operations.values())

    def long_running_operations(self) -> list[TrackedOperation]:
        """Operations older than the long-running threshold."""
        now = self._clock()
        return [
            op for op in self._operations.values() if op.age(now) > self.long_running_threshold
        ]

    def cleanup_stale_operations(self) -> int:
        """
        Drop operations older than the stale threshold.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        stale = [
            op_id
            for op_id, op in self._operations.items()
            if op.age(now) > self.stale_threshold
        ]
        for op_id in stale:
            operation = self._operations.pop(op_id)
            logger.warning(
                f"Dropping stale {operation.kind.value} operation {op_id} "
                f"for task {operation.task_id}"
            )
        return len(stale)

    def health(self) -> dict[str, Any]:
        """Summarize registry state for health checks."""
        now = self._clock()
        long_running = self.long_running_operations()
        return {
            "active_operations": len(self._operations),
            "long_running_operations": [op.to_dict(now) for op in long_running],
            "healthy": not long_running,
        }
