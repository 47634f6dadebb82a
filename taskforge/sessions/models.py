"""Decomposition session state machine.

A session is an immutable value: every transition returns a new copy, and
the service replaces its stored value atomically.
"""

import secrets
import time
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from taskforge.core.errors import SessionStateError
from taskforge.decomposition.models import DecompositionResult, utc_now
from taskforge.scheduling.scheduler import ScheduleAlgorithm, ScheduledTask

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class SessionStatus(str, Enum):
    """Lifecycle status of a decomposition session."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.IN_PROGRESS, SessionStatus.FAILED}),
    SessionStatus.IN_PROGRESS: frozenset(
        {SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED, SessionStatus.FAILED}
    ),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.FAILED: frozenset(),
}

CANCELLED_REASON = "cancelled"


def _base36(value: int) -> str:
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits)) or "0"


def generate_session_id() -> str:
    """Session id of the form ``decomp_<base36 ms timestamp>_<random>``."""
    return f"decomp_{_base36(int(time.time() * 1000))}_{secrets.token_hex(4)}"


class DecompositionSession(BaseModel):
    """One run of the decomposition pipeline for a single source task."""

    model_config = ConfigDict(frozen=True)

    id: str
    task_id: str
    project_id: str
    status: SessionStatus = SessionStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    current_depth: int = 0
    max_depth: int = 5
    total_tasks: int = 0
    processed_tasks: int = 0
    results: tuple[DecompositionResult, ...] = ()
    persisted_task_ids: tuple[str, ...] = ()
    inferred_dependency_ids: tuple[str, ...] = ()
    artifact_paths: tuple[str, ...] = ()
    schedule: dict[str, ScheduledTask] = Field(default_factory=dict)
    assigned_task_ids: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    error: str | None = None
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (SessionStatus.COMPLETED, SessionStatus.FAILED)

    @property
    def is_cancelled(self) -> bool:
        return self.status == SessionStatus.FAILED and self.error == CANCELLED_REASON

    @property
    def duration_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def transition(self, status: SessionStatus, **updates: Any) -> "DecompositionSession":
        """
        Return a copy moved to ``status`` with ``updates`` applied.

        Raises:
            SessionStateError: If the transition is not allowed.
        """
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise SessionStateError(
                f"Invalid session transition {self.status.value} -> {status.value}",
                session_id=self.id,
            )
        if status in (SessionStatus.COMPLETED, SessionStatus.FAILED):
            updates.setdefault("ended_at", utc_now())
        if status == SessionStatus.COMPLETED:
            updates.setdefault("progress", 100)
        return self.model_copy(update={"status": status, **updates})

    def advance(self, progress: int, **updates: Any) -> "DecompositionSession":
        """Return an in-progress copy at ``progress`` percent."""
        return self.transition(SessionStatus.IN_PROGRESS, progress=progress, **updates)

    def annotate(self, **updates: Any) -> "DecompositionSession":
        """Return a copy with non-status fields updated."""
        if "status" in updates:
            raise SessionStateError("Use transition() to change status", session_id=self.id)
        return self.model_copy(update=updates)

    def fail(self, error: str) -> "DecompositionSession":
        return self.transition(SessionStatus.FAILED, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Serializable summary (without full decomposition results)."""
        return {
            "id": self.id,
            "task_id": self.task_id,
            "project_id": self.project_id,
            "status": self.status.value,
            "progress": self.progress,
            "current_depth": self.current_depth,
            "max_depth": self.max_depth,
            "total_tasks": self.total_tasks,
            "processed_tasks": self.processed_tasks,
            "persisted_task_ids": list(self.persisted_task_ids),
            "artifact_paths": list(self.artifact_paths),
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }


class DecompositionOptions(BaseModel):
    """Per-request overrides for a decomposition session."""

    max_depth: int | None = Field(default=None, ge=1, le=10)
    schedule_algorithm: ScheduleAlgorithm | None = None
    infer_dependencies: bool = True
    write_artifacts: bool = True
    assign_ready_tasks: bool = True
