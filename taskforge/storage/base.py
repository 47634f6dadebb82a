"""Task/epic storage interface."""

from abc import ABC, abstractmethod
from typing import Any

from taskforge.decomposition.models import AtomicTask, Dependency, Epic, utc_now

# Fields callers may not overwrite through update_*
IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


class TaskStore(ABC):
    """
    Persistence for tasks, epics and task dependencies.

    Implementations must support safe concurrent create/update and return
    dependency arrays exactly as written.
    """

    # =========================================================================
    # TASKS
    # =========================================================================

    @abstractmethod
    async def create_task(self, fields: dict[str, Any]) -> AtomicTask:
        """Create a task, assigning a new id (any ``id`` in ``fields`` is ignored)."""

    @abstractmethod
    async def get_task(self, task_id: str) -> AtomicTask | None:
        """Get a task by id."""

    @abstractmethod
    async def update_task(self, task_id: str, fields: dict[str, Any]) -> AtomicTask:
        """
        Apply a partial update.

        Raises:
            KeyError: If the task does not exist.
        """

    @abstractmethod
    async def list_tasks(
        self,
        project_id: str | None = None,
        epic_id: str | None = None,
    ) -> list[AtomicTask]:
        """List tasks, optionally filtered by project and epic."""

    # =========================================================================
    # EPICS
    # =========================================================================

    @abstractmethod
    async def create_epic(self, fields: dict[str, Any]) -> Epic:
        """Create an epic. An explicit ``id`` in ``fields`` is honoured."""

    @abstractmethod
    async def get_epic(self, epic_id: str) -> Epic | None:
        """Get an epic by id."""

    @abstractmethod
    async def update_epic(self, epic_id: str, fields: dict[str, Any]) -> Epic:
        """
        Apply a partial update.

        Raises:
            KeyError: If the epic does not exist.
        """

    @abstractmethod
    async def list_epics(self, project_id: str | None = None) -> list[Epic]:
        """List epics, optionally filtered by project."""

    # =========================================================================
    # DEPENDENCIES
    # =========================================================================

    @abstractmethod
    async def create_dependency(self, dependency: Dependency) -> Dependency:
        """Persist a dependency, assigning an id when it has none."""

    @abstractmethod
    async def list_dependencies(
        self,
        project_id: str | None = None,
        task_id: str | None = None,
    ) -> list[Dependency]:
        """List dependencies, filtered by the project of their tasks or by a task."""

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


def apply_update(model: Any, fields: dict[str, Any]) -> Any:
    """Return a validated copy of a pydantic model with ``fields`` applied."""
    data = model.model_dump()
    data.update({k: v for k, v in fields.items() if k not in IMMUTABLE_FIELDS})
    data["updated_at"] = utc_now()
    return type(model).model_validate(data)
