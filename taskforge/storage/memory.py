"""In-memory task store."""

import asyncio
from typing import Any
from uuid import uuid4

from loguru import logger

from taskforge.decomposition.models import AtomicTask, Dependency, Epic
from taskforge.storage.base import TaskStore, apply_update


class InMemoryTaskStore(TaskStore):
    """
    Task store kept in process memory.

    All mutations are serialized by one ``asyncio.Lock``; reads return copies
    so callers never alias stored state.

    Example:
        >>> store = InMemoryTaskStore()
        >>> task = await store.create_task({"title": "Add route", "project_id": "web"})
        >>> (await store.get_task(task.id)).title
        'Add route'
    """

    def __init__(self) -> None:
        self._tasks: dict[str, AtomicTask] = {}
        self._epics: dict[str, Epic] = {}
        self._dependencies: dict[str, Dependency] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # TASKS
    # =========================================================================

    async def create_task(self, fields: dict[str, Any]) -> AtomicTask:
        async with self._lock:
            data = {k: v for k, v in fields.items() if k != "id"}
            task = AtomicTask(id=f"task-{uuid4().hex[:12]}", **data)
            self._tasks[task.id] = task
            logger.debug(f"Created task {task.id}: {task.title}")
            return task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> AtomicTask | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> AtomicTask:
        async with self._lock:
            if task_id not in self._tasks:
                raise KeyError(f"Task not found: {task_id}")
            task = apply_update(self._tasks[task_id], fields)
            self._tasks[task_id] = task
            return task.model_copy(deep=True)

    async def list_tasks(
        self,
        project_id: str | None = None,
        epic_id: str | None = None,
    ) -> list[AtomicTask]:
        return [
            task.model_copy(deep=True)
            for task in self._tasks.values()
            if (project_id is None or task.project_id == project_id)
            and (epic_id is None or task.epic_id == epic_id)
        ]

    # =========================================================================
    # EPICS
    # =========================================================================

    async def create_epic(self, fields: dict[str, Any]) -> Epic:
        async with self._lock:
            epic_id = fields.get("id") or f"epic-{uuid4().hex[:12]}"
            if epic_id in self._epics:
                raise ValueError(f"Epic already exists: {epic_id}")
            epic = Epic(**{**fields, "id": epic_id})
            self._epics[epic.id] = epic
            logger.debug(f"Created epic {epic.id}: {epic.title}")
            return epic.model_copy(deep=True)

    async def get_epic(self, epic_id: str) -> Epic | None:
        epic = self._epics.get(epic_id)
        return epic.model_copy(deep=True) if epic else None

    async def update_epic(self, epic_id: str, fields: dict[str, Any]) -> Epic:
        async with self._lock:
            if epic_id not in self._epics:
                raise KeyError(f"Epic not found: {epic_id}")
            epic = apply_update(self._epics[epic_id], fields)
            self._epics[epic_id] = epic
            return epic.model_copy(deep=True)

    async def list_epics(self, project_id: str | None = None) -> list[Epic]:
        return [
            epic.model_copy(deep=True)
            for epic in self._epics.values()
            if project_id is None or epic.project_id == project_id
        ]

    # =========================================================================
    # DEPENDENCIES
    # =========================================================================

    async def create_dependency(self, dependency: Dependency) -> Dependency:
        async with self._lock:
            stored = dependency.model_copy(
                update={"id": dependency.id or f"dep-{uuid4().hex[:12]}"}
            )
            self._dependencies[stored.id] = stored
            return stored.model_copy()

    async def list_dependencies(
        self,
        project_id: str | None = None,
        task_id: str | None = None,
    ) -> list[Dependency]:
        result = []
        for dep in self._dependencies.values():
            if task_id is not None and task_id not in dep.key:
                continue
            if project_id is not None:
                source = self._tasks.get(dep.from_task_id)
                target = self._tasks.get(dep.to_task_id)
                if not any(t is not None and t.project_id == project_id for t in (source, target)):
                    continue
            result.append(dep.model_copy())
        return result
