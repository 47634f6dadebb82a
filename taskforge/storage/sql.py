"""SQLAlchemy-backed task store."""

from typing import Any, TypeVar
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel
from sqlalchemy import or_, select

from taskforge.decomposition.models import AtomicTask, Dependency, Epic
from taskforge.storage.base import TaskStore, apply_update
from taskforge.storage.database import Database
from taskforge.storage.models import Base, DependencyRecord, EpicRecord, TaskRecord

M = TypeVar("M", bound=BaseModel)


def _to_model(model_cls: type[M], record: Base) -> M:
    return model_cls.model_validate(
        {name: getattr(record, name) for name in model_cls.model_fields if hasattr(record, name)}
    )


def _to_columns(model: BaseModel) -> dict[str, Any]:
    data = model.model_dump()
    return {k: (v.value if hasattr(v, "value") else v) for k, v in data.items()}


class SqlTaskStore(TaskStore):
    """
    Task store persisted through SQLAlchemy async sessions.

    Example:
        >>> store = SqlTaskStore(Database("sqlite+aiosqlite:///./tasks.db"))
        >>> await store.initialize()
        >>> task = await store.create_task({"title": "Add route", "project_id": "web"})
    """

    def __init__(self, database: Database | None = None) -> None:
        self.db = database or Database()

    async def initialize(self) -> None:
        """Create the schema if needed."""
        await self.db.init()

    async def close(self) -> None:
        await self.db.close()

    # =========================================================================
    # TASKS
    # =========================================================================

    async def create_task(self, fields: dict[str, Any]) -> AtomicTask:
        data = {k: v for k, v in fields.items() if k != "id"}
        task = AtomicTask(id=f"task-{uuid4().hex[:12]}", **data)
        async with self.db.session() as session:
            session.add(TaskRecord(**_to_columns(task)))
        logger.debug(f"Created task {task.id}: {task.title}")
        return task

    async def get_task(self, task_id: str) -> AtomicTask | None:
        async with self.db.session() as session:
            record = await session.get(TaskRecord, task_id)
            return _to_model(AtomicTask, record) if record else None

    async def update_task(self, task_id: str, fields: dict[str, Any]) -> AtomicTask:
        async with self.db.session() as session:
            record = await session.get(TaskRecord, task_id, with_for_update=True)
            if record is None:
                raise KeyError(f"Task not found: {task_id}")
            task = apply_update(_to_model(AtomicTask, record), fields)
            for column, value in _to_columns(task).items():
                setattr(record, column, value)
        return task

    async def list_tasks(
        self,
        project_id: str | None = None,
        epic_id: str | None = None,
    ) -> list[AtomicTask]:
        query = select(TaskRecord).order_by(TaskRecord.created_at)
        if project_id is not None:
            query = query.where(TaskRecord.project_id == project_id)
        if epic_id is not None:
            query = query.where(TaskRecord.epic_id == epic_id)

        async with self.db.session() as session:
            result = await session.execute(query)
            return [_to_model(AtomicTask, r) for r in result.scalars().all()]

    # =========================================================================
    # EPICS
    # =========================================================================

    async def create_epic(self, fields: dict[str, Any]) -> Epic:
        epic = Epic(**{**fields, "id": fields.get("id") or f"epic-{uuid4().hex[:12]}"})
        async with self.db.session() as session:
            session.add(EpicRecord(**_to_columns(epic)))
        logger.debug(f"Created epic {epic.id}: {epic.title}")
        return epic

    async def get_epic(self, epic_id: str) -> Epic | None:
        async with self.db.session() as session:
            record = await session.get(EpicRecord, epic_id)
            return _to_model(Epic, record) if record else None

    async def update_epic(self, epic_id: str, fields: dict[str, Any]) -> Epic:
        async with self.db.session() as session:
            record = await session.get(EpicRecord, epic_id, with_for_update=True)
            if record is None:
                raise KeyError(f"Epic not found: {epic_id}")
            epic = apply_update(_to_model(Epic, record), fields)
            for column, value in _to_columns(epic).items():
                setattr(record, column, value)
        return epic

    async def list_epics(self, project_id: str | None = None) -> list[Epic]:
        query = select(EpicRecord).order_by(EpicRecord.created_at)
        if project_id is not None:
            query = query.where(EpicRecord.project_id == project_id)

        async with self.db.session() as session:
            result = await session.execute(query)
            return [_to_model(Epic, r) for r in result.scalars().all()]

    # =========================================================================
    # DEPENDENCIES
    # =========================================================================

    async def create_dependency(self, dependency: Dependency) -> Dependency:
        stored = dependency.model_copy(update={"id": dependency.id or f"dep-{uuid4().hex[:12]}"})
        async with self.db.session() as session:
            session.add(DependencyRecord(**_to_columns(stored)))
        return stored

    async def list_dependencies(
        self,
        project_id: str | None = None,
        task_id: str | None = None,
    ) -> list[Dependency]:
        query = select(DependencyRecord)
        if task_id is not None:
            query = query.where(
                or_(DependencyRecord.from_task_id == task_id, DependencyRecord.to_task_id == task_id)
            )
        if project_id is not None:
            project_tasks = select(TaskRecord.id).where(TaskRecord.project_id == project_id)
            query = query.where(
                or_(
                    DependencyRecord.from_task_id.in_(project_tasks),
                    DependencyRecord.to_task_id.in_(project_tasks),
                )
            )

        async with self.db.session() as session:
            result = await session.execute(query)
            return [_to_model(Dependency, r) for r in result.scalars().all()]
