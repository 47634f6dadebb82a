"""Unit tests for the task stores."""

import asyncio
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from taskforge.decomposition.models import Dependency, DependencyType, TaskPriority
from taskforge.storage.base import TaskStore
from taskforge.storage.database import Database
from taskforge.storage.memory import InMemoryTaskStore
from taskforge.storage.sql import SqlTaskStore


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncGenerator[TaskStore, None]:
    """Each store implementation, backed by a temporary database for SQL."""
    if request.param == "memory":
        task_store: TaskStore = InMemoryTaskStore()
    else:
        task_store = SqlTaskStore(Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}"))
        await task_store.initialize()
    try:
        yield task_store
    finally:
        await task_store.close()


class TestTasks:
    """Tests for task persistence."""

    @pytest.mark.asyncio
    async def test_create_assigns_id(self, store: TaskStore) -> None:
        """Test that the store assigns ids and ignores caller ids."""
        task = await store.create_task(
            {
                "id": "T0001",
                "title": "Add login route",
                "project_id": "web-app",
                "priority": TaskPriority.HIGH,
                "acceptance_criteria": ["Route exists"],
            }
        )

        assert task.id.startswith("task-")
        assert task.id != "T0001"
        loaded = await store.get_task(task.id)
        assert loaded is not None
        assert loaded.title == "Add login route"
        assert loaded.priority == TaskPriority.HIGH
        assert loaded.acceptance_criteria == ["Route exists"]

    @pytest.mark.asyncio
    async def test_get_missing(self, store: TaskStore) -> None:
        """Test that unknown ids return None."""
        assert await store.get_task("task-missing") is None

    @pytest.mark.asyncio
    async def test_update_round_trips_dependencies(self, store: TaskStore) -> None:
        """Test that dependency arrays are stored exactly as written."""
        task = await store.create_task({"title": "Add view", "project_id": "web-app"})

        updated = await store.update_task(task.id, {"dependencies": ["task-b", "task-a"]})
        loaded = await store.get_task(task.id)

        assert updated.dependencies == ["task-b", "task-a"]
        assert loaded.dependencies == ["task-b", "task-a"]
        assert loaded.id == task.id

    @pytest.mark.asyncio
    async def test_update_missing(self, store: TaskStore) -> None:
        """Test that updating an unknown task raises KeyError."""
        with pytest.raises(KeyError):
            await store.update_task("task-missing", {"title": "x"})

    @pytest.mark.asyncio
    async def test_list_filters(self, store: TaskStore) -> None:
        """Test listing by project and epic."""
        await store.create_task({"title": "A", "project_id": "p1", "epic_id": "E1"})
        await store.create_task({"title": "B", "project_id": "p1"})
        await store.create_task({"title": "C", "project_id": "p2"})

        assert {t.title for t in await store.list_tasks("p1")} == {"A", "B"}
        assert [t.title for t in await store.list_tasks("p1", epic_id="E1")] == ["A"]
        assert len(await store.list_tasks()) == 3

    @pytest.mark.asyncio
    async def test_concurrent_updates(self) -> None:
        """Test that concurrent updates of different tasks all land."""
        store = InMemoryTaskStore()
        tasks = [
            await store.create_task({"title": f"Task {i}", "project_id": "web-app"})
            for i in range(5)
        ]

        await asyncio.gather(
            *(store.update_task(t.id, {"dependents": [f"x{i}"]}) for i, t in enumerate(tasks))
        )

        for i, task in enumerate(tasks):
            assert (await store.get_task(task.id)).dependents == [f"x{i}"]


class TestEpics:
    """Tests for epic persistence."""

    @pytest.mark.asyncio
    async def test_create_and_update_epic(self, store: TaskStore) -> None:
        """Test epic creation with an explicit id and updates."""
        epic = await store.create_epic({"id": "E1", "title": "Auth", "project_id": "web-app"})

        await store.update_epic(epic.id, {"task_ids": ["task-1"], "dependencies": ["E0"]})
        loaded = await store.get_epic("E1")

        assert loaded.task_ids == ["task-1"]
        assert loaded.dependencies == ["E0"]
        assert [e.id for e in await store.list_epics("web-app")] == ["E1"]
        assert await store.list_epics("other") == []

    @pytest.mark.asyncio
    async def test_update_missing_epic(self, store: TaskStore) -> None:
        """Test that updating an unknown epic raises KeyError."""
        with pytest.raises(KeyError):
            await store.update_epic("E9", {"title": "x"})


class TestDependencies:
    """Tests for dependency persistence."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, store: TaskStore) -> None:
        """Test that dependencies are listed by project and by task."""
        first = await store.create_task({"title": "A", "project_id": "web-app"})
        second = await store.create_task({"title": "B", "project_id": "web-app"})
        other = await store.create_task({"title": "C", "project_id": "other"})

        created = await store.create_dependency(
            Dependency(
                from_task_id=first.id,
                to_task_id=second.id,
                type=DependencyType.BLOCKS,
                critical=True,
            )
        )
        await store.create_dependency(Dependency(from_task_id=other.id, to_task_id=other.id))

        assert created.id
        by_project = await store.list_dependencies("web-app")
        assert [d.key for d in by_project] == [(first.id, second.id)]
        assert by_project[0].type == DependencyType.BLOCKS
        assert by_project[0].critical is True
        assert len(await store.list_dependencies(task_id=second.id)) == 1


class TestDatabase:
    """Tests for database connection management."""

    @pytest.mark.asyncio
    async def test_health_check(self, tmp_path: Path) -> None:
        """Test connectivity check against a temporary database."""
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'health.db'}")
        try:
            assert await database.health_check() is True
        finally:
            await database.close()
