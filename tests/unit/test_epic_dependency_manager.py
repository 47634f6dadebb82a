"""Unit tests for the Epic Dependency Manager."""

import pytest

from taskforge.core.errors import TaskExecutionError, ValidationError
from taskforge.decomposition.models import (
    AtomicTask,
    Dependency,
    DependencyType,
    Epic,
    TaskPriority,
)
from taskforge.epics.dependency_manager import (
    EpicDependencyConfig,
    EpicDependencyManager,
    dependency_strength,
)
from taskforge.storage.memory import InMemoryTaskStore


def _epic(epic_id: str, task_ids: list[str], hours: float = 1.0, **kwargs) -> Epic:
    return Epic(id=epic_id, title=f"Epic {epic_id}", project_id="web-app",
                task_ids=task_ids, estimated_hours=hours, **kwargs)


def _tasks(epic_id: str, count: int) -> list[AtomicTask]:
    return [
        AtomicTask(id=f"{epic_id}-t{i}", title="Task", project_id="web-app", epic_id=epic_id)
        for i in range(count)
    ]


class FailingStore(InMemoryTaskStore):
    """Store whose reads fail."""

    async def list_epics(self, project_id: str | None = None) -> list[Epic]:
        raise RuntimeError("database is locked")


class TestDependencyStrength:
    """Tests for the strength formula."""

    def test_strength(self) -> None:
        """Test the weighted density and coverage formula."""
        assert round(dependency_strength(8, 10, 5), 3) == 0.544
        assert dependency_strength(1, 1, 1) == 1.0

    def test_zero_inputs(self) -> None:
        """Test that empty epics or no dependencies yield zero."""
        assert dependency_strength(0, 3, 3) == 0.0
        assert dependency_strength(2, 0, 3) == 0.0

    def test_classification(self) -> None:
        """Test strength thresholds."""
        manager = EpicDependencyManager()

        assert manager.classify(0.75) == DependencyType.BLOCKS
        assert manager.classify(0.6) == DependencyType.REQUIRES
        assert manager.classify(0.4) == DependencyType.SUGGESTS


class TestAnalyze:
    """Tests for analysis without storage."""

    def test_cross_epic_dependency(self, epic_fixture) -> None:
        """Test aggregation, ordering and phases for two coupled epics."""
        epics, tasks, dependencies = epic_fixture

        analysis = EpicDependencyManager().analyze("web-app", epics, tasks, dependencies)

        assert len(analysis.dependencies) == 1
        dep = analysis.dependencies[0]
        assert (dep.from_epic_id, dep.to_epic_id) == ("E1", "E2")
        assert dep.strength == 0.5333
        assert dep.type == DependencyType.REQUIRES
        assert dep.critical is False
        assert dep.task_dependency_ids == ["d1", "d2"]
        assert analysis.execution_order == ["E1", "E2"]
        assert [p.epic_ids for p in analysis.phases] == [["E1"], ["E2"]]
        assert analysis.phases[1].prerequisites == ["phase-1"]
        assert analysis.phases[0].estimated_duration == 6.0
        assert analysis.conflicts == []
        assert analysis.recommendations == []
        assert analysis.total_task_dependencies == 2

    def test_weak_dependency_ignored(self) -> None:
        """Test that couplings below the minimum strength are dropped."""
        tasks = _tasks("E1", 10) + _tasks("E2", 10)
        epics = [_epic("E1", []), _epic("E2", [])]
        deps = [Dependency(id="d1", from_task_id="E1-t0", to_task_id="E2-t0")]

        analysis = EpicDependencyManager().analyze("web-app", epics, tasks, deps)

        assert analysis.dependencies == []

    def test_independent_epics_run_in_parallel(self) -> None:
        """Test one parallel phase and a parallelization recommendation."""
        epics = [_epic("E1", ["a"], 2.0), _epic("E2", ["b"], 5.0), _epic("E3", ["c"], 1.0)]

        analysis = EpicDependencyManager().analyze("web-app", epics, [], [])

        assert len(analysis.phases) == 1
        assert analysis.phases[0].can_run_in_parallel is True
        assert analysis.phases[0].estimated_duration == 5.0
        assert analysis.recommendations[0]["type"] == "parallelization"
        assert analysis.recommendations[0]["affected_epics"] == ["E1", "E2", "E3"]

    def test_phases_disabled(self) -> None:
        """Test that phase generation can be switched off."""
        manager = EpicDependencyManager(config=EpicDependencyConfig(auto_generate_phases=False))

        analysis = manager.analyze("web-app", [_epic("E1", [])], [], [])

        assert analysis.phases == []


class TestConflicts:
    """Tests for conflict detection."""

    def test_circular_dependency(self, epic_fixture) -> None:
        """Test that mutual epic dependencies are reported and phased together."""
        epics, tasks, dependencies = epic_fixture
        dependencies = dependencies + [
            Dependency(id="d3", from_task_id="b1", to_task_id="a3"),
            Dependency(id="d4", from_task_id="b2", to_task_id="a1"),
        ]

        analysis = EpicDependencyManager().analyze("web-app", epics, tasks, dependencies)

        circular = [c for c in analysis.conflicts if c["type"] == "circular_dependency"]
        assert len(circular) == 1
        assert circular[0]["severity"] == "critical"
        assert sorted(circular[0]["affected_epics"]) == ["E1", "E2"]
        assert analysis.execution_order == []
        assert [sorted(p.epic_ids) for p in analysis.phases] == [["E1", "E2"]]

    def test_priority_mismatch(self, epic_fixture) -> None:
        """Test that a low-priority epic blocking a high-priority one is flagged."""
        epics, tasks, dependencies = epic_fixture
        epics = [
            epics[0].model_copy(update={"priority": TaskPriority.LOW}),
            epics[1].model_copy(update={"priority": TaskPriority.HIGH}),
        ]

        analysis = EpicDependencyManager().analyze("web-app", epics, tasks, dependencies)

        assert [c["type"] for c in analysis.conflicts] == ["priority_mismatch"]
        assert analysis.conflicts[0]["affected_epics"] == ["E1", "E2"]

    def test_shared_files(self, epic_fixture) -> None:
        """Test that epics touching the same file are flagged."""
        epics, tasks, dependencies = epic_fixture
        tasks = [
            t.model_copy(update={"file_paths": ["src/app.py"]}) if t.id in ("a1", "b2") else t
            for t in tasks
        ]

        analysis = EpicDependencyManager().analyze("web-app", epics, tasks, dependencies)

        assert [c["type"] for c in analysis.conflicts] == ["resource_conflict"]
        assert "src/app.py" in analysis.conflicts[0]["description"]


class TestRecommendations:
    """Tests for restructuring recommendations."""

    def test_merge_small_coupled_epics(self) -> None:
        """Test that small tightly coupled epics are suggested for merging."""
        epics = [_epic("E1", ["a"]), _epic("E2", ["b"])]
        deps = [Dependency(id="d1", from_task_id="a", to_task_id="b")]

        analysis = EpicDependencyManager().analyze("web-app", epics, [], deps)

        assert analysis.dependencies[0].type == DependencyType.BLOCKS
        assert analysis.dependencies[0].critical is True
        assert analysis.critical_dependencies == analysis.dependencies
        assert [r["type"] for r in analysis.recommendations] == ["merging"]

    def test_split_large_epic(self) -> None:
        """Test that an epic with many tasks is suggested for splitting."""
        analysis = EpicDependencyManager().analyze(
            "web-app", [_epic("E1", [])], _tasks("E1", 11), []
        )

        assert [r["type"] for r in analysis.recommendations] == ["splitting"]


class TestStoreOperations:
    """Tests for operations backed by a task store."""

    @pytest.mark.asyncio
    async def test_analyze_from_store(self) -> None:
        """Test analysis of persisted epics and tasks."""
        store = InMemoryTaskStore()
        await store.create_epic({"id": "E1", "title": "Auth", "project_id": "web-app"})
        await store.create_epic({"id": "E2", "title": "Api", "project_id": "web-app"})
        first = await store.create_task({"title": "A", "project_id": "web-app", "epic_id": "E1"})
        second = await store.create_task({"title": "B", "project_id": "web-app", "epic_id": "E2"})
        await store.create_dependency(
            Dependency(from_task_id=first.id, to_task_id=second.id)
        )

        analysis = await EpicDependencyManager(store).analyze_epic_dependencies("web-app")

        assert analysis.total_epics == 2
        assert [(d.from_epic_id, d.to_epic_id) for d in analysis.dependencies] == [("E1", "E2")]

    @pytest.mark.asyncio
    async def test_analyze_requires_project(self) -> None:
        """Test that an empty project id is rejected."""
        with pytest.raises(ValidationError):
            await EpicDependencyManager(InMemoryTaskStore()).analyze_epic_dependencies("")

    @pytest.mark.asyncio
    async def test_analyze_requires_store(self) -> None:
        """Test that analysis from storage needs a store."""
        with pytest.raises(ValidationError):
            await EpicDependencyManager().analyze_epic_dependencies("web-app")

    @pytest.mark.asyncio
    async def test_storage_failure(self) -> None:
        """Test that storage errors are wrapped."""
        with pytest.raises(TaskExecutionError):
            await EpicDependencyManager(FailingStore()).analyze_epic_dependencies("web-app")

    @pytest.mark.asyncio
    async def test_create_epic_dependency(self) -> None:
        """Test recording and cycle protection of epic dependencies."""
        store = InMemoryTaskStore()
        await store.create_epic({"id": "E1", "title": "Auth", "project_id": "web-app"})
        await store.create_epic({"id": "E2", "title": "Api", "project_id": "web-app"})
        manager = EpicDependencyManager(store)

        created = await manager.create_epic_dependency("E1", "E2")

        assert created.strength == 1.0
        assert created.type == DependencyType.BLOCKS
        assert (await store.get_epic("E2")).dependencies == ["E1"]

        with pytest.raises(ValidationError):
            await manager.create_epic_dependency("E2", "E1")

    @pytest.mark.asyncio
    async def test_create_epic_dependency_invalid(self) -> None:
        """Test self and unknown epic dependencies."""
        store = InMemoryTaskStore()
        await store.create_epic({"id": "E1", "title": "Auth"})
        manager = EpicDependencyManager(store)

        with pytest.raises(ValidationError):
            await manager.create_epic_dependency("E1", "E1")
        with pytest.raises(ValidationError):
            await manager.create_epic_dependency("E1", "E9")
