"""Unit tests for the decomposition service."""

import asyncio
import re
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest

from taskforge.core.config import Settings
from taskforge.core.errors import OperationTimeoutError, SessionStateError, ValidationError
from taskforge.decomposition.models import (
    AtomicTask,
    Dependency,
    ProjectContext,
    TaskStatus,
    utc_now,
)
from taskforge.decomposition.operations import OperationKind, OperationRegistry
from taskforge.graph.rendering import DependencyGraphArtifactWriter
from taskforge.scheduling.scheduler import ScheduleAlgorithm
from taskforge.sessions.models import DecompositionOptions, SessionStatus
from taskforge.sessions.service import DecompositionService
from taskforge.storage.memory import InMemoryTaskStore

_TASK_LINE_RE = re.compile(r"^- (task-[0-9a-f]{12}):", re.MULTILINE)


class FailingDependencyStore(InMemoryTaskStore):
    """Store whose dependency writes fail."""

    async def create_dependency(self, dependency: Dependency) -> Dependency:
        raise RuntimeError("disk full")


def _first_to_last_and_back(prompt: str) -> dict[str, Any]:
    """Infer one new edge and one edge that would close a cycle."""
    ids = _TASK_LINE_RE.findall(prompt)
    return {
        "dependencies": [
            {"fromTaskId": ids[0], "toTaskId": ids[-1], "type": "blocks",
             "reasoning": "Schema first"},
            {"fromTaskId": ids[-1], "toTaskId": ids[0], "type": "requires"},
            {"fromTaskId": "unknown", "toTaskId": ids[0]},
        ]
    }


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def make_service(test_settings: Settings, store: InMemoryTaskStore):
    def factory(llm, **kwargs: Any) -> DecompositionService:
        kwargs.setdefault("store", store)
        return DecompositionService(llm, settings=test_settings, **kwargs)

    return factory


class TestSessionLifecycle:
    """Tests for starting, waiting and cancelling sessions."""

    @pytest.mark.asyncio
    async def test_decomposition_completes(
        self,
        make_service,
        scripted_llm,
        store: InMemoryTaskStore,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test the full pipeline for a task that needs splitting."""
        service = make_service(scripted_llm)

        session = service.start_decomposition(auth_task, project_context)
        assert session.status == SessionStatus.PENDING
        assert session.id.startswith("decomp_")

        session = await service.wait_for_session(session.id)

        assert session.status == SessionStatus.COMPLETED
        assert session.progress == 100
        assert session.total_tasks == 4
        assert session.processed_tasks == 4
        assert len(session.persisted_task_ids) == 4
        assert session.results[0].sub_tasks[0].id == "T0001-01"
        assert set(session.schedule) == set(session.persisted_task_ids)
        assert len(session.artifact_paths) == 3
        for path in session.artifact_paths:
            assert Path(path).exists()

    @pytest.mark.asyncio
    async def test_dependencies_persisted_with_stored_ids(
        self,
        make_service,
        scripted_llm,
        store: InMemoryTaskStore,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that declared dependencies are remapped to storage ids."""
        service = make_service(scripted_llm)
        session = service.start_decomposition(auth_task, project_context)
        session = await service.wait_for_session(session.id)

        ids = list(session.persisted_task_ids)
        tasks = [await store.get_task(task_id) for task_id in ids]

        assert tasks[0].dependencies == []
        assert tasks[1].dependencies == [ids[0]]
        assert tasks[3].dependencies == [ids[2]]
        assert tasks[0].dependents == [ids[1]]
        assert all(t.project_id == "web-app" for t in tasks)
        assert all(t.epic_id for t in tasks)
        assert len(await store.list_dependencies("web-app")) == 3

        epic = await store.get_epic(tasks[0].epic_id)
        assert ids[0] in epic.task_ids

    @pytest.mark.asyncio
    async def test_atomic_task_persists_nothing(
        self,
        make_service,
        scripted_llm,
        assigner,
        store: InMemoryTaskStore,
        atomic_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that an atomic task is scheduled and assigned as is."""
        service = make_service(scripted_llm, assigner=assigner)

        session = service.start_decomposition(atomic_task, project_context)
        session = await service.wait_for_session(session.id)

        assert session.status == SessionStatus.COMPLETED
        assert session.total_tasks == 1
        assert session.processed_tasks == 0
        assert session.artifact_paths == ()
        assert list(session.schedule) == ["T0100"]
        assert session.assigned_task_ids == ("T0100",)
        assert await store.list_tasks() == []

    @pytest.mark.asyncio
    async def test_cancel_stops_at_next_stage(
        self,
        make_service,
        llm_factory,
        store: InMemoryTaskStore,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that a cancelled session persists nothing."""
        service = make_service(llm_factory(split_delay=0.2))
        session = service.start_decomposition(auth_task, project_context)
        await asyncio.sleep(0.05)

        assert service.cancel_session(session.id) is True
        session = await service.wait_for_session(session.id)

        assert session.status == SessionStatus.FAILED
        assert session.is_cancelled is True
        assert service.cancel_session(session.id) is False
        assert await store.list_tasks() == []

    @pytest.mark.asyncio
    async def test_wait_timeout(
        self,
        make_service,
        llm_factory,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that waiting past the timeout raises but keeps the session running."""
        service = make_service(llm_factory(split_delay=0.5))
        session = service.start_decomposition(auth_task, project_context)

        with pytest.raises(OperationTimeoutError):
            await service.wait_for_session(session.id, timeout=0.01)

        assert service.get_session(session.id).is_terminal is False
        service.cancel_session(session.id)
        await service.close()

    @pytest.mark.asyncio
    async def test_unknown_session(self, make_service, scripted_llm) -> None:
        """Test that unknown session ids raise SessionStateError."""
        service = make_service(scripted_llm)

        with pytest.raises(SessionStateError):
            await service.wait_for_session("decomp_missing")
        with pytest.raises(SessionStateError):
            service.cancel_session("decomp_missing")
        assert service.get_session("decomp_missing") is None

    def test_validation(
        self,
        make_service,
        scripted_llm,
        atomic_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that missing ids are rejected before a session is created."""
        service = make_service(scripted_llm)

        with pytest.raises(ValidationError) as exc_info:
            service.start_decomposition(atomic_task.model_copy(update={"id": " "}),
                                        project_context)
        assert exc_info.value.field == "task.id"

        with pytest.raises(ValidationError):
            service.start_decomposition(
                atomic_task, project_context.model_copy(update={"project_id": ""})
            )
        assert service.get_statistics()["total_sessions"] == 0

    @pytest.mark.asyncio
    async def test_storage_failure_fails_session(
        self,
        make_service,
        scripted_llm,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that a dependency write error fails the session without rolling back tasks."""
        failing_store = FailingDependencyStore()
        service = make_service(scripted_llm, store=failing_store)

        session = service.start_decomposition(auth_task, project_context)
        session = await service.wait_for_session(session.id)

        assert session.status == SessionStatus.FAILED
        assert session.error == "disk full"
        assert session.ended_at is not None
        # Tasks created before the failure are kept
        assert len(await failing_store.list_tasks("web-app")) == 4
        assert session.persisted_task_ids == ()


class TestSessionOptions:
    """Tests for per-request options."""

    @pytest.mark.asyncio
    async def test_max_depth_override(
        self,
        make_service,
        scripted_llm,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that a depth override stops analysis below the first level."""
        service = make_service(scripted_llm)

        session = service.start_decomposition(
            auth_task, project_context, DecompositionOptions(max_depth=1)
        )
        session = await service.wait_for_session(session.id)

        assert session.max_depth == 1
        assert session.status == SessionStatus.COMPLETED
        assert len(scripted_llm.calls_of("analysis")) == 1

    @pytest.mark.asyncio
    async def test_schedule_algorithm_and_skipped_stages(
        self,
        make_service,
        scripted_llm,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test algorithm selection with inference and artifacts disabled."""
        service = make_service(scripted_llm)
        options = DecompositionOptions(
            schedule_algorithm=ScheduleAlgorithm.PRIORITY_FIRST,
            infer_dependencies=False,
            write_artifacts=False,
        )

        session = service.start_decomposition(auth_task, project_context, options)
        session = await service.wait_for_session(session.id)

        assert session.artifact_paths == ()
        assert scripted_llm.calls_of("dependencies") == []
        assert {s.algorithm for s in session.schedule.values()} == {
            ScheduleAlgorithm.PRIORITY_FIRST
        }

    @pytest.mark.asyncio
    async def test_artifact_failure_is_a_warning(
        self,
        make_service,
        scripted_llm,
        auth_task: AtomicTask,
        project_context: ProjectContext,
        tmp_path: Path,
    ) -> None:
        """Test that an unwritable artifact directory does not fail the session."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        service = make_service(
            scripted_llm, artifact_writer=DependencyGraphArtifactWriter(blocker)
        )

        session = service.start_decomposition(auth_task, project_context)
        session = await service.wait_for_session(session.id)

        assert session.status == SessionStatus.COMPLETED
        assert session.artifact_paths == ()
        assert any("Artifact generation failed" in w for w in session.warnings)


class TestDependencyInference:
    """Tests for sibling dependency inference."""

    @pytest.mark.asyncio
    async def test_inferred_edges_applied(
        self,
        make_service,
        llm_factory,
        store: InMemoryTaskStore,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that new edges are persisted and cyclic ones rejected."""
        llm = llm_factory(dependencies=_first_to_last_and_back)
        service = make_service(llm)

        session = service.start_decomposition(auth_task, project_context)
        session = await service.wait_for_session(session.id)

        ids = list(session.persisted_task_ids)
        assert len(session.inferred_dependency_ids) == 1
        last = await store.get_task(ids[-1])
        first = await store.get_task(ids[0])
        assert ids[0] in last.dependencies
        assert ids[-1] in first.dependents
        assert ids[-1] not in first.dependencies

    @pytest.mark.asyncio
    async def test_inference_failure_yields_nothing(
        self, make_service, llm_factory, chain_tasks: list[AtomicTask]
    ) -> None:
        """Test that unparseable responses produce no edges."""
        service = make_service(llm_factory(dependencies="no json at all"))

        assert await service.infer_dependencies(chain_tasks, "web-app") == []

    @pytest.mark.asyncio
    async def test_inference_parses_types(
        self, make_service, llm_factory, chain_tasks: list[AtomicTask]
    ) -> None:
        """Test parsing of inferred edges and their criticality."""
        llm = llm_factory(
            dependencies={
                "dependencies": [
                    {"fromTaskId": "T1", "toTaskId": "T2", "type": "blocks"},
                    "not an object",
                    {"fromTaskId": "T1"},
                ]
            }
        )
        service = make_service(llm)

        dependencies = await service.infer_dependencies(chain_tasks, "web-app")

        assert len(dependencies) == 1
        assert dependencies[0].critical is True
        assert llm.calls_of("dependencies")[0]["temperature"] == 0.1


class TestServiceBookkeeping:
    """Tests for statistics, export and cleanup."""

    @pytest.mark.asyncio
    async def test_statistics_export_and_cleanup(
        self,
        make_service,
        scripted_llm,
        auth_task: AtomicTask,
        atomic_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test bookkeeping over several finished sessions."""
        service = make_service(scripted_llm)

        sessions = service.decompose_multiple([auth_task, atomic_task], project_context)
        assert len(service.get_active_sessions()) == 2
        await service.close()

        stats = service.get_statistics()
        assert stats["total_sessions"] == 2
        assert stats["completed_sessions"] == 2
        assert stats["active_sessions"] == 0

        export = service.export_session(sessions[0].id)
        assert export["status"] == "completed"
        assert len(export["results"]) == 1
        assert len(export["schedule"]) == 4
        assert len(service.get_results(sessions[1].id)) == 1

        assert service.cleanup_sessions() == 0
        assert service.cleanup_sessions(max_age=timedelta(0)) == 2
        assert service.get_session(sessions[0].id) is None

    @pytest.mark.asyncio
    async def test_cleanup_drops_stale_operations(
        self, make_service, scripted_llm, test_settings: Settings
    ) -> None:
        """Test that the cleanup pass also clears operations past the stale threshold."""
        now = utc_now()
        clock = [now]
        registry = OperationRegistry(
            stale_seconds=test_settings.taskforge_stale_operation_seconds,
            clock=lambda: clock[0],
        )
        service = make_service(scripted_llm, registry=registry)
        registry.start(OperationKind.SPLIT, "T0001", "T0001#1:split")
        clock[0] = now + timedelta(seconds=test_settings.taskforge_stale_operation_seconds - 60)
        registry.start(OperationKind.ANALYSIS, "T0002", "T0002#2:analysis")
        clock[0] = now + timedelta(seconds=test_settings.taskforge_stale_operation_seconds + 1)

        assert service.cleanup_sessions() == 0
        assert [op.operation_id for op in registry.active_operations()] == ["T0002#2:analysis"]


class TestRetryDecomposition:
    """Tests for retrying failed sessions."""

    @pytest.mark.asyncio
    async def test_retry_cancelled_session(
        self,
        make_service,
        llm_factory,
        store: InMemoryTaskStore,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that a cancelled session is rerun for the same task and context."""
        service = make_service(llm_factory(split_delay=0.1))
        original = service.start_decomposition(auth_task, project_context)
        await asyncio.sleep(0.02)
        service.cancel_session(original.id)
        await service.wait_for_session(original.id)

        retry = service.retry_decomposition(
            original.id, DecompositionOptions(write_artifacts=False)
        )
        retry = await service.wait_for_session(retry.id)

        assert retry.id != original.id
        assert retry.task_id == auth_task.id
        assert retry.project_id == project_context.project_id
        assert retry.status == SessionStatus.COMPLETED
        assert retry.artifact_paths == ()
        assert len(await store.list_tasks("web-app")) == 4
        assert service.get_session(original.id).is_cancelled is True

    @pytest.mark.asyncio
    async def test_only_failed_sessions_retried(
        self,
        make_service,
        scripted_llm,
        atomic_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that completed and unknown sessions cannot be retried."""
        service = make_service(scripted_llm)
        session = service.start_decomposition(atomic_task, project_context)
        await service.wait_for_session(session.id)

        with pytest.raises(SessionStateError):
            service.retry_decomposition(session.id)
        with pytest.raises(SessionStateError):
            service.retry_decomposition("decomp_missing")
        assert service.get_statistics()["total_sessions"] == 1


class TestDownstreamAssignment:
    """Tests for handing ready tasks to the assigner."""

    @pytest.mark.asyncio
    async def test_pending_external_prerequisite_blocks_assignment(
        self,
        make_service,
        scripted_llm,
        assigner,
        store: InMemoryTaskStore,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that subtasks inheriting an unfinished prerequisite are not assigned."""
        prereq = await store.create_task(
            {"title": "Set up database", "project_id": "web-app", "estimated_hours": 0.1}
        )
        task = auth_task.model_copy(update={"dependencies": [prereq.id]})
        service = make_service(scripted_llm, assigner=assigner)

        session = service.start_decomposition(task, project_context)
        session = await service.wait_for_session(session.id)

        assert session.status == SessionStatus.COMPLETED
        first = await store.get_task(session.persisted_task_ids[0])
        assert prereq.id in first.dependencies
        assert session.assigned_task_ids == ()
        assert assigner.assigned == []

    @pytest.mark.asyncio
    async def test_completed_prerequisite_allows_assignment(
        self,
        make_service,
        scripted_llm,
        assigner,
        store: InMemoryTaskStore,
        auth_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that only tasks whose stored prerequisites completed are assigned."""
        prereq = await store.create_task(
            {
                "title": "Set up database",
                "project_id": "web-app",
                "estimated_hours": 0.1,
                "status": TaskStatus.COMPLETED,
            }
        )
        task = auth_task.model_copy(update={"dependencies": [prereq.id]})
        service = make_service(scripted_llm, assigner=assigner)

        session = service.start_decomposition(task, project_context)
        session = await service.wait_for_session(session.id)

        assert session.assigned_task_ids == (session.persisted_task_ids[0],)

    @pytest.mark.asyncio
    async def test_atomic_source_with_pending_prerequisite(
        self,
        make_service,
        scripted_llm,
        assigner,
        store: InMemoryTaskStore,
        atomic_task: AtomicTask,
        project_context: ProjectContext,
    ) -> None:
        """Test that an atomic source task waits for its prerequisite too."""
        prereq = await store.create_task({"title": "Set up database", "project_id": "web-app"})
        task = atomic_task.model_copy(update={"dependencies": [prereq.id]})
        service = make_service(scripted_llm, assigner=assigner)

        session = service.start_decomposition(task, project_context)
        session = await service.wait_for_session(session.id)

        assert session.status == SessionStatus.COMPLETED
        assert session.assigned_task_ids == ()
