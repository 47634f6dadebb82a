"""Decomposition service.

Owns the asynchronous lifecycle of decomposition sessions: context
enrichment, recursive decomposition, two-pass persistence, sibling
dependency inference, artifact generation and downstream scheduling.
"""

import asyncio
from collections import defaultdict
from datetime import timedelta
from typing import Any

from loguru import logger

from taskforge.core.config import Settings, get_settings
from taskforge.core.errors import (
    CyclicDependencyError,
    OperationTimeoutError,
    SessionStateError,
    TaskExecutionError,
    TaskforgeError,
    ValidationError,
)
from taskforge.core.timeouts import TimeoutManager
from taskforge.decomposition.models import (
    AtomicTask,
    DecompositionResult,
    Dependency,
    DependencyType,
    ProjectContext,
    TaskStatus,
    utc_now,
)
from taskforge.decomposition.operations import OperationRegistry
from taskforge.decomposition.rdd_engine import RDDEngine
from taskforge.epics.context_resolver import EpicContextResolver
from taskforge.graph.dependency_graph import DependencyGraph, infer_dependency_type
from taskforge.graph.rendering import DependencyGraphArtifactWriter
from taskforge.integrations.base import (
    ContextProvider,
    ResearchProvider,
    TaskAssigner,
)
from taskforge.llm.client import GenerativeTextClient, OutputFormat
from taskforge.llm.parsing import extract_json
from taskforge.prompts.builder import PromptBuilder
from taskforge.scheduling.scheduler import TaskScheduler
from taskforge.sessions.enrichment import ContextEnricher
from taskforge.sessions.models import (
    CANCELLED_REASON,
    DecompositionOptions,
    DecompositionSession,
    SessionStatus,
    generate_session_id,
)
from taskforge.storage.base import TaskStore

# Task fields assigned by storage or wired in the second persistence pass
_UNPERSISTED_FIELDS = {"id", "dependencies", "dependents", "created_at", "updated_at"}


class _SessionCancelled(Exception):
    """Raised inside a pipeline when its session was cancelled."""


class DecompositionService:
    """
    Run decomposition sessions in the background.

    Example:
        >>> service = DecompositionService(llm, InMemoryTaskStore())
        >>> session = service.start_decomposition(task, context)
        >>> session = await service.wait_for_session(session.id)
        >>> session.status
        <SessionStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        llm: GenerativeTextClient,
        store: TaskStore,
        settings: Settings | None = None,
        engine: RDDEngine | None = None,
        enricher: ContextEnricher | None = None,
        context_provider: ContextProvider | None = None,
        research_provider: ResearchProvider | None = None,
        assigner: TaskAssigner | None = None,
        scheduler: TaskScheduler | None = None,
        artifact_writer: DependencyGraphArtifactWriter | None = None,
        timeout_manager: TimeoutManager | None = None,
        registry: OperationRegistry | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            llm: Generative-text capability for splitting and dependency inference.
            store: Task/epic storage.
            settings: Settings (defaults to ``get_settings()``).
            engine: RDD engine (built from settings if omitted).
            enricher: Context enricher (built from the providers if omitted).
            context_provider: Optional codebase context provider.
            research_provider: Optional research provider.
            assigner: Optional downstream task assigner.
            scheduler: Task scheduler for the downstream schedule.
            artifact_writer: Dependency graph artifact writer.
            timeout_manager: Timeout classes and retry policy.
            registry: Operation registry shared with health checks.
        """
        self.settings = settings or get_settings()
        self.llm = llm
        self.store = store
        self.timeouts = timeout_manager or self.settings.timeout_manager()
        self.registry = registry or OperationRegistry(
            long_running_seconds=self.settings.taskforge_long_running_operation_seconds,
            stale_seconds=self.settings.taskforge_stale_operation_seconds,
        )
        self.prompts = PromptBuilder()
        self.engine = engine or RDDEngine(
            llm,
            self.settings.rdd_config(),
            timeout_manager=self.timeouts,
            registry=self.registry,
            prompt_builder=self.prompts,
        )
        self.enricher = enricher or ContextEnricher(context_provider, research_provider)
        self.epic_resolver = EpicContextResolver(store)
        self.assigner = assigner
        self.scheduler = scheduler or TaskScheduler(
            concurrent_slots=self.settings.taskforge_scheduler_slots
        )
        self.artifact_writer = artifact_writer or DependencyGraphArtifactWriter(
            self.settings.artifacts_dir
        )

        self._sessions: dict[str, DecompositionSession] = {}
        self._runs: dict[str, asyncio.Task[None]] = {}
        self._requests: dict[str, tuple[AtomicTask, ProjectContext, DecompositionOptions]] = {}

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    def start_decomposition(
        self,
        task: AtomicTask,
        context: ProjectContext,
        options: DecompositionOptions | None = None,
    ) -> DecompositionSession:
        """
        Validate the request and schedule the pipeline in the background.

        Must be called from a running event loop. Returns the pending
        session immediately.

        Raises:
            ValidationError: If the task id or project id is missing.
        """
        if not task.id or not task.id.strip():
            raise ValidationError("Task id is required", field="task.id")
        if not context.project_id or not context.project_id.strip():
            raise ValidationError("Project id is required", field="context.project_id")

        options = options or DecompositionOptions()
        if not task.project_id:
            task = task.model_copy(update={"project_id": context.project_id})

        session = DecompositionSession(
            id=generate_session_id(),
            task_id=task.id,
            project_id=context.project_id,
            max_depth=options.max_depth or self.engine.config.max_depth,
        )
        self._sessions[session.id] = session
        self._requests[session.id] = (task, context, options)
        self._runs[session.id] = asyncio.create_task(
            self._run(session.id, task, context, options),
            name=f"decomposition-{session.id}",
        )

        logger.info(f"Started decomposition session {session.id} for task {task.id}")
        return session

    def decompose_multiple(
        self,
        tasks: list[AtomicTask],
        context: ProjectContext,
        options: DecompositionOptions | None = None,
    ) -> list[DecompositionSession]:
        """Start one independent session per task."""
        sessions = [self.start_decomposition(task, context, options) for task in tasks]
        logger.info(f"Started {len(sessions)} decomposition sessions for {context.project_id}")
        return sessions

    def get_session(self, session_id: str) -> DecompositionSession | None:
        return self._sessions.get(session_id)

    async def wait_for_session(
        self, session_id: str, timeout: float | None = None
    ) -> DecompositionSession:
        """
        Wait until the session's pipeline has finished.

        Raises:
            SessionStateError: If the session is unknown.
            OperationTimeoutError: If ``timeout`` elapses first.
        """
        self._require(session_id)
        run = self._runs.get(session_id)
        if run is not None:
            try:
                await asyncio.wait_for(asyncio.shield(run), timeout)
            except TimeoutError:
                raise OperationTimeoutError("wait_for_session", timeout or 0.0) from None
        return self._require(session_id)

    def cancel_session(self, session_id: str) -> bool:
        """
        Cancel a session.

        The in-flight stage is allowed to finish; the pipeline stops at the
        next stage boundary.

        Returns:
            True if the session was cancelled, False if it had already ended.

        Raises:
            SessionStateError: If the session is unknown.
        """
        session = self._require(session_id)
        if session.is_terminal:
            return False
        self._sessions[session_id] = session.fail(CANCELLED_REASON)
        logger.info(f"Cancelled decomposition session {session_id}")
        return True

    def retry_decomposition(
        self, session_id: str, options: DecompositionOptions | None = None
    ) -> DecompositionSession:
        """
        Start a new session for the task and context of a failed session.

        Args:
            session_id: Failed (or cancelled) session to retry.
            options: Overrides for the new run (defaults to the original options).

        Returns:
            The new pending session.

        Raises:
            SessionStateError: If the session is unknown, has not failed, or
                its request is no longer retained.
        """
        session = self._require(session_id)
        if session.status != SessionStatus.FAILED:
            raise SessionStateError(
                f"Only failed sessions can be retried, {session_id} is {session.status.value}",
                session_id=session_id,
            )
        request = self._requests.get(session_id)
        if request is None:
            raise SessionStateError(
                f"Request for session {session_id} is no longer available",
                session_id=session_id,
            )

        task, context, original_options = request
        retry = self.start_decomposition(task, context, options or original_options)
        logger.info(f"Retrying decomposition session {session_id} as {retry.id}")
        return retry

    def cleanup_sessions(self, max_age: timedelta | None = None) -> int:
        """
        Drop finished sessions older than ``max_age``.

        Stale entries in the operation registry are dropped in the same pass.

        Args:
            max_age: Retention window (defaults to the configured retention).

        Returns:
            Number of sessions removed.
        """
        if max_age is None:
            max_age = timedelta(hours=self.settings.taskforge_session_retention_hours)
        cutoff = utc_now() - max_age

        expired = [
            s.id
            for s in self._sessions.values()
            if s.is_terminal and s.ended_at is not None and s.ended_at < cutoff
        ]
        for session_id in expired:
            del self._sessions[session_id]
            self._runs.pop(session_id, None)
            self._requests.pop(session_id, None)

        if expired:
            logger.info(f"Cleaned up {len(expired)} decomposition sessions")

        stale = self.registry.cleanup_stale_operations()
        if stale:
            logger.info(f"Cleaned up {stale} stale decomposition operations")
        return len(expired)

    def get_active_sessions(self) -> list[DecompositionSession]:
        return [s for s in self._sessions.values() if not s.is_terminal]

    def get_statistics(self) -> dict[str, Any]:
        sessions = list(self._sessions.values())
        durations = [s.duration_seconds for s in sessions if s.duration_seconds is not None]
        return {
            "total_sessions": len(sessions),
            "active_sessions": sum(1 for s in sessions if not s.is_terminal),
            "completed_sessions": sum(1 for s in sessions if s.status == SessionStatus.COMPLETED),
            "failed_sessions": sum(1 for s in sessions if s.status == SessionStatus.FAILED),
            "average_duration_seconds": sum(durations) / len(durations) if durations else 0.0,
        }

    def get_results(self, session_id: str) -> list[DecompositionResult]:
        return list(self._require(session_id).results)

    def export_session(self, session_id: str) -> dict[str, Any]:
        """Serializable export of a session including results and schedule."""
        session = self._require(session_id)
        data = session.to_dict()
        data["results"] = [r.model_dump(mode="json") for r in session.results]
        data["schedule"] = {k: v.model_dump(mode="json") for k, v in session.schedule.items()}
        data["inferred_dependency_ids"] = list(session.inferred_dependency_ids)
        data["assigned_task_ids"] = list(session.assigned_task_ids)
        data["warnings"] = list(session.warnings)
        return data

    async def close(self) -> None:
        """Wait for every running pipeline to finish."""
        runs = [r for r in self._runs.values() if not r.done()]
        if runs:
            await asyncio.gather(*runs, return_exceptions=True)

    def _require(self, session_id: str) -> DecompositionSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionStateError(f"Unknown session: {session_id}", session_id=session_id)
        return session

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def _run(
        self,
        session_id: str,
        task: AtomicTask,
        context: ProjectContext,
        options: DecompositionOptions,
    ) -> None:
        try:
            await self._execute(session_id, task, context, options)
        except _SessionCancelled:
            logger.info(f"Session {session_id} stopped after cancellation")
        except Exception as e:
            logger.error(f"Decomposition session {session_id} failed: {e}")
            session = self._sessions.get(session_id)
            if session is not None and not session.is_terminal:
                self._sessions[session_id] = session.fail(str(e) or type(e).__name__)

    async def _execute(
        self,
        session_id: str,
        task: AtomicTask,
        context: ProjectContext,
        options: DecompositionOptions,
    ) -> None:
        self._advance(session_id, 10)

        enriched = await self.enricher.enrich(task, context)
        self._advance(session_id, 20)

        result = await self._engine_for(options).decompose_task(task, enriched)
        if not result.success:
            raise TaskExecutionError(result.error or f"Decomposition of {task.id} failed")
        self._advance(
            session_id,
            80,
            results=(result,),
            current_depth=result.max_depth_reached,
            warnings=tuple(result.notes),
        )

        persisted = await self._persist(session_id, result.sub_tasks, context.project_id)
        self._advance(session_id, 85, persisted_task_ids=tuple(t.id for t in persisted))

        graph = DependencyGraph.from_tasks(persisted, project_id=context.project_id)
        inferred: list[Dependency] = []
        if options.infer_dependencies and len(persisted) > 1:
            inferred = await self._apply_inferred_dependencies(persisted, graph, context.project_id)
        self._advance(session_id, 90, inferred_dependency_ids=tuple(d.id for d in inferred))

        artifact_paths: tuple[str, ...] = ()
        if options.write_artifacts and persisted:
            try:
                artifact_paths = tuple(self.artifact_writer.write(graph).paths)
            except OSError as e:
                logger.warning(f"Failed to write dependency graph artifacts for {session_id}: {e}")
                self._warn(session_id, f"Artifact generation failed: {e}")

        self._checkpoint(session_id)
        total_tasks = 1 if result.is_atomic else len(result.sub_tasks)
        self._sessions[session_id] = self._sessions[session_id].transition(
            SessionStatus.COMPLETED,
            total_tasks=total_tasks,
            processed_tasks=len(persisted),
            artifact_paths=artifact_paths,
        )
        logger.info(
            f"Decomposition session {session_id} completed: "
            f"{total_tasks} task(s), {len(persisted)} persisted, {len(inferred)} inferred edges"
        )

        await self._downstream(session_id, persisted or [task], graph, enriched, options)

    def _engine_for(self, options: DecompositionOptions) -> RDDEngine:
        if options.max_depth is None or options.max_depth == self.engine.config.max_depth:
            return self.engine
        return RDDEngine(
            self.llm,
            self.engine.config.model_copy(update={"max_depth": options.max_depth}),
            analyzer=self.engine.analyzer,
            timeout_manager=self.timeouts,
            registry=self.registry,
            prompt_builder=self.prompts,
        )

    def _checkpoint(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.is_terminal:
            raise _SessionCancelled(session_id)

    def _advance(self, session_id: str, progress: int, **updates: Any) -> None:
        self._checkpoint(session_id)
        self._sessions[session_id] = self._sessions[session_id].advance(progress, **updates)
        logger.debug(f"Session {session_id} progress {progress}%")

    def _warn(self, session_id: str, message: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions[session_id] = session.annotate(warnings=session.warnings + (message,))

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _persist(
        self, session_id: str, sub_tasks: list[AtomicTask], project_id: str
    ) -> list[AtomicTask]:
        """
        Persist subtasks in two passes.

        Pass 1 creates every task and maps provisional ids to stored ids.
        Pass 2 wires declared dependencies through that mapping.
        """
        if not sub_tasks:
            return []

        id_map: dict[str, str] = {}
        created: list[tuple[AtomicTask, AtomicTask]] = []

        for sub_task in sub_tasks:
            self._checkpoint(session_id)
            try:
                epic_id = sub_task.epic_id
                if not epic_id:
                    epic_id = (await self.epic_resolver.resolve(project_id, sub_task)).epic_id
                fields = sub_task.model_dump(exclude=_UNPERSISTED_FIELDS)
                fields.update(project_id=project_id, epic_id=epic_id)
                stored = await self.store.create_task(fields)
            except Exception as e:
                logger.error(f"Failed to persist subtask {sub_task.id}: {e}")
                self._warn(session_id, f"Failed to persist {sub_task.id}: {e}")
                continue

            id_map[sub_task.id] = stored.id
            created.append((sub_task, stored))
            await self._attach_to_epic(epic_id, stored.id)

        logger.info(f"Persisted {len(created)}/{len(sub_tasks)} subtasks for session {session_id}")

        dependents: dict[str, list[str]] = defaultdict(list)
        for sub_task, stored in created:
            self._checkpoint(session_id)
            resolved: list[str] = []
            for dep_id in sub_task.dependencies:
                target = id_map.get(dep_id)
                if target is None and await self.store.get_task(dep_id) is not None:
                    target = dep_id
                if target is None:
                    logger.warning(f"Dropping unresolved dependency {dep_id} of {sub_task.id}")
                    continue
                if target != stored.id and target not in resolved:
                    resolved.append(target)

            for dep_id in resolved:
                await self.store.create_dependency(
                    Dependency(
                        from_task_id=dep_id,
                        to_task_id=stored.id,
                        type=DependencyType.REQUIRES,
                        description="Declared during decomposition",
                    )
                )
                dependents[dep_id].append(stored.id)
            if resolved:
                await self.store.update_task(stored.id, {"dependencies": resolved})

        for task_id, new_dependents in dependents.items():
            current = await self.store.get_task(task_id)
            if current is None:
                continue
            merged = list(dict.fromkeys(current.dependents + new_dependents))
            await self.store.update_task(task_id, {"dependents": merged})

        persisted = []
        for _, stored in created:
            task = await self.store.get_task(stored.id)
            if task is not None:
                persisted.append(task)
        return persisted

    async def _attach_to_epic(self, epic_id: str, task_id: str) -> None:
        try:
            epic = await self.store.get_epic(epic_id)
            if epic is None:
                logger.warning(f"Epic {epic_id} not found, task {task_id} not attached")
                return
            if task_id not in epic.task_ids:
                await self.store.update_epic(epic_id, {"task_ids": epic.task_ids + [task_id]})
        except Exception as e:
            logger.warning(f"Failed to attach task {task_id} to epic {epic_id}: {e}")

    # =========================================================================
    # DEPENDENCY INFERENCE
    # =========================================================================

    async def infer_dependencies(
        self, tasks: list[AtomicTask], project_id: str
    ) -> list[Dependency]:
        """
        Ask the model for dependencies among sibling tasks.

        Failures of the generative call are logged and yield no edges.
        """
        prompt = self.prompts.build_dependency_prompt(tasks, project_id)
        try:
            response = await self.llm.generate(
                prompt,
                system_prompt=self.prompts.dependency_system_prompt,
                output_format=OutputFormat.JSON,
                temperature=0.1,
            )
            data = extract_json(response)
        except TaskforgeError as e:
            logger.warning(f"Dependency inference failed for {project_id}: {e}")
            return []

        raw = data.get("dependencies") or []
        if not isinstance(raw, list):
            logger.warning(f"Dependency inference returned non-list dependencies for {project_id}")
            return []

        dependencies = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            source = entry.get("fromTaskId") or entry.get("from_task_id")
            target = entry.get("toTaskId") or entry.get("to_task_id")
            if not source or not target:
                continue
            kind = infer_dependency_type(entry.get("type"))
            dependencies.append(
                Dependency(
                    from_task_id=str(source),
                    to_task_id=str(target),
                    type=kind,
                    critical=kind == DependencyType.BLOCKS,
                    description=str(entry.get("reasoning") or ""),
                )
            )

        logger.info(f"Inferred {len(dependencies)} candidate dependencies for {project_id}")
        return dependencies

    async def _apply_inferred_dependencies(
        self,
        tasks: list[AtomicTask],
        graph: DependencyGraph,
        project_id: str,
    ) -> list[Dependency]:
        """Merge inferred edges into ``graph`` and persist the accepted ones."""
        applied: list[Dependency] = []

        for dependency in await self.infer_dependencies(tasks, project_id):
            if not graph.add_dependency(dependency, allow_cycles=False, strict=False):
                logger.debug(
                    f"Skipping inferred dependency "
                    f"{dependency.from_task_id} -> {dependency.to_task_id}"
                )
                continue

            stored = await self.store.create_dependency(dependency)
            dependent = await self.store.get_task(dependency.to_task_id)
            prerequisite = await self.store.get_task(dependency.from_task_id)
            if dependent is None or prerequisite is None:
                raise TaskExecutionError(
                    f"Task vanished while applying dependency {stored.id}", retryable=True
                )

            await self.store.update_task(
                dependent.id, {"dependencies": dependent.dependencies + [prerequisite.id]}
            )
            await self.store.update_task(
                prerequisite.id, {"dependents": prerequisite.dependents + [dependent.id]}
            )

            check = await self.store.get_task(dependent.id)
            if check is None or prerequisite.id not in check.dependencies:
                raise TaskExecutionError(
                    f"Dependency {prerequisite.id} -> {dependent.id} was not persisted",
                    retryable=True,
                )
            applied.append(stored)

        logger.info(f"Applied {len(applied)} inferred dependencies for {project_id}")
        return applied

    # =========================================================================
    # DOWNSTREAM
    # =========================================================================

    async def _downstream(
        self,
        session_id: str,
        tasks: list[AtomicTask],
        graph: DependencyGraph,
        context: ProjectContext,
        options: DecompositionOptions,
    ) -> None:
        """Schedule the tasks and hand ready ones to the assigner."""
        if not graph.nodes:
            graph = DependencyGraph.from_tasks(tasks, project_id=context.project_id)

        algorithm = (
            options.schedule_algorithm or self.settings.taskforge_default_schedule_algorithm
        )
        try:
            schedule = self.scheduler.schedule(tasks, graph, algorithm)
            self._sessions[session_id] = self._sessions[session_id].annotate(schedule=schedule)
        except (CyclicDependencyError, ValidationError) as e:
            logger.warning(f"Scheduling failed for session {session_id}: {e}")
            self._warn(session_id, f"Scheduling failed: {e}")

        if self.assigner is None or not options.assign_ready_tasks:
            return

        assigned: list[str] = []
        for task in await self._ready_tasks(tasks):
            task_id = task.id
            try:
                assignment = await self.assigner.assign_task(task, context)
            except Exception as e:
                logger.warning(f"Assignment of {task_id} failed: {e}")
                continue
            if assignment is not None:
                assigned.append(task_id)
                logger.info(f"Assigned {task_id} to {assignment.assignee}")

        session = self._sessions[session_id]
        self._sessions[session_id] = session.annotate(assigned_task_ids=tuple(assigned))

    async def _ready_tasks(self, tasks: list[AtomicTask]) -> list[AtomicTask]:
        """
        Tasks whose own dependencies have all completed.

        Each task is re-read from storage so edges wired after it was loaded
        count. A dependency that cannot be found is treated as unmet.
        """
        ready = []
        for task in tasks:
            current = await self.store.get_task(task.id) or task
            satisfied = True
            for dep_id in current.dependencies:
                prerequisite = await self.store.get_task(dep_id)
                if prerequisite is None or prerequisite.status != TaskStatus.COMPLETED:
                    satisfied = False
                    break
            if satisfied:
                ready.append(current)
            else:
                logger.debug(f"Task {current.id} has unmet dependencies, not assigned")
        return ready
