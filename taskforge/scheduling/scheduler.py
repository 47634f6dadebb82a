"""Task scheduler - start/end assignment under interchangeable strategies.

All strategies share one list-scheduling loop: at each step the strategy's
key picks among the tasks whose prerequisites are already scheduled, and the
chosen task starts no earlier than the latest end of its prerequisites on the
first slot that frees up. Every strategy therefore satisfies
``start(B) >= end(A) >= start(A)`` for each edge ``A -> B``.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from taskforge.core.errors import CyclicDependencyError, ValidationError
from taskforge.decomposition.models import AtomicTask, TaskPriority, utc_now
from taskforge.graph.dependency_graph import DependencyGraph


class ScheduleAlgorithm(str, Enum):
    """Available scheduling strategies."""

    PRIORITY_FIRST = "priority_first"
    EARLIEST_DEADLINE = "earliest_deadline"
    CRITICAL_PATH = "critical_path"
    RESOURCE_BALANCED = "resource_balanced"
    SHORTEST_JOB_FIRST = "shortest_job_first"
    HYBRID_OPTIMAL = "hybrid_optimal"


# Deadline window by priority, in hours from the schedule start
PRIORITY_DEADLINE_HOURS: dict[TaskPriority, float] = {
    TaskPriority.CRITICAL: 4.0,
    TaskPriority.HIGH: 8.0,
    TaskPriority.MEDIUM: 24.0,
    TaskPriority.LOW: 72.0,
}


class HybridWeights(BaseModel):
    """Weights of the hybrid-optimal score."""

    priority: float = Field(default=0.5, ge=0)
    critical_path: float = Field(default=0.3, ge=0)
    duration: float = Field(default=0.2, ge=0)


class ScheduledTask(BaseModel):
    """Start/end assignment of one task."""

    task_id: str
    start: datetime
    end: datetime
    algorithm: ScheduleAlgorithm
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def duration_hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600


Schedule = dict[str, ScheduledTask]


class _Plan:
    """Precomputed facts about the task set shared by every strategy."""

    def __init__(self, tasks: list[AtomicTask], graph: DependencyGraph) -> None:
        self.tasks = {t.id: t for t in tasks}
        edges = [
            e
            for e in graph.edges
            if e.from_task_id in self.tasks and e.to_task_id in self.tasks
        ]
        self.graph = DependencyGraph.from_tasks(tasks, edges, project_id=graph.project_id)

        cycle = self.graph.detect_cycle()
        if cycle:
            raise CyclicDependencyError(cycle)

        self.order = {task_id: i for i, task_id in enumerate(self.graph.execution_order())}
        self.critical_path = self.graph.critical_path()
        self.on_critical_path = set(self.critical_path)
        self.max_hours = max((t.estimated_hours for t in tasks), default=0.0)

    def prerequisites(self, task_id: str) -> list[str]:
        return self.graph.prerequisites(task_id)

    def slack(self) -> dict[str, float]:
        """Slack per task with unlimited parallelism (forward/backward pass)."""
        earliest: dict[str, float] = {}
        for task_id in sorted(self.order, key=self.order.get):
            earliest[task_id] = max(
                (earliest[p] + self.tasks[p].estimated_hours for p in self.prerequisites(task_id)),
                default=0.0,
            )
        finish = max(
            (earliest[t] + self.tasks[t].estimated_hours for t in self.tasks), default=0.0
        )
        latest: dict[str, float] = {}
        for task_id in sorted(self.order, key=self.order.get, reverse=True):
            successors = self.graph.dependents(task_id)
            latest_finish = min((latest[s] for s in successors), default=finish)
            latest[task_id] = latest_finish - self.tasks[task_id].estimated_hours
        return {t: round(latest[t] - earliest[t], 4) for t in self.tasks}


class TaskScheduler:
    """
    Produce a start/end assignment for every task.

    Example:
        >>> scheduler = TaskScheduler(concurrent_slots=2)
        >>> schedule = scheduler.schedule(tasks, graph, ScheduleAlgorithm.CRITICAL_PATH)
        >>> schedule["T1"].start <= schedule["T2"].start
        True
    """

    def __init__(
        self,
        concurrent_slots: int = 3,
        start_time: datetime | None = None,
        hybrid_weights: HybridWeights | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            concurrent_slots: Number of tasks that may run at the same time.
            start_time: Schedule origin (defaults to the time of each call).
            hybrid_weights: Weights for the hybrid-optimal strategy.
        """
        if concurrent_slots < 1:
            raise ValidationError("concurrent_slots must be at least 1", field="concurrent_slots")
        self.concurrent_slots = concurrent_slots
        self.start_time = start_time
        self.hybrid_weights = hybrid_weights or HybridWeights()

    def schedule(
        self,
        tasks: list[AtomicTask],
        graph: DependencyGraph,
        algorithm: ScheduleAlgorithm | str = ScheduleAlgorithm.HYBRID_OPTIMAL,
    ) -> Schedule:
        """
        Schedule ``tasks`` respecting the edges of ``graph``.

        Args:
            tasks: Tasks to schedule; ids must be unique.
            graph: Dependency graph (edges to tasks outside ``tasks`` are ignored).
            algorithm: Strategy, by enum or name.

        Returns:
            Mapping of task id to ScheduledTask, one entry per input task.

        Raises:
            ValidationError: For duplicate task ids or an unknown algorithm.
            CyclicDependencyError: If the edges among ``tasks`` form a cycle.
        """
        algorithm = self._resolve_algorithm(algorithm)

        ids = [t.id for t in tasks]
        if len(ids) != len(set(ids)):
            raise ValidationError("Duplicate task ids in schedule input", field="tasks")

        if not tasks:
            return {}

        plan = _Plan(tasks, graph)
        strategy = self._strategies()[algorithm]
        schedule = strategy(plan)

        logger.info(
            f"Scheduled {len(schedule)} tasks with {algorithm.value} "
            f"(makespan {makespan(schedule):.2f}h)"
        )
        return schedule

    def _strategies(self) -> dict[ScheduleAlgorithm, Callable[[_Plan], Schedule]]:
        return {
            ScheduleAlgorithm.PRIORITY_FIRST: self._priority_first,
            ScheduleAlgorithm.EARLIEST_DEADLINE: self._earliest_deadline,
            ScheduleAlgorithm.CRITICAL_PATH: self._critical_path,
            ScheduleAlgorithm.RESOURCE_BALANCED: self._resource_balanced,
            ScheduleAlgorithm.SHORTEST_JOB_FIRST: self._shortest_job_first,
            ScheduleAlgorithm.HYBRID_OPTIMAL: self._hybrid_optimal,
        }

    @staticmethod
    def _resolve_algorithm(algorithm: ScheduleAlgorithm | str) -> ScheduleAlgorithm:
        if isinstance(algorithm, ScheduleAlgorithm):
            return algorithm
        try:
            return ScheduleAlgorithm(str(algorithm).strip().lower().replace("-", "_"))
        except ValueError:
            raise ValidationError(
                f"Unknown scheduling algorithm: {algorithm}", field="algorithm"
            ) from None

    # =========================================================================
    # STRATEGIES
    # =========================================================================

    def _priority_first(self, plan: _Plan) -> Schedule:
        return self._list_schedule(
            plan,
            ScheduleAlgorithm.PRIORITY_FIRST,
            key=lambda t: (-t.priority.rank, plan.order[t.id]),
            slots=1,
            metadata=lambda t: {"priority": t.priority.value},
        )

    def _earliest_deadline(self, plan: _Plan) -> Schedule:
        origin = self._origin()

        def deadline_hours(task: AtomicTask) -> float:
            return PRIORITY_DEADLINE_HOURS[task.priority] + task.estimated_hours

        return self._list_schedule(
            plan,
            ScheduleAlgorithm.EARLIEST_DEADLINE,
            key=lambda t: (deadline_hours(t), plan.order[t.id]),
            metadata=lambda t: {
                "deadline": (origin + timedelta(hours=deadline_hours(t))).isoformat()
            },
            origin=origin,
        )

    def _critical_path(self, plan: _Plan) -> Schedule:
        position = {task_id: i for i, task_id in enumerate(plan.critical_path)}
        slack = plan.slack()
        return self._list_schedule(
            plan,
            ScheduleAlgorithm.CRITICAL_PATH,
            key=lambda t: (
                0 if t.id in position else 1,
                position.get(t.id, 0),
                slack[t.id],
                plan.order[t.id],
            ),
            metadata=lambda t: {
                "on_critical_path": t.id in plan.on_critical_path,
                "slack_hours": 0.0 if t.id in plan.on_critical_path else slack[t.id],
            },
        )

    def _resource_balanced(self, plan: _Plan) -> Schedule:
        # Longest ready task first onto the least loaded slot
        return self._list_schedule(
            plan,
            ScheduleAlgorithm.RESOURCE_BALANCED,
            key=lambda t: (-t.estimated_hours, plan.order[t.id]),
        )

    def _shortest_job_first(self, plan: _Plan) -> Schedule:
        return self._list_schedule(
            plan,
            ScheduleAlgorithm.SHORTEST_JOB_FIRST,
            key=lambda t: (t.estimated_hours, -t.priority.rank, plan.order[t.id]),
            metadata=lambda t: {"estimated_hours": t.estimated_hours},
        )

    def _hybrid_optimal(self, plan: _Plan) -> Schedule:
        weights = self.hybrid_weights

        def score(task: AtomicTask) -> float:
            priority_score = task.priority.rank / 4
            path_score = 1.0 if task.id in plan.on_critical_path else 0.0
            duration_score = (
                1.0 - task.estimated_hours / plan.max_hours if plan.max_hours > 0 else 1.0
            )
            return round(
                weights.priority * priority_score
                + weights.critical_path * path_score
                + weights.duration * duration_score,
                6,
            )

        return self._list_schedule(
            plan,
            ScheduleAlgorithm.HYBRID_OPTIMAL,
            key=lambda t: (-score(t), plan.order[t.id]),
            metadata=lambda t: {
                "score": score(t),
                "on_critical_path": t.id in plan.on_critical_path,
            },
        )

    # =========================================================================
    # LIST SCHEDULING
    # =========================================================================

    def _list_schedule(
        self,
        plan: _Plan,
        algorithm: ScheduleAlgorithm,
        key: Callable[[AtomicTask], Any],
        slots: int | None = None,
        metadata: Callable[[AtomicTask], dict[str, Any]] | None = None,
        origin: datetime | None = None,
    ) -> Schedule:
        slots = slots or self.concurrent_slots
        origin = origin or self._origin()
        slot_free = [0.0] * slots
        slot_load = [0.0] * slots
        finish: dict[str, float] = {}
        schedule: Schedule = {}
        remaining = dict(plan.tasks)

        while remaining:
            ready = [
                task
                for task_id, task in remaining.items()
                if all(p in finish for p in plan.prerequisites(task_id))
            ]
            if not ready:
                raise CyclicDependencyError(sorted(remaining))

            task = min(ready, key=key)
            earliest = max((finish[p] for p in plan.prerequisites(task.id)), default=0.0)
            slot = min(range(slots), key=lambda s: (max(slot_free[s], earliest), slot_load[s], s))
            start = max(slot_free[slot], earliest)
            end = start + task.estimated_hours

            slot_free[slot] = end
            slot_load[slot] += task.estimated_hours
            finish[task.id] = end
            del remaining[task.id]

            schedule[task.id] = ScheduledTask(
                task_id=task.id,
                start=origin + timedelta(hours=start),
                end=origin + timedelta(hours=end),
                algorithm=algorithm,
                metadata={
                    "slot": slot,
                    "order": len(schedule),
                    **(metadata(task) if metadata else {}),
                },
            )

        return schedule

    def _origin(self) -> datetime:
        return self.start_time or utc_now()


def makespan(schedule: Schedule) -> float:
    """Hours from the earliest start to the latest end of ``schedule``."""
    if not schedule:
        return 0.0
    start = min(entry.start for entry in schedule.values())
    end = max(entry.end for entry in schedule.values())
    return (end - start).total_seconds() / 3600
