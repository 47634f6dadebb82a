"""Epic Dependency Manager - epic-level dependencies, phases and conflicts.

Cross-epic task dependencies are aggregated into epic dependencies weighted
by a strength score. The resulting epic graph is ordered topologically and
grouped into phases of epics that may run concurrently.
"""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from taskforge.core.errors import TaskExecutionError, ValidationError
from taskforge.decomposition.models import (
    AtomicTask,
    Dependency,
    DependencyType,
    Epic,
    EpicDependency,
)
from taskforge.storage.base import TaskStore


# =============================================================================
# CONFIGURATION / MODELS
# =============================================================================


class EpicDependencyConfig(BaseModel):
    """Thresholds for epic dependency analysis."""

    min_dependency_strength: float = Field(default=0.3, ge=0.0, le=1.0)
    requires_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    blocks_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    merge_strength_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    split_task_threshold: int = Field(default=10, ge=1)
    merge_max_tasks: int = Field(default=5, ge=1)
    auto_generate_phases: bool = True
    enable_parallelization: bool = True


class ConflictSeverity(str, Enum):
    """Severity levels for epic conflicts."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EpicConflictType(str, Enum):
    """Types of structural conflicts between epics."""

    CIRCULAR_DEPENDENCY = "circular_dependency"
    PRIORITY_MISMATCH = "priority_mismatch"
    RESOURCE_CONFLICT = "resource_conflict"


class RecommendationType(str, Enum):
    """Kinds of epic restructuring recommendations."""

    PARALLELIZATION = "parallelization"
    SPLITTING = "splitting"
    MERGING = "merging"


@dataclass
class EpicConflict:
    """A structural problem in the epic graph."""

    type: EpicConflictType
    severity: ConflictSeverity
    description: str
    affected_epics: list[str]
    resolution_options: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "affected_epics": self.affected_epics,
            "resolution_options": self.resolution_options,
        }


@dataclass
class EpicRecommendation:
    """A suggested restructuring of epics."""

    type: RecommendationType
    description: str
    affected_epics: list[str]
    priority: str = "medium"
    estimated_benefit: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "description": self.description,
            "affected_epics": self.affected_epics,
            "priority": self.priority,
            "estimated_benefit": self.estimated_benefit,
        }


class EpicPhase(BaseModel):
    """A group of epics whose dependencies are satisfied by earlier phases."""

    id: str
    name: str
    epic_ids: list[str]
    order: int
    estimated_duration: float = 0.0
    can_run_in_parallel: bool = False
    prerequisites: list[str] = Field(default_factory=list)


class EpicDependencyAnalysis(BaseModel):
    """Result of analysing the epics of one project."""

    project_id: str
    dependencies: list[EpicDependency] = Field(default_factory=list)
    execution_order: list[str] = Field(default_factory=list)
    phases: list[EpicPhase] = Field(default_factory=list)
    conflicts: list[dict[str, Any]] = Field(default_factory=list)
    recommendations: list[dict[str, Any]] = Field(default_factory=list)
    total_epics: int = 0
    total_task_dependencies: int = 0

    @property
    def critical_dependencies(self) -> list[EpicDependency]:
        return [d for d in self.dependencies if d.critical]


# =============================================================================
# STRENGTH
# =============================================================================


def dependency_strength(cross_count: int, tasks_in_a: int, tasks_in_b: int) -> float:
    """
    Coupling strength of two epics.

    ``0.4 * density + 0.6 * coverage`` where density is cross dependencies
    per task pair and coverage is cross dependencies per task of the larger
    epic (capped at 1).

    Example:
        >>> round(dependency_strength(8, 10, 5), 3)
        0.544
    """
    if cross_count <= 0 or tasks_in_a <= 0 or tasks_in_b <= 0:
        return 0.0
    density = cross_count / (tasks_in_a * tasks_in_b)
    coverage = min(cross_count / max(tasks_in_a, tasks_in_b), 1.0)
    return min(0.4 * density + 0.6 * coverage, 1.0)


# =============================================================================
# MANAGER
# =============================================================================


class EpicDependencyManager:
    """
    Derive and manage dependencies between epics.

    Example:
        >>> manager = EpicDependencyManager(store)
        >>> analysis = await manager.analyze_epic_dependencies("web-app")
        >>> [phase.epic_ids for phase in analysis.phases]
        [['epic-auth'], ['epic-profile', 'epic-admin']]
    """

    def __init__(
        self,
        store: TaskStore | None = None,
        config: EpicDependencyConfig | None = None,
    ) -> None:
        self.store = store
        self.config = config or EpicDependencyConfig()

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    async def analyze_epic_dependencies(self, project_id: str) -> EpicDependencyAnalysis:
        """
        Load the project's epics, tasks and dependencies and analyze them.

        Raises:
            ValidationError: If no store is configured or project_id is empty.
            TaskExecutionError: If storage cannot be read.
        """
        if not project_id:
            raise ValidationError("Project ID is required", field="project_id")
        if self.store is None:
            raise ValidationError("No task store configured", field="store")

        logger.info(f"Analyzing epic dependencies for project {project_id}")

        try:
            epics = await self.store.list_epics(project_id)
            tasks = await self.store.list_tasks(project_id)
            dependencies = await self.store.list_dependencies(project_id)
        except Exception as e:
            raise TaskExecutionError(f"Failed to load project data: {e}") from e

        return self.analyze(project_id, epics, tasks, dependencies)

    def analyze(
        self,
        project_id: str,
        epics: list[Epic],
        tasks: list[AtomicTask],
        dependencies: list[Dependency],
    ) -> EpicDependencyAnalysis:
        """Analyze epics without touching storage."""
        members = self._epic_members(epics, tasks)
        task_epic = {task_id: epic_id for epic_id, ids in members.items() for task_id in ids}

        epic_dependencies = self.derive_epic_dependencies(epics, members, task_epic, dependencies)
        execution_order = self.execution_order(epics, epic_dependencies)
        phases = (
            self.generate_phases(epics, epic_dependencies)
            if self.config.auto_generate_phases
            else []
        )
        conflicts = self.detect_conflicts(epics, epic_dependencies, tasks, task_epic)
        recommendations = self.recommend(epics, epic_dependencies, members)

        logger.info(
            f"Epic analysis for {project_id}: {len(epic_dependencies)} dependencies, "
            f"{len(phases)} phases, {len(conflicts)} conflicts"
        )

        return EpicDependencyAnalysis(
            project_id=project_id,
            dependencies=epic_dependencies,
            execution_order=execution_order,
            phases=phases,
            conflicts=[c.to_dict() for c in conflicts],
            recommendations=[r.to_dict() for r in recommendations],
            total_epics=len(epics),
            total_task_dependencies=len(dependencies),
        )

    @staticmethod
    def _epic_members(epics: list[Epic], tasks: list[AtomicTask]) -> dict[str, list[str]]:
        members: dict[str, list[str]] = {epic.id: list(epic.task_ids) for epic in epics}
        for task in tasks:
            if task.epic_id in members and task.id not in members[task.epic_id]:
                members[task.epic_id].append(task.id)
        return members

    def derive_epic_dependencies(
        self,
        epics: list[Epic],
        members: dict[str, list[str]],
        task_epic: dict[str, str],
        dependencies: list[Dependency],
    ) -> list[EpicDependency]:
        """Aggregate cross-epic task dependencies into epic dependencies."""
        grouped: dict[tuple[str, str], list[Dependency]] = defaultdict(list)
        for dep in dependencies:
            source = task_epic.get(dep.from_task_id)
            target = task_epic.get(dep.to_task_id)
            if source and target and source != target:
                grouped[(source, target)].append(dep)

        titles = {epic.id: epic.title for epic in epics}
        result: list[EpicDependency] = []
        for (source, target), deps in grouped.items():
            strength = dependency_strength(len(deps), len(members[source]), len(members[target]))
            if strength < self.config.min_dependency_strength:
                logger.debug(f"Ignoring weak epic dependency {source} -> {target} ({strength:.3f})")
                continue

            result.append(
                EpicDependency(
                    id=f"epic-dep-{source}-{target}",
                    from_epic_id=source,
                    to_epic_id=target,
                    type=self.classify(strength),
                    strength=round(strength, 4),
                    critical=strength > self.config.blocks_threshold,
                    description=(
                        f"{titles.get(target, target)} depends on "
                        f"{titles.get(source, source)} through {len(deps)} task dependencies"
                    ),
                    task_dependency_ids=[d.id for d in deps if d.id],
                )
            )
        return result

    def classify(self, strength: float) -> DependencyType:
        """Classify an epic dependency by strength."""
        if strength > self.config.blocks_threshold:
            return DependencyType.BLOCKS
        if strength > self.config.requires_threshold:
            return DependencyType.REQUIRES
        return DependencyType.SUGGESTS

    # =========================================================================
    # ORDERING / PHASES
    # =========================================================================

    @staticmethod
    def execution_order(epics: list[Epic], dependencies: list[EpicDependency]) -> list[str]:
        """Topological order of epics; epics on cycles are omitted."""
        ids = [epic.id for epic in epics]
        in_degree = {epic_id: 0 for epic_id in ids}
        successors: dict[str, list[str]] = defaultdict(list)
        for dep in dependencies:
            if dep.from_epic_id in in_degree and dep.to_epic_id in in_degree:
                successors[dep.from_epic_id].append(dep.to_epic_id)
                in_degree[dep.to_epic_id] += 1

        queue = deque(epic_id for epic_id in ids if in_degree[epic_id] == 0)
        order: list[str] = []
        while queue:
            current = queue.popleft()
            order.append(current)
            for neighbor in successors[current]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(order) < len(ids):
            logger.warning(f"{len(ids) - len(order)} epics are on dependency cycles")
        return order

    @staticmethod
    def generate_phases(epics: list[Epic], dependencies: list[EpicDependency]) -> list[EpicPhase]:
        """Group epics into sequential phases of concurrently runnable epics."""
        by_id = {epic.id: epic for epic in epics}
        prerequisites: dict[str, set[str]] = {epic.id: set() for epic in epics}
        for dep in dependencies:
            if dep.from_epic_id in by_id and dep.to_epic_id in by_id:
                prerequisites[dep.to_epic_id].add(dep.from_epic_id)

        phases: list[EpicPhase] = []
        done: set[str] = set()
        remaining = [epic.id for epic in epics]

        while remaining:
            ready = [e for e in remaining if prerequisites[e] <= done]
            if not ready:
                logger.warning(f"Circular epic dependencies, grouping {len(remaining)} epics")
                ready = list(remaining)

            order = len(phases) + 1
            phases.append(
                EpicPhase(
                    id=f"phase-{order}",
                    name=f"Phase {order}",
                    epic_ids=ready,
                    order=order,
                    estimated_duration=max(by_id[e].estimated_hours for e in ready),
                    can_run_in_parallel=len(ready) > 1,
                    prerequisites=[phases[-1].id] if phases else [],
                )
            )
            done.update(ready)
            remaining = [e for e in remaining if e not in done]

        return phases

    # =========================================================================
    # CONFLICTS
    # =========================================================================

    def detect_conflicts(
        self,
        epics: list[Epic],
        dependencies: list[EpicDependency],
        tasks: list[AtomicTask],
        task_epic: dict[str, str],
    ) -> list[EpicConflict]:
        """Detect circular, priority and resource conflicts."""
        conflicts: list[EpicConflict] = []
        by_id = {epic.id: epic for epic in epics}

        for cycle in self._find_cycles(epics, dependencies):
            conflicts.append(
                EpicConflict(
                    type=EpicConflictType.CIRCULAR_DEPENDENCY,
                    severity=ConflictSeverity.CRITICAL,
                    description=f"Circular dependency between epics: {' -> '.join(cycle)}",
                    affected_epics=cycle[:-1],
                    resolution_options=[
                        {
                            "type": "reorder",
                            "description": "Remove or reverse one dependency in the cycle",
                            "complexity": "medium",
                        }
                    ],
                )
            )

        for dep in dependencies:
            source, target = by_id.get(dep.from_epic_id), by_id.get(dep.to_epic_id)
            if source and target and source.priority.rank < target.priority.rank:
                conflicts.append(
                    EpicConflict(
                        type=EpicConflictType.PRIORITY_MISMATCH,
                        severity=ConflictSeverity.MEDIUM,
                        description=(
                            f"{source.priority.value}-priority epic '{source.title}' blocks "
                            f"{target.priority.value}-priority epic '{target.title}'"
                        ),
                        affected_epics=[source.id, target.id],
                        resolution_options=[
                            {
                                "type": "adjust_priority",
                                "description": f"Raise priority of '{source.title}' "
                                f"to {target.priority.value}",
                                "complexity": "low",
                            }
                        ],
                    )
                )

        files: dict[str, set[str]] = defaultdict(set)
        for task in tasks:
            epic_id = task_epic.get(task.id)
            if epic_id:
                files[epic_id].update(task.file_paths)

        ids = [epic.id for epic in epics]
        for i, first in enumerate(ids):
            for second in ids[i + 1 :]:
                shared = sorted(files[first] & files[second])
                if shared:
                    conflicts.append(
                        EpicConflict(
                            type=EpicConflictType.RESOURCE_CONFLICT,
                            severity=ConflictSeverity.LOW,
                            description=(
                                f"Epics {first} and {second} modify {len(shared)} "
                                f"common files: {', '.join(shared[:5])}"
                            ),
                            affected_epics=[first, second],
                            resolution_options=[
                                {
                                    "type": "sequence",
                                    "description": "Run these epics in different phases",
                                    "complexity": "low",
                                }
                            ],
                        )
                    )

        return conflicts

    @staticmethod
    def _find_cycles(epics: list[Epic], dependencies: list[EpicDependency]) -> list[list[str]]:
        graph: dict[str, list[str]] = {epic.id: [] for epic in epics}
        for dep in dependencies:
            if dep.from_epic_id in graph and dep.to_epic_id in graph:
                graph[dep.from_epic_id].append(dep.to_epic_id)

        WHITE, GRAY, BLACK = 0, 1, 2
        colors = {node: WHITE for node in graph}
        cycles: list[list[str]] = []

        def dfs(node: str, path: list[str]) -> None:
            colors[node] = GRAY
            path.append(node)
            for neighbor in graph[node]:
                if colors[neighbor] == GRAY:
                    cycles.append(path[path.index(neighbor) :] + [neighbor])
                elif colors[neighbor] == WHITE:
                    dfs(neighbor, path)
            path.pop()
            colors[node] = BLACK

        for node in graph:
            if colors[node] == WHITE:
                dfs(node, [])
        return cycles

    # =========================================================================
    # RECOMMENDATIONS
    # =========================================================================

    def recommend(
        self,
        epics: list[Epic],
        dependencies: list[EpicDependency],
        members: dict[str, list[str]],
    ) -> list[EpicRecommendation]:
        """Suggest parallelization, splitting and merging opportunities."""
        recommendations: list[EpicRecommendation] = []

        dependent = {dep.to_epic_id for dep in dependencies}
        independent = [epic.id for epic in epics if epic.id not in dependent]
        if self.config.enable_parallelization and len(independent) > 1:
            recommendations.append(
                EpicRecommendation(
                    type=RecommendationType.PARALLELIZATION,
                    description=f"{len(independent)} epics have no dependencies and can run in parallel",
                    affected_epics=independent,
                    priority="high",
                    estimated_benefit="Shorter overall timeline",
                )
            )

        for epic in epics:
            count = len(members.get(epic.id, []))
            if count > self.config.split_task_threshold:
                recommendations.append(
                    EpicRecommendation(
                        type=RecommendationType.SPLITTING,
                        description=f"Epic '{epic.title}' has {count} tasks, consider splitting it",
                        affected_epics=[epic.id],
                        priority="medium",
                        estimated_benefit="Better parallelization and tracking",
                    )
                )

        for dep in dependencies:
            source_count = len(members.get(dep.from_epic_id, []))
            target_count = len(members.get(dep.to_epic_id, []))
            if (
                dep.strength > self.config.merge_strength_threshold
                and source_count < self.config.merge_max_tasks
                and target_count < self.config.merge_max_tasks
            ):
                recommendations.append(
                    EpicRecommendation(
                        type=RecommendationType.MERGING,
                        description=(
                            f"Epics {dep.from_epic_id} and {dep.to_epic_id} are small "
                            f"and tightly coupled (strength {dep.strength:.2f}), consider merging"
                        ),
                        affected_epics=[dep.from_epic_id, dep.to_epic_id],
                        priority="low",
                        estimated_benefit="Less coordination overhead",
                    )
                )

        return recommendations

    # =========================================================================
    # MUTATION
    # =========================================================================

    async def create_epic_dependency(
        self,
        from_epic_id: str,
        to_epic_id: str,
        task_dependencies: list[Dependency] | None = None,
    ) -> EpicDependency:
        """
        Record that ``to_epic_id`` depends on ``from_epic_id``.

        Raises:
            ValidationError: For unknown epics, self-dependencies or cycles.
        """
        if self.store is None:
            raise ValidationError("No task store configured", field="store")
        if from_epic_id == to_epic_id:
            raise ValidationError("An epic cannot depend on itself", field="to_epic_id")

        source = await self.store.get_epic(from_epic_id)
        target = await self.store.get_epic(to_epic_id)
        if source is None or target is None:
            missing = from_epic_id if source is None else to_epic_id
            raise ValidationError(f"Epic not found: {missing}", field="epic_id")

        if await _reaches(self.store, to_epic_id, from_epic_id):
            raise ValidationError(
                f"Dependency {from_epic_id} -> {to_epic_id} would create a cycle",
                field="to_epic_id",
            )

        deps = task_dependencies or []
        strength = (
            dependency_strength(len(deps), len(source.task_ids), len(target.task_ids))
            if deps
            else 1.0
        )
        epic_dependency = EpicDependency(
            id=f"epic-dep-{from_epic_id}-{to_epic_id}",
            from_epic_id=from_epic_id,
            to_epic_id=to_epic_id,
            type=self.classify(strength),
            strength=round(strength, 4),
            critical=strength > self.config.blocks_threshold,
            description=f"{target.title} depends on {source.title}",
            task_dependency_ids=[d.id for d in deps if d.id],
        )

        if from_epic_id not in target.dependencies:
            await self.store.update_epic(
                to_epic_id, {"dependencies": [*target.dependencies, from_epic_id]}
            )

        logger.info(f"Created epic dependency {from_epic_id} -> {to_epic_id} ({strength:.2f})")
        return epic_dependency


async def _reaches(store: TaskStore, start: str, goal: str) -> bool:
    """Check whether ``goal`` depends, directly or transitively, on ``start``."""
    epics = await store.list_epics()
    dependents: dict[str, list[str]] = defaultdict(list)
    for epic in epics:
        for prerequisite in epic.dependencies:
            dependents[prerequisite].append(epic.id)

    seen = {start}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        if current == goal:
            return True
        for nxt in dependents[current]:
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return False
