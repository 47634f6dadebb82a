"""Dependency graph - ordering, cycles and critical path over tasks.

Edges point from prerequisite to dependent: an edge ``A -> B`` means task
``A`` must complete before task ``B`` can start.
"""

from collections import defaultdict, deque
from collections.abc import Iterable
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from taskforge.core.errors import CyclicDependencyError, ValidationError
from taskforge.decomposition.models import (
    AtomicTask,
    Dependency,
    DependencyType,
    TaskPriority,
    TaskStatus,
    utc_now,
)


# =============================================================================
# MODELS
# =============================================================================


class TaskNode(BaseModel):
    """Minimal task summary stored on each graph node."""

    id: str
    title: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    estimated_hours: float = 0.0
    epic_id: str | None = None

    @classmethod
    def from_task(cls, task: AtomicTask) -> "TaskNode":
        return cls(
            id=task.id,
            title=task.title,
            priority=task.priority,
            status=task.status,
            estimated_hours=task.estimated_hours,
            epic_id=task.epic_id,
        )


class GraphStatistics(BaseModel):
    """Summary statistics of a dependency graph."""

    total_tasks: int = 0
    total_dependencies: int = 0
    max_depth: int = Field(default=0, description="Number of levels in the longest chain")
    orphaned_tasks: list[str] = Field(default_factory=list)
    critical_path_length: int = 0
    critical_path_hours: float = 0.0
    total_hours: float = 0.0


# =============================================================================
# GRAPH
# =============================================================================


class DependencyGraph:
    """
    In-memory directed graph of tasks.

    Example:
        >>> graph = DependencyGraph.from_tasks(tasks)
        >>> graph.detect_cycle()
        >>> graph.execution_order()
        ['T1', 'T2', 'T3']
        >>> graph.critical_path()
        ['T1', 'T3']
    """

    def __init__(self, project_id: str = "") -> None:
        self.project_id = project_id
        self.nodes: dict[str, TaskNode] = {}
        self.edges: list[Dependency] = []
        self._successors: dict[str, list[str]] = defaultdict(list)
        self._predecessors: dict[str, list[str]] = defaultdict(list)
        self._edge_keys: set[tuple[str, str]] = set()

    @classmethod
    def from_tasks(
        cls,
        tasks: Iterable[AtomicTask],
        dependencies: Iterable[Dependency] | None = None,
        project_id: str = "",
    ) -> "DependencyGraph":
        """
        Build a graph from tasks and dependency edges.

        When ``dependencies`` is omitted, edges are derived from each task's
        ``dependencies`` list. Edges referencing unknown tasks are skipped.
        Cycles are kept so they can be reported.
        """
        graph = cls(project_id=project_id)
        tasks = list(tasks)
        for task in tasks:
            graph.add_task(task)

        if dependencies is None:
            dependencies = [
                Dependency(from_task_id=dep_id, to_task_id=task.id)
                for task in tasks
                for dep_id in task.dependencies
            ]

        skipped = 0
        for dependency in dependencies:
            if not graph.add_dependency(dependency, allow_cycles=True, strict=False):
                skipped += 1

        if skipped:
            logger.debug(f"Skipped {skipped} invalid or duplicate dependencies")

        logger.debug(f"Built graph with {len(graph.nodes)} tasks and {len(graph.edges)} edges")
        return graph

    # =========================================================================
    # MUTATION
    # =========================================================================

    def add_task(self, task: AtomicTask | TaskNode) -> None:
        """Add (or replace) a node."""
        node = task if isinstance(task, TaskNode) else TaskNode.from_task(task)
        self.nodes[node.id] = node

    def add_dependency(
        self,
        dependency: Dependency,
        allow_cycles: bool = False,
        strict: bool = True,
    ) -> bool:
        """
        Add an edge.

        Args:
            dependency: Edge to add.
            allow_cycles: Accept edges that close a cycle.
            strict: Raise on edges referencing unknown tasks instead of skipping.

        Returns:
            True if the edge was added, False if it was a duplicate, a
            self-loop, or (with ``allow_cycles=False``) would close a cycle.

        Raises:
            ValidationError: If ``strict`` and an endpoint is unknown.
        """
        source, target = dependency.from_task_id, dependency.to_task_id

        missing = [t for t in (source, target) if t not in self.nodes]
        if missing:
            if strict:
                raise ValidationError(
                    f"Dependency references unknown task(s): {', '.join(missing)}",
                    field="dependency",
                )
            return False

        if source == target or dependency.key in self._edge_keys:
            return False

        if not allow_cycles and self.has_path(target, source):
            logger.warning(f"Rejecting dependency {source} -> {target}: would create a cycle")
            return False

        self.edges.append(dependency)
        self._edge_keys.add(dependency.key)
        self._successors[source].append(target)
        self._predecessors[target].append(source)
        return True

    # =========================================================================
    # QUERIES
    # =========================================================================

    def prerequisites(self, task_id: str) -> list[str]:
        """Tasks that must complete before ``task_id``."""
        return list(self._predecessors.get(task_id, []))

    def dependents(self, task_id: str) -> list[str]:
        """Tasks waiting on ``task_id``."""
        return list(self._successors.get(task_id, []))

    def has_edge(self, source: str, target: str) -> bool:
        return (source, target) in self._edge_keys

    def has_path(self, source: str, target: str) -> bool:
        """Check whether ``target`` is reachable from ``source``."""
        if source == target:
            return True
        seen = {source}
        queue = deque([source])
        while queue:
            current = queue.popleft()
            for neighbor in self._successors.get(current, []):
                if neighbor == target:
                    return True
                if neighbor not in seen:
                    seen.add(neighbor)
                    queue.append(neighbor)
        return False

    def ready_tasks(self, completed: set[str]) -> list[str]:
        """Incomplete tasks whose prerequisites have all completed."""
        return [
            task_id
            for task_id in self.nodes
            if task_id not in completed
            and all(dep in completed for dep in self._predecessors.get(task_id, []))
        ]

    def subgraph(self, task_ids: Iterable[str]) -> "DependencyGraph":
        """Graph restricted to ``task_ids`` and the edges between them."""
        keep = set(task_ids)
        sub = DependencyGraph(project_id=self.project_id)
        for task_id, node in self.nodes.items():
            if task_id in keep:
                sub.add_task(node)
        for edge in self.edges:
            if edge.from_task_id in keep and edge.to_task_id in keep:
                sub.add_dependency(edge, allow_cycles=True)
        return sub

    # =========================================================================
    # CYCLE DETECTION
    # =========================================================================

    def detect_cycles(self) -> list[list[str]]:
        """
        Detect cycles using DFS with a recursion stack.

        Returns:
            Every cycle found, each as an ordered list of task ids starting
            and ending with the same id.

        Example:
            >>> graph.detect_cycles()
            [['A', 'B', 'C', 'A']]
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        colors: dict[str, int] = {node: WHITE for node in self.nodes}
        cycles: list[list[str]] = []

        for start in self.nodes:
            if colors[start] != WHITE:
                continue

            path: list[str] = [start]
            colors[start] = GRAY
            stack: list[tuple[str, int]] = [(start, 0)]

            while stack:
                node, index = stack[-1]
                successors = self._successors.get(node, [])

                if index >= len(successors):
                    stack.pop()
                    path.pop()
                    colors[node] = BLACK
                    continue

                stack[-1] = (node, index + 1)
                neighbor = successors[index]

                if colors[neighbor] == GRAY:
                    cycle_start = path.index(neighbor)
                    cycles.append(path[cycle_start:] + [neighbor])
                elif colors[neighbor] == WHITE:
                    colors[neighbor] = GRAY
                    path.append(neighbor)
                    stack.append((neighbor, 0))

        return cycles

    def detect_cycle(self) -> list[str] | None:
        """Return the first cycle found, or None if the graph is acyclic."""
        cycles = self.detect_cycles()
        return cycles[0] if cycles else None

    def has_cycle(self) -> bool:
        return self.detect_cycle() is not None

    def _require_acyclic(self) -> None:
        cycle = self.detect_cycle()
        if cycle:
            raise CyclicDependencyError(cycle)

    # =========================================================================
    # ORDERING
    # =========================================================================

    def execution_order(self) -> list[str]:
        """
        Topological order using Kahn's algorithm.

        Ties are broken by insertion order.

        Raises:
            CyclicDependencyError: If the graph contains a cycle.
        """
        in_degree = {node: len(self._predecessors.get(node, [])) for node in self.nodes}
        queue = deque(node for node, degree in in_degree.items() if degree == 0)
        order: list[str] = []

        while queue:
            node = queue.popleft()
            order.append(node)
            for neighbor in self._successors.get(node, []):
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(order) != len(self.nodes):
            self._require_acyclic()
        return order

    def levels(self) -> dict[str, int]:
        """Depth of each node: 0 for tasks without prerequisites."""
        levels: dict[str, int] = {}
        for node in self.execution_order():
            preds = self._predecessors.get(node, [])
            levels[node] = max((levels[p] + 1 for p in preds), default=0)
        return levels

    def critical_path(self) -> list[str]:
        """
        Longest chain by cumulative estimated hours.

        Raises:
            CyclicDependencyError: If the graph contains a cycle.
        """
        order = self.execution_order()
        if not order:
            return []

        distance: dict[str, float] = {}
        previous: dict[str, str | None] = {}
        for node in order:
            best_pred: str | None = None
            best = 0.0
            for pred in self._predecessors.get(node, []):
                if best_pred is None or distance[pred] > best:
                    best_pred, best = pred, distance[pred]
            distance[node] = best + self.nodes[node].estimated_hours
            previous[node] = best_pred

        end = max(order, key=lambda n: distance[n])
        path: list[str] = []
        current: str | None = end
        while current is not None:
            path.append(current)
            current = previous[current]
        return list(reversed(path))

    def critical_path_hours(self) -> float:
        return sum(self.nodes[n].estimated_hours for n in self.critical_path())

    # =========================================================================
    # STATISTICS / EXPORT
    # =========================================================================

    def orphaned_tasks(self) -> list[str]:
        """Tasks with neither incoming nor outgoing edges."""
        return [
            node
            for node in self.nodes
            if not self._predecessors.get(node) and not self._successors.get(node)
        ]

    def statistics(self) -> GraphStatistics:
        """Compute summary statistics (ordering values are zero for cyclic graphs)."""
        stats = GraphStatistics(
            total_tasks=len(self.nodes),
            total_dependencies=len(self.edges),
            orphaned_tasks=self.orphaned_tasks(),
            total_hours=round(sum(n.estimated_hours for n in self.nodes.values()), 2),
        )
        if self.nodes and not self.has_cycle():
            critical = self.critical_path()
            stats.max_depth = max(self.levels().values()) + 1
            stats.critical_path_length = len(critical)
            stats.critical_path_hours = round(
                sum(self.nodes[n].estimated_hours for n in critical), 2
            )
        return stats

    def to_dict(self) -> dict[str, Any]:
        """Machine-readable form: nodes, edges, ordering and statistics."""
        cycles = self.detect_cycles()
        return {
            "project_id": self.project_id,
            "generated_at": utc_now().isoformat(),
            "nodes": [node.model_dump(mode="json") for node in self.nodes.values()],
            "edges": [edge.model_dump(mode="json") for edge in self.edges],
            "execution_order": [] if cycles else self.execution_order(),
            "critical_path": [] if cycles else self.critical_path(),
            "cycles": cycles,
            "statistics": self.statistics().model_dump(),
        }

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.nodes


def infer_dependency_type(value: str | None) -> DependencyType:
    """Map a free-form relation name onto a DependencyType."""
    normalized = (value or "").strip().lower()
    if normalized in ("blocking", "blocks"):
        return DependencyType.BLOCKS
    if normalized in ("soft", "enables"):
        return DependencyType.ENABLES
    if normalized in ("parallel", "suggests"):
        return DependencyType.SUGGESTS
    return DependencyType.REQUIRES
