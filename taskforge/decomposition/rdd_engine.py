"""RDD Engine - Recursive Decomposition and Decision.

Repeatedly applies the Atomicity Analyzer and, when a task is not atomic,
asks the generative-text capability to split it into candidate subtasks.
Recursion is expressed as an explicit work-list: each pending decomposition
request is a work item, processed depth-first so leaves come out in the
order the splits listed them.
"""

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any

from loguru import logger

from taskforge.core.errors import OperationTimeoutError, TaskExecutionError
from taskforge.core.timeouts import TimeoutManager, TimeoutOperation
from taskforge.decomposition.atomicity import AtomicityAnalyzer
from taskforge.decomposition.models import (
    MAX_ATOMIC_FILES,
    MAX_ATOMIC_HOURS,
    MIN_ATOMIC_HOURS,
    AtomicityAnalysis,
    AtomicTask,
    DecompositionResult,
    ProjectContext,
    RDDConfig,
    TaskPriority,
    TaskType,
)
from taskforge.decomposition.operations import OperationKind, OperationRegistry
from taskforge.decomposition.rules import contains_conjunction
from taskforge.llm.client import GenerativeTextClient, OutputFormat
from taskforge.llm.parsing import extract_json
from taskforge.prompts.builder import PromptBuilder

SPLIT_TEMPERATURE = 0.2

SPLIT_SCHEMA: dict[str, Any] = {
    "tasks": [
        {
            "title": "string",
            "description": "string",
            "type": "development | testing | documentation | research",
            "priority": "critical | high | medium | low",
            "estimatedHours": "number between 0.08 and 0.17",
            "filePaths": ["string"],
            "acceptanceCriteria": ["exactly one string"],
            "tags": ["string"],
            "dependencies": ["sibling task id"],
        }
    ]
}


@dataclass
class WorkItem:
    """A pending decomposition request."""

    item_id: str
    task: AtomicTask
    depth: int
    # Hours this item currently holds in the decomposition budget
    committed_hours: float = 0.0


@dataclass
class _Outcome:
    analysis: AtomicityAnalysis
    children: list[AtomicTask] | None = None
    note: str | None = None


class RDDEngine:
    """
    Decompose tasks into atomic subtasks.

    Example:
        >>> engine = RDDEngine(llm, RDDConfig(max_depth=3))
        >>> result = await engine.decompose_task(task, context)
        >>> [t.id for t in result.sub_tasks]
        ['T0001-01', 'T0001-02', 'T0001-03']
    """

    def __init__(
        self,
        llm: GenerativeTextClient,
        config: RDDConfig | None = None,
        analyzer: AtomicityAnalyzer | None = None,
        timeout_manager: TimeoutManager | None = None,
        registry: OperationRegistry | None = None,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            llm: Generative-text capability used for splitting.
            config: Depth, fan-out, confidence and epic cap bounds.
            analyzer: Atomicity analyzer (built from ``llm`` if omitted).
            timeout_manager: Timeout classes for split and whole-run budgets.
            registry: Operation registry shared with health checks.
            prompt_builder: Prompt builder instance.
        """
        self.llm = llm
        self.config = config or RDDConfig()
        self.prompts = prompt_builder or PromptBuilder()
        self.analyzer = analyzer or AtomicityAnalyzer(
            llm,
            epic_time_limit=self.config.epic_time_limit,
            prompt_builder=self.prompts,
        )
        self.timeouts = timeout_manager or TimeoutManager()
        self.registry = registry or OperationRegistry()
        self._ids = itertools.count(1)

    # =========================================================================
    # DECOMPOSITION
    # =========================================================================

    async def decompose_task(
        self,
        task: AtomicTask,
        context: ProjectContext,
        depth: int = 0,
    ) -> DecompositionResult:
        """
        Decompose ``task`` into atomic leaves.

        Args:
            task: Task to decompose.
            context: Project context passed to every prompt.
            depth: Starting depth of ``task``.

        Returns:
            DecompositionResult. ``sub_tasks`` is empty when ``task`` itself
            is a leaf.
        """
        logger.info(f"Starting decomposition of {task.id} at depth {depth}: {task.title}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeouts.get_timeout(
            TimeoutOperation.RECURSIVE_TASK_DECOMPOSITION
        )

        root = WorkItem(item_id=self._next_id(task), task=task, depth=depth)
        stack: list[WorkItem] = [root]
        leaves: list[AtomicTask] = []
        notes: list[str] = []
        split_children: dict[str, list[str]] = {}
        committed = 0.0
        max_depth_reached = depth
        root_outcome: _Outcome | None = None

        while stack:
            item = stack.pop()
            max_depth_reached = max(max_depth_reached, item.depth)
            budget = self.epic_cap(context) - committed + item.committed_hours

            outcome = await self._process(item, context, budget, deadline - loop.time())
            if item is root:
                root_outcome = outcome
            if outcome.note:
                notes.append(outcome.note)

            if outcome.children is None:
                if item is not root:
                    leaves.append(item.task)
                continue

            children = outcome.children
            split_children[item.task.id] = [c.id for c in children]
            committed += sum(c.estimated_hours for c in children) - item.committed_hours
            stack.extend(
                WorkItem(
                    item_id=self._next_id(child),
                    task=child,
                    depth=item.depth + 1,
                    committed_hours=child.estimated_hours,
                )
                for child in reversed(children)
            )

        if root_outcome is None:
            raise TaskExecutionError(f"Decomposition of {task.id} produced no outcome")
        leaves = self._resolve_leaf_dependencies(leaves, split_children)
        is_atomic = root_outcome.children is None

        logger.info(
            f"Decomposition of {task.id} finished: "
            f"{'atomic' if is_atomic else f'{len(leaves)} subtasks'}, "
            f"max depth {max_depth_reached}"
        )

        return DecompositionResult(
            success=True,
            is_atomic=is_atomic,
            original_task=task,
            sub_tasks=leaves,
            analysis=root_outcome.analysis,
            depth=depth,
            max_depth_reached=max_depth_reached,
            notes=notes,
        )

    async def _process(
        self,
        item: WorkItem,
        context: ProjectContext,
        budget_hours: float,
        remaining_seconds: float,
    ) -> _Outcome:
        """Decide whether ``item`` is a leaf or produce its children."""
        task = item.task

        if item.depth >= self.config.max_depth:
            logger.debug(f"Max depth reached for {task.id}, forcing atomic")
            return _Outcome(analysis=self._forced_analysis(task, "Maximum depth reached"))

        if remaining_seconds <= 0:
            reason = f"{task.id}: recursive decomposition budget exhausted, treated as atomic"
            logger.warning(reason)
            return _Outcome(analysis=self._forced_analysis(task, reason), note=reason)

        async with self.registry.track(OperationKind.DECOMPOSITION, task.id, item.item_id):
            async with self.registry.track(
                OperationKind.ANALYSIS, task.id, f"{item.item_id}:analysis"
            ):
                analysis = await self.analyzer.analyze(task, context)
            if analysis.is_atomic and analysis.confidence >= self.config.min_confidence:
                return _Outcome(analysis=analysis)

            split_budget = min(
                self.timeouts.get_timeout(TimeoutOperation.TASK_DECOMPOSITION),
                remaining_seconds,
            )
            try:
                async with self.registry.track(
                    OperationKind.SPLIT, task.id, f"{item.item_id}:split"
                ):
                    children = await self.timeouts.run(
                        TimeoutOperation.TASK_DECOMPOSITION,
                        self.split_task(task, context, analysis, budget_hours),
                        timeout=split_budget,
                    )
            except OperationTimeoutError as e:
                reason = f"{task.id}: split timed out after {e.timeout_seconds:.1f}s, treated as atomic"
                logger.warning(reason)
                return _Outcome(analysis=analysis, note=reason)
            except Exception as e:
                reason = f"{task.id}: split failed ({e}), treated as atomic"
                logger.warning(reason)
                return _Outcome(analysis=analysis, note=reason)

        if not children:
            reason = f"{task.id}: no valid subtasks produced, treated as atomic"
            logger.info(reason)
            return _Outcome(analysis=analysis, note=reason)

        return _Outcome(analysis=analysis, children=children)

    # =========================================================================
    # SPLITTING
    # =========================================================================

    async def split_task(
        self,
        task: AtomicTask,
        context: ProjectContext,
        analysis: AtomicityAnalysis | None = None,
        budget_hours: float | None = None,
    ) -> list[AtomicTask]:
        """
        Request a split of ``task`` and return the validated candidates.

        Args:
            task: Non-atomic task to split.
            context: Project context.
            analysis: Analysis explaining why the task is not atomic.
            budget_hours: Hours available to the candidates (epic cap by default).

        Returns:
            Validated candidates in the order the response listed them.
        """
        cap = self.epic_cap(context)
        response = await self.llm.generate(
            self.prompts.build_split_prompt(
                task, context, analysis, self.config.max_sub_tasks, cap
            ),
            system_prompt=self.prompts.split_system_prompt,
            output_format=OutputFormat.JSON,
            schema_hint=SPLIT_SCHEMA,
            temperature=SPLIT_TEMPERATURE,
        )
        candidates = self.parse_split_response(response, task)
        return self.validate_sub_tasks(candidates, cap if budget_hours is None else budget_hours)

    def parse_split_response(self, response: str, parent: AtomicTask) -> list[AtomicTask]:
        """
        Parse split candidates, assigning provisional ids ``<parent>-NN``.

        Raises:
            LLMResponseError: If the response is not a JSON object.
        """
        parsed = extract_json(response)
        raw_tasks = parsed.get("tasks", parsed.get("subTasks"))
        if not isinstance(raw_tasks, list):
            logger.warning(f"Split response for {parent.id} has no task list")
            return []

        candidates: list[AtomicTask] = []
        for index, data in enumerate(raw_tasks):
            if not isinstance(data, dict):
                continue
            candidates.append(self._build_candidate(data, parent, index, len(raw_tasks)))

        logger.debug(f"Parsed {len(candidates)} split candidates for {parent.id}")
        return candidates

    def _build_candidate(
        self, data: dict[str, Any], parent: AtomicTask, index: int, sibling_count: int
    ) -> AtomicTask:
        try:
            hours = float(data.get("estimatedHours", data.get("estimated_hours", 0)) or 0)
        except (TypeError, ValueError):
            hours = 0.0
        if hours < 0:
            hours = 0.0

        return AtomicTask(
            id=_sub_task_id(parent.id, index),
            title=str(data.get("title") or "").strip(),
            description=str(data.get("description") or "").strip(),
            type=_enum_or(TaskType, data.get("type"), parent.type),
            priority=_enum_or(TaskPriority, data.get("priority"), parent.priority),
            project_id=parent.project_id,
            epic_id=parent.epic_id,
            estimated_hours=hours,
            acceptance_criteria=_strings(data.get("acceptanceCriteria")),
            file_paths=_strings(data.get("filePaths")),
            dependencies=[
                *parent.dependencies,
                *_sibling_ids(data.get("dependencies"), parent.id, sibling_count),
            ],
            tags=_strings(data.get("tags")) or list(parent.tags),
        )

    def validate_sub_tasks(
        self, candidates: list[AtomicTask], budget_hours: float
    ) -> list[AtomicTask]:
        """
        Drop invalid candidates and truncate to the hour budget.

        Candidates beyond ``max_sub_tasks`` are ignored. The remainder is cut
        by running total so the accepted hours never exceed ``budget_hours``.
        """
        valid: list[AtomicTask] = []
        for candidate in candidates[: self.config.max_sub_tasks]:
            problem = validation_problem(candidate)
            if problem:
                logger.warning(f"Dropping subtask {candidate.id}: {problem}")
                continue
            valid.append(candidate)

        sibling_ids = {c.id for c in candidates}
        accepted: list[AtomicTask] = []
        total = 0.0
        for candidate in valid:
            if total + candidate.estimated_hours > budget_hours + 1e-9:
                logger.warning(
                    f"Subtasks exceed epic time budget ({budget_hours:.2f}h), "
                    f"dropping {len(valid) - len(accepted)} from {candidate.id}"
                )
                break
            total += candidate.estimated_hours
            accepted.append(candidate)

        accepted_ids = {c.id for c in accepted}
        return [
            c.model_copy(
                update={
                    "dependencies": [
                        d
                        for d in c.dependencies
                        if d != c.id and (d not in sibling_ids or d in accepted_ids)
                    ]
                }
            )
            for c in accepted
        ]

    # =========================================================================
    # HELPERS
    # =========================================================================

    def epic_cap(self, context: ProjectContext) -> float:
        return context.epic_time_limit or self.config.epic_time_limit

    def _next_id(self, task: AtomicTask) -> str:
        return f"{task.id}#{next(self._ids)}"

    @staticmethod
    def _forced_analysis(task: AtomicTask, reason: str) -> AtomicityAnalysis:
        return AtomicityAnalysis(
            is_atomic=True,
            confidence=1.0,
            reasoning=reason,
            estimated_hours=max(MIN_ATOMIC_HOURS, task.estimated_hours),
            recommendations=(reason,),
        )

    @staticmethod
    def _resolve_leaf_dependencies(
        leaves: list[AtomicTask], split_children: dict[str, list[str]]
    ) -> list[AtomicTask]:
        """Replace dependencies on split tasks with the leaves they became."""
        if not split_children:
            return leaves

        def expand(task_id: str) -> list[str]:
            result: list[str] = []
            pending = [task_id]
            while pending:
                current = pending.pop(0)
                if current in split_children:
                    pending = split_children[current] + pending
                else:
                    result.append(current)
            return result

        leaf_ids = {leaf.id for leaf in leaves}
        resolved = []
        for leaf in leaves:
            deps: list[str] = []
            for dep in leaf.dependencies:
                expanded = expand(dep)
                deps.extend(d for d in expanded if d in leaf_ids or dep not in split_children)
            resolved.append(leaf.model_copy(update={"dependencies": list(dict.fromkeys(deps))}))
        return resolved


# =============================================================================
# VALIDATION
# =============================================================================


def validation_problem(task: AtomicTask) -> str | None:
    """Describe why ``task`` violates the atomic task constraints, or None."""
    if not task.title or not task.description:
        return "missing title or description"
    if not MIN_ATOMIC_HOURS <= task.estimated_hours <= MAX_ATOMIC_HOURS:
        return f"duration {task.estimated_hours}h outside 5-10 minutes"
    if len(task.acceptance_criteria) != 1:
        return f"{len(task.acceptance_criteria)} acceptance criteria (expected exactly 1)"
    if len(task.file_paths) > MAX_ATOMIC_FILES:
        return f"touches {len(task.file_paths)} files"
    if contains_conjunction(task.title) or contains_conjunction(task.description):
        return "contains 'and' operator"
    return None


def _sub_task_id(parent_id: str, index: int) -> str:
    return f"{parent_id}-{index + 1:02d}"


def _enum_or(enum_cls: Any, value: Any, default: Any) -> Any:
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return default


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _sibling_ids(value: Any, parent_id: str, sibling_count: int) -> list[str]:
    """
    Normalize declared sibling dependencies to provisional ids.

    Numeric entries are 1-based positions in the split response; positions
    outside ``1..sibling_count`` are ignored.
    """
    if not isinstance(value, list):
        return []
    ids = []
    for dep in value:
        if isinstance(dep, bool):
            continue
        if isinstance(dep, str) and dep.strip().isdigit():
            dep = int(dep.strip())
        if isinstance(dep, int):
            if 1 <= dep <= sibling_count:
                ids.append(_sub_task_id(parent_id, dep - 1))
            else:
                logger.debug(f"Ignoring out-of-range sibling index {dep} for {parent_id}")
        elif isinstance(dep, str) and dep.strip():
            ids.append(dep.strip())
    return ids
