"""Pydantic models for task decomposition.

This module defines the data structures shared by the decomposition,
scheduling and epic components: atomic tasks, epics, task and epic
dependencies, project context, atomicity analyses and decomposition results.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class TaskPriority(str, Enum):
    """Priority of a task or epic."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Numeric rank, higher is more urgent (critical=4 ... low=1)."""
        return PRIORITY_RANK[self]


PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.CRITICAL: 4,
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}


class TaskStatus(str, Enum):
    """Execution status of a task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskType(str, Enum):
    """Kind of work a task represents."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    RESEARCH = "research"


class DependencyType(str, Enum):
    """Relation between two tasks or two epics."""

    BLOCKS = "blocks"
    ENABLES = "enables"
    REQUIRES = "requires"
    SUGGESTS = "suggests"


# =============================================================================
# TASKS
# =============================================================================

# Atomic task bounds, in hours
MIN_ATOMIC_HOURS = 0.08
MAX_ATOMIC_HOURS = 0.17
MAX_ATOMIC_FILES = 2


class AtomicTask(BaseModel):
    """A unit of work, possibly small enough to execute directly.

    ``dependencies`` lists the ids of tasks that must complete first;
    ``dependents`` is the inverse relation.

    Example:
        >>> task = AtomicTask(
        ...     id="T0001",
        ...     title="Add login route",
        ...     description="Add POST /login to the auth router",
        ...     project_id="web-app",
        ...     estimated_hours=0.15,
        ...     acceptance_criteria=["POST /login returns 200 for valid credentials"],
        ... )
    """

    id: str = Field(..., min_length=1, description="Unique task identifier")
    title: str = Field(..., description="Short task title")
    description: str = Field(default="", description="What needs to be done")
    type: TaskType = Field(default=TaskType.DEVELOPMENT)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    project_id: str = Field(default="", description="Owning project")
    epic_id: str | None = Field(default=None, description="Owning epic")
    estimated_hours: float = Field(default=0.0, ge=0, description="Estimated duration in hours")
    acceptance_criteria: list[str] = Field(default_factory=list)
    file_paths: list[str] = Field(default_factory=list, description="Files touched by the task")
    dependencies: list[str] = Field(
        default_factory=list,
        description="Task ids that must complete before this task",
    )
    dependents: list[str] = Field(
        default_factory=list,
        description="Task ids that wait on this task",
    )
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("dependencies", "dependents", "file_paths", "tags")
    @classmethod
    def dedupe_preserving_order(cls, v: list[str]) -> list[str]:
        """Collapse duplicates while keeping the order as written."""
        return list(dict.fromkeys(v))


class Epic(BaseModel):
    """A grouping of tasks under a shared time budget and functional area."""

    id: str = Field(..., min_length=1)
    title: str
    description: str = ""
    project_id: str = ""
    task_ids: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(
        default_factory=list,
        description="Ids of epics this epic depends on",
    )
    estimated_hours: float = Field(default=0.0, ge=0)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# DEPENDENCIES
# =============================================================================


class Dependency(BaseModel):
    """Task-level dependency: ``from_task_id`` must complete before ``to_task_id``."""

    id: str = ""
    from_task_id: str
    to_task_id: str
    type: DependencyType = DependencyType.REQUIRES
    critical: bool = False
    description: str = ""

    @property
    def key(self) -> tuple[str, str]:
        """Edge identity ignoring kind and metadata."""
        return (self.from_task_id, self.to_task_id)


class EpicDependency(BaseModel):
    """Epic-level dependency derived from cross-epic task dependencies."""

    id: str
    from_epic_id: str
    to_epic_id: str
    type: DependencyType
    strength: float = Field(..., ge=0.0, le=1.0)
    critical: bool = False
    description: str = ""
    task_dependency_ids: list[str] = Field(default_factory=list)


# =============================================================================
# PROJECT CONTEXT
# =============================================================================


class RelevantFile(BaseModel):
    """A source file gathered as supporting material for prompts."""

    path: str
    relevance: float = Field(default=0.5, ge=0.0, le=1.0)
    excerpt: str = ""


class CodebaseContext(BaseModel):
    """Result of context enrichment."""

    files: list[RelevantFile] = Field(default_factory=list)
    summary: str = ""


class ResearchContext(BaseModel):
    """Result of the optional research step."""

    topic: str = ""
    findings: list[str] = Field(default_factory=list)
    action_items: list[str] = Field(default_factory=list)


class ProjectContext(BaseModel):
    """Project-level information passed to analysis and split prompts."""

    project_id: str
    project_name: str = ""
    languages: list[str] = Field(default_factory=list)
    frameworks: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    existing_tasks: list[AtomicTask] = Field(default_factory=list)
    codebase_size: str = Field(default="medium", description="small | medium | large")
    team_size: int = Field(default=1, ge=1)
    complexity: str = Field(default="medium", description="low | medium | high")
    epic_time_limit: float | None = Field(
        default=None,
        gt=0,
        description="Per-project override of the epic time cap in hours",
    )
    codebase_context: CodebaseContext | None = None
    research_context: ResearchContext | None = None


# =============================================================================
# ANALYSIS / RESULTS
# =============================================================================


class AtomicityAnalysis(BaseModel):
    """Outcome of the Atomicity Analyzer."""

    model_config = ConfigDict(frozen=True)

    is_atomic: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    estimated_hours: float = Field(default=MIN_ATOMIC_HOURS, ge=0)
    complexity_factors: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()

    def reject(self, factor: str, recommendation: str | None = None) -> "AtomicityAnalysis":
        """Copy forced to non-atomic with zero confidence."""
        return self.model_copy(
            update={
                "is_atomic": False,
                "confidence": 0.0,
                "complexity_factors": (*self.complexity_factors, factor),
                "recommendations": self._with(recommendation),
            }
        )

    def cap(
        self,
        confidence: float,
        factor: str | None = None,
        recommendation: str | None = None,
        atomic: bool | None = None,
    ) -> "AtomicityAnalysis":
        """Copy with confidence capped at ``confidence``."""
        update: dict[str, Any] = {
            "confidence": min(self.confidence, confidence),
            "recommendations": self._with(recommendation),
        }
        if factor:
            update["complexity_factors"] = (*self.complexity_factors, factor)
        if atomic is not None:
            update["is_atomic"] = self.is_atomic and atomic
        return self.model_copy(update=update)

    def _with(self, recommendation: str | None) -> tuple[str, ...]:
        if recommendation is None:
            return self.recommendations
        return (*self.recommendations, recommendation)


class RDDConfig(BaseModel):
    """Bounds for recursive decomposition."""

    model_config = ConfigDict(frozen=True)

    max_depth: int = Field(default=5, ge=1)
    max_sub_tasks: int = Field(default=48, ge=2)
    min_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    epic_time_limit: float = Field(default=8.0, gt=0)


class DecompositionResult(BaseModel):
    """Outcome of decomposing one task.

    ``sub_tasks`` holds the leaves of the decomposition in order. It is empty
    when the task itself is a leaf (already atomic, depth exhausted, or no
    valid split).
    """

    success: bool = True
    is_atomic: bool
    original_task: AtomicTask
    sub_tasks: list[AtomicTask] = Field(default_factory=list)
    analysis: AtomicityAnalysis
    depth: int = 0
    max_depth_reached: int = 0
    error: str | None = None
    notes: list[str] = Field(default_factory=list)

    @property
    def total_hours(self) -> float:
        """Sum of leaf hours."""
        return sum(t.estimated_hours for t in self.sub_tasks)
