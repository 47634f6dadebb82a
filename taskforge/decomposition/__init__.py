"""Task models, atomicity analysis and recursive decomposition."""

from taskforge.decomposition.atomicity import AtomicityAnalyzer
from taskforge.decomposition.models import (
    AtomicityAnalysis,
    AtomicTask,
    DecompositionResult,
    Dependency,
    DependencyType,
    Epic,
    EpicDependency,
    ProjectContext,
    RDDConfig,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from taskforge.decomposition.operations import OperationKind, OperationRegistry
from taskforge.decomposition.rdd_engine import RDDEngine
from taskforge.decomposition.rules import DEFAULT_RULES, RuleInput, apply_rules

__all__ = [
    "AtomicTask",
    "AtomicityAnalysis",
    "AtomicityAnalyzer",
    "DEFAULT_RULES",
    "DecompositionResult",
    "Dependency",
    "DependencyType",
    "Epic",
    "EpicDependency",
    "OperationKind",
    "OperationRegistry",
    "ProjectContext",
    "RDDConfig",
    "RDDEngine",
    "RuleInput",
    "TaskPriority",
    "TaskStatus",
    "TaskType",
    "apply_rules",
]
