"""Epic dependency management and epic resolution."""

from taskforge.epics.context_resolver import (
    EpicContext,
    EpicContextResolver,
    EpicSource,
    extract_functional_area,
)
from taskforge.epics.dependency_manager import (
    ConflictSeverity,
    EpicConflict,
    EpicConflictType,
    EpicDependencyAnalysis,
    EpicDependencyConfig,
    EpicDependencyManager,
    EpicPhase,
    EpicRecommendation,
    RecommendationType,
    dependency_strength,
)

__all__ = [
    "ConflictSeverity",
    "EpicConflict",
    "EpicConflictType",
    "EpicContext",
    "EpicContextResolver",
    "EpicDependencyAnalysis",
    "EpicDependencyConfig",
    "EpicDependencyManager",
    "EpicPhase",
    "EpicRecommendation",
    "EpicSource",
    "RecommendationType",
    "dependency_strength",
    "extract_functional_area",
]
