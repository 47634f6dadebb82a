"""
taskforge - Task decomposition and scheduling engine.

Breaks coarse development tasks into atomic units, infers their
dependencies and schedules them.
"""

__version__ = "0.1.0"
__author__ = "Taskforge Team"

from taskforge.decomposition import AtomicTask, ProjectContext, RDDEngine
from taskforge.graph import DependencyGraph
from taskforge.scheduling import ScheduleAlgorithm, TaskScheduler
from taskforge.sessions import DecompositionService

__all__ = [
    "AtomicTask",
    "DecompositionService",
    "DependencyGraph",
    "ProjectContext",
    "RDDEngine",
    "ScheduleAlgorithm",
    "TaskScheduler",
    "__version__",
]
