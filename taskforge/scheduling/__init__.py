"""Task scheduling strategies."""

from taskforge.scheduling.scheduler import (
    HybridWeights,
    Schedule,
    ScheduleAlgorithm,
    ScheduledTask,
    TaskScheduler,
    makespan,
)

__all__ = [
    "HybridWeights",
    "Schedule",
    "ScheduleAlgorithm",
    "ScheduledTask",
    "TaskScheduler",
    "makespan",
]
