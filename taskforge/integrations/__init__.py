"""External collaborator interfaces."""

from taskforge.integrations.base import (
    ContextProvider,
    ContextRequest,
    ResearchProvider,
    TaskAssigner,
    TaskAssignment,
)

__all__ = [
    "ContextProvider",
    "ContextRequest",
    "ResearchProvider",
    "TaskAssigner",
    "TaskAssignment",
]
