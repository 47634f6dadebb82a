"""Interfaces of external collaborators consumed by the decomposition service.

Context gathering and research are advisory: they only enrich prompts.
Assignment hands ready tasks to downstream workers.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from taskforge.decomposition.models import (
    AtomicTask,
    CodebaseContext,
    ProjectContext,
    ResearchContext,
)


class ContextRequest(BaseModel):
    """Search hints for context gathering."""

    project_id: str
    search_patterns: list[str] = Field(default_factory=list)
    content_keywords: list[str] = Field(default_factory=list)
    file_types: list[str] = Field(default_factory=list)
    max_files: int = Field(default=10, ge=1)
    max_content_size: int = Field(default=50_000, ge=1, description="Bytes per file")


class TaskAssignment(BaseModel):
    """Acknowledgement of a task handed to a downstream worker."""

    task_id: str
    assignee: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContextProvider(ABC):
    """Gather supporting material for a task."""

    @abstractmethod
    async def gather_context(
        self, task_description: str, request: ContextRequest
    ) -> CodebaseContext:
        """Return relevant files and a summary."""


class ResearchProvider(ABC):
    """Research a topic to fill knowledge gaps."""

    @abstractmethod
    async def research(self, topic: str) -> ResearchContext:
        """Return findings about ``topic``."""


class TaskAssigner(ABC):
    """Hand tasks to downstream workers."""

    @abstractmethod
    async def assign_task(
        self, task: AtomicTask, context: ProjectContext
    ) -> TaskAssignment | None:
        """Assign ``task``; return None when no worker accepted it."""
