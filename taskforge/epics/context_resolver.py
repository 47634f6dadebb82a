"""Resolve the epic a new task belongs to.

Tasks are matched to an epic by functional area (auth, api, ui, ...),
detected from their tags first and their text second. An existing epic
tagged with the area is reused; otherwise an area epic is created, and as a
last resort the project's main epic.
"""

import re
from enum import Enum

from loguru import logger
from pydantic import BaseModel

from taskforge.decomposition.models import AtomicTask, TaskPriority
from taskforge.storage.base import TaskStore

FUNCTIONAL_AREAS: dict[str, tuple[str, ...]] = {
    "auth": ("auth", "login", "register", "authentication", "user", "password", "session"),
    "video": ("video", "stream", "media", "player", "content", "watch"),
    "api": ("api", "endpoint", "route", "controller", "service", "backend"),
    "docs": ("doc", "documentation", "readme", "guide", "manual"),
    "ui": ("ui", "component", "frontend", "interface", "view", "page"),
    "database": ("database", "db", "model", "schema", "migration"),
    "test": ("test", "testing", "spec", "unit", "integration"),
    "config": ("config", "configuration", "setup", "environment"),
    "security": ("security", "permission", "access", "role", "authorization"),
    "multilingual": ("multilingual", "language", "locale", "translation", "i18n"),
    "accessibility": ("accessibility", "a11y", "wcag", "screen reader"),
    "interactive": ("interactive", "feature", "engagement", "user interaction"),
}

AREA_EPIC_HOURS = 40.0
MAIN_EPIC_HOURS = 80.0


class EpicSource(str, Enum):
    """How an epic was resolved."""

    EXISTING = "existing"
    CREATED = "created"
    FALLBACK = "fallback"


class EpicContext(BaseModel):
    """Result of epic resolution."""

    epic_id: str
    epic_name: str
    source: EpicSource
    confidence: float
    created: bool = False
    functional_area: str | None = None


def extract_functional_area(task: AtomicTask) -> str | None:
    """Detect the functional area of ``task`` from its tags, then its text."""
    for tag in (t.lower() for t in task.tags):
        for area, keywords in FUNCTIONAL_AREAS.items():
            if tag in keywords:
                return area

    text = f"{task.title} {task.description}".lower()
    for area, keywords in FUNCTIONAL_AREAS.items():
        for keyword in keywords:
            if re.search(rf"\b{re.escape(keyword)}", text):
                return area
    return None


class EpicContextResolver:
    """
    Find or create the epic for a task.

    Example:
        >>> resolver = EpicContextResolver(store)
        >>> context = await resolver.resolve("web-app", task)
        >>> context.epic_name
        'Auth Epic'
    """

    def __init__(self, store: TaskStore) -> None:
        self.store = store

    async def resolve(
        self,
        project_id: str,
        task: AtomicTask,
        functional_area: str | None = None,
    ) -> EpicContext:
        """
        Resolve the epic for ``task``.

        Storage failures never propagate: the per-project main epic id is
        returned as a fallback.
        """
        area = functional_area or extract_functional_area(task)

        try:
            if area:
                existing = await self._find_area_epic(project_id, area)
                if existing:
                    return existing
                return await self._create_area_epic(project_id, area, task.priority)
            return await self._main_epic(project_id, task.priority)
        except Exception as e:
            logger.warning(f"Epic resolution failed for project {project_id}: {e}, using fallback")
            return EpicContext(
                epic_id=f"{project_id}-main-epic",
                epic_name="Main Epic",
                source=EpicSource.FALLBACK,
                confidence=0.1,
                functional_area=area,
            )

    async def _find_area_epic(self, project_id: str, area: str) -> EpicContext | None:
        for epic in await self.store.list_epics(project_id):
            if area in epic.tags:
                logger.debug(f"Found epic {epic.id} for functional area {area}")
                return EpicContext(
                    epic_id=epic.id,
                    epic_name=epic.title,
                    source=EpicSource.EXISTING,
                    confidence=0.9,
                    functional_area=area,
                )
        return None

    async def _create_area_epic(
        self, project_id: str, area: str, priority: TaskPriority
    ) -> EpicContext:
        title = f"{area.capitalize()} Epic"
        epic = await self.store.create_epic(
            {
                "title": title,
                "description": f"Epic for {area} related tasks and features",
                "project_id": project_id,
                "priority": priority,
                "estimated_hours": AREA_EPIC_HOURS,
                "tags": [area, "auto-created"],
            }
        )
        logger.info(f"Created functional area epic {epic.id} ({title})")
        return EpicContext(
            epic_id=epic.id,
            epic_name=title,
            source=EpicSource.CREATED,
            confidence=0.8,
            created=True,
            functional_area=area,
        )

    async def _main_epic(self, project_id: str, priority: TaskPriority) -> EpicContext:
        for epic in await self.store.list_epics(project_id):
            if "main" in epic.tags:
                return EpicContext(
                    epic_id=epic.id,
                    epic_name=epic.title,
                    source=EpicSource.EXISTING,
                    confidence=0.7,
                )

        epic = await self.store.create_epic(
            {
                "title": "Main Epic",
                "description": "Main epic for project tasks and features",
                "project_id": project_id,
                "priority": priority,
                "estimated_hours": MAIN_EPIC_HOURS,
                "tags": ["main", "auto-created"],
            }
        )
        return EpicContext(
            epic_id=epic.id,
            epic_name=epic.title,
            source=EpicSource.CREATED,
            confidence=0.6,
            created=True,
        )
