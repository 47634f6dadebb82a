"""Context enrichment for decomposition prompts.

Gathers relevant codebase material for a task and, when the gathered
material leaves a knowledge gap, runs an optional research step. Both are
advisory: any failure leaves the original context untouched.
"""

import re

from loguru import logger

from taskforge.decomposition.models import (
    AtomicTask,
    CodebaseContext,
    ProjectContext,
)
from taskforge.integrations.base import ContextProvider, ContextRequest, ResearchProvider

TECHNICAL_TERMS = (
    "auth", "user", "login", "service", "component", "util", "helper",
    "api", "endpoint", "route", "controller", "model", "view",
    "test", "spec", "mock", "config", "setup", "init",
)
ACTION_KEYWORDS = (
    "implement", "create", "add", "remove", "update", "fix", "refactor",
    "optimize", "enhance", "integrate", "migrate", "test", "validate",
)
DOMAIN_KEYWORDS = (
    "database", "api", "frontend", "backend", "ui", "ux", "security",
    "performance", "cache", "storage", "network", "validation",
)
COMPLEXITY_INDICATORS = (
    "refactor", "architecture", "system", "integration",
    "framework", "migration", "optimization",
)

MAX_SEARCH_PATTERNS = 8
MAX_CONTENT_KEYWORDS = 6
BASE_MAX_FILES = 10
BASE_CONTENT_SIZE = 50_000

# Research is triggered when gathered files are this weak on average
MIN_AVERAGE_RELEVANCE = 0.5
RESEARCH_HOURS_THRESHOLD = 8.0


# =============================================================================
# SEARCH HINTS
# =============================================================================


def _task_text(task: AtomicTask) -> str:
    return f"{task.title} {task.description}"


def extract_search_patterns(task: AtomicTask) -> list[str]:
    """Technical terms, CamelCase names and module names found in the task."""
    raw = _task_text(task)
    text = raw.lower()

    patterns = [term for term in TECHNICAL_TERMS if term in text]
    patterns.extend(m.lower() for m in re.findall(r"[A-Z][a-z]+(?:[A-Z][a-z]+)+", raw))
    patterns.extend(re.findall(r"[a-z]+[-_][a-z]+", text))
    return list(dict.fromkeys(patterns))[:MAX_SEARCH_PATTERNS]


def extract_content_keywords(task: AtomicTask) -> list[str]:
    """Action and domain keywords found in the task."""
    text = _task_text(task).lower()
    keywords = [k for k in ACTION_KEYWORDS if k in text]
    keywords.extend(k for k in DOMAIN_KEYWORDS if k in text)
    return list(dict.fromkeys(keywords))[:MAX_CONTENT_KEYWORDS]


def determine_file_types(context: ProjectContext) -> list[str]:
    """File extensions worth searching given the project's stack."""
    languages = {lang.lower() for lang in context.languages}
    frameworks = {fw.lower() for fw in context.frameworks}

    types: list[str] = []
    if "python" in languages:
        types += [".py", ".pyi"]
    if "typescript" in languages:
        types += [".ts", ".tsx"]
    if "javascript" in languages:
        types += [".js", ".jsx", ".mjs"]
    if "java" in languages:
        types.append(".java")
    if "csharp" in languages:
        types.append(".cs")
    if "go" in languages:
        types.append(".go")
    if "react" in frameworks:
        types += [".tsx", ".jsx"]
    if "vue" in frameworks:
        types.append(".vue")

    types += [".json", ".md"]
    return list(dict.fromkeys(types))


def determine_max_files(task: AtomicTask) -> int:
    if task.estimated_hours > 8:
        return min(BASE_MAX_FILES * 2, 30)
    text = (task.description or task.title).lower()
    score = sum(1 for indicator in COMPLEXITY_INDICATORS if indicator in text)
    return min(BASE_MAX_FILES + score * 5, 25)


def determine_max_content_size(task: AtomicTask) -> int:
    if task.estimated_hours > 12:
        return BASE_CONTENT_SIZE * 2
    if task.estimated_hours > 6:
        return int(BASE_CONTENT_SIZE * 1.5)
    return BASE_CONTENT_SIZE


def extract_domain(context: ProjectContext) -> str:
    """Coarse development domain used as research topic qualifier."""
    frameworks = {fw.lower() for fw in context.frameworks}
    languages = {lang.lower() for lang in context.languages}

    if frameworks & {"react", "vue", "angular", "svelte"}:
        return "frontend-development"
    if frameworks & {"express", "fastify", "nestjs", "fastapi", "django", "flask"}:
        return "backend-development"
    if "python" in languages:
        return "python-development"
    if "java" in languages:
        return "java-development"
    if languages & {"typescript", "javascript"}:
        return "web-development"
    return "software-development"


def build_context_request(task: AtomicTask, context: ProjectContext) -> ContextRequest:
    return ContextRequest(
        project_id=context.project_id,
        search_patterns=extract_search_patterns(task),
        content_keywords=extract_content_keywords(task),
        file_types=determine_file_types(context),
        max_files=determine_max_files(task),
        max_content_size=determine_max_content_size(task),
    )


# =============================================================================
# ENRICHER
# =============================================================================


class ContextEnricher:
    """
    Enrich a project context with codebase material and research findings.

    Example:
        >>> enricher = ContextEnricher(context_provider=provider)
        >>> enriched = await enricher.enrich(task, context)
        >>> len(enriched.codebase_context.files)
        4
    """

    def __init__(
        self,
        context_provider: ContextProvider | None = None,
        research_provider: ResearchProvider | None = None,
    ) -> None:
        self.context_provider = context_provider
        self.research_provider = research_provider

    async def enrich(self, task: AtomicTask, context: ProjectContext) -> ProjectContext:
        """
        Return ``context`` extended with gathered material.

        Never raises: on failure the original context is returned.
        """
        if self.context_provider is None and self.research_provider is None:
            return context

        try:
            codebase = context.codebase_context
            if self.context_provider is not None:
                request = build_context_request(task, context)
                logger.debug(
                    f"Gathering context for {task.id} "
                    f"(patterns={request.search_patterns}, max_files={request.max_files})"
                )
                codebase = await self.context_provider.gather_context(
                    f"{task.title}\n{task.description}", request
                )
                logger.info(f"Gathered {len(codebase.files)} relevant files for {task.id}")

            research = context.research_context
            if self.research_provider is not None and self.needs_research(task, codebase):
                topic = f"{task.title} ({extract_domain(context)})"
                logger.info(f"Knowledge gap detected for {task.id}, researching: {topic}")
                research = await self.research_provider.research(topic)

            return context.model_copy(
                update={"codebase_context": codebase, "research_context": research}
            )
        except Exception as e:
            logger.warning(f"Context enrichment failed for {task.id}: {e}, using original context")
            return context

    @staticmethod
    def needs_research(task: AtomicTask, codebase: CodebaseContext | None) -> bool:
        """Detect a knowledge gap worth a research step."""
        if codebase is None or not codebase.files:
            return True
        average = sum(f.relevance for f in codebase.files) / len(codebase.files)
        if average < MIN_AVERAGE_RELEVANCE:
            return True
        return task.estimated_hours > RESEARCH_HOURS_THRESHOLD
