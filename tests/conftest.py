"""Pytest configuration and shared fixtures."""

import asyncio
import json
import os
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Set test environment
os.environ.setdefault("ANTHROPIC_API_KEY", "sk-ant-REDACTED")
os.environ.setdefault("TASKFORGE_DEBUG", "true")
os.environ.setdefault("TASKFORGE_LOG_LEVEL", "DEBUG")

from taskforge.core.config import Settings, clear_settings_cache  # noqa: E402
from taskforge.decomposition.models import (  # noqa: E402
    AtomicTask,
    CodebaseContext,
    Dependency,
    Epic,
    ProjectContext,
    ResearchContext,
    TaskPriority,
)
from taskforge.integrations.base import (  # noqa: E402
    ContextProvider,
    ContextRequest,
    ResearchProvider,
    TaskAssigner,
    TaskAssignment,
)
from taskforge.llm.client import GenerativeTextClient, OutputFormat  # noqa: E402

_TITLE_RE = re.compile(r"^- Title: (.*)$", re.MULTILINE)
_HOURS_RE = re.compile(r"^- Estimated Hours: ([0-9.]+)$", re.MULTILINE)
_ID_RE = re.compile(r"^- ID: (\S+)$", re.MULTILINE)

Response = str | dict[str, Any] | list[Any] | BaseException | Callable[[str], Any]


def default_split(task_id: str, hours: float, parts: int = 4) -> dict[str, Any]:
    """A chain of atomic subtasks, each depending on the previous one."""
    tasks = []
    for i in range(1, parts + 1):
        tasks.append(
            {
                "title": f"Add part {i} for {task_id}",
                "description": f"Write part {i} of the work for {task_id}",
                "type": "development",
                "priority": "high",
                "estimatedHours": 0.15,
                "filePaths": [f"src/part_{i}.py"],
                "acceptanceCriteria": [f"Part {i} is present"],
                "dependencies": [f"{task_id}-{i - 1:02d}"] if i > 1 else [],
            }
        )
    return {"tasks": tasks}


class ScriptedLLM(GenerativeTextClient):
    """
    Fake generative client answering by prompt kind.

    Analysis prompts are answered atomic when the task is at most 0.17h.
    Split prompts use ``splits[task_id]`` or a default four-step chain.
    Dependency prompts use ``dependencies`` (no edges by default).
    """

    def __init__(
        self,
        analyses: dict[str, Response] | None = None,
        splits: dict[str, Response] | None = None,
        dependencies: Response | None = None,
        split_delay: float = 0.0,
    ) -> None:
        self.analyses = analyses or {}
        self.splits = splits or {}
        self.dependencies = dependencies
        self.split_delay = split_delay
        self.calls: list[dict[str, Any]] = []

    def calls_of(self, kind: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == kind]

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        output_format: OutputFormat = OutputFormat.JSON,
        schema_hint: dict[str, Any] | None = None,
        temperature: float = 0.1,
    ) -> str:
        if prompt.startswith("Decompose the following task"):
            kind = "split"
        elif prompt.startswith("Analyze the following tasks of project"):
            kind = "dependencies"
        else:
            kind = "analysis"
        self.calls.append({"kind": kind, "prompt": prompt, "temperature": temperature})

        if kind == "analysis":
            title = _TITLE_RE.search(prompt).group(1)
            hours = float(_HOURS_RE.search(prompt).group(1))
            default = {
                "isAtomic": hours <= 0.17,
                "confidence": 0.95,
                "reasoning": "scripted",
                "estimatedHours": hours,
            }
            return self._render(self.analyses.get(title, default), prompt)

        if kind == "split":
            task_id = _ID_RE.search(prompt).group(1)
            if self.split_delay:
                await asyncio.sleep(self.split_delay)
            hours = float(_HOURS_RE.search(prompt).group(1))
            return self._render(self.splits.get(task_id, default_split(task_id, hours)), prompt)

        return self._render(
            self.dependencies if self.dependencies is not None else {"dependencies": []},
            prompt,
        )

    @staticmethod
    def _render(response: Response, prompt: str) -> str:
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(prompt)
        if isinstance(response, str):
            return response
        return json.dumps(response)


class StaticContextProvider(ContextProvider):
    """Context provider returning a fixed codebase context."""

    def __init__(self, codebase: CodebaseContext | BaseException) -> None:
        self.codebase = codebase
        self.requests: list[ContextRequest] = []

    async def gather_context(
        self, task_description: str, request: ContextRequest
    ) -> CodebaseContext:
        self.requests.append(request)
        if isinstance(self.codebase, BaseException):
            raise self.codebase
        return self.codebase


class StaticResearchProvider(ResearchProvider):
    """Research provider recording topics."""

    def __init__(self, findings: list[str] | None = None) -> None:
        self.findings = findings or ["Use bcrypt for password hashing"]
        self.topics: list[str] = []

    async def research(self, topic: str) -> ResearchContext:
        self.topics.append(topic)
        return ResearchContext(topic=topic, findings=list(self.findings))


class RecordingAssigner(TaskAssigner):
    """Assigner accepting every task except those in ``reject``."""

    def __init__(self, reject: set[str] | None = None) -> None:
        self.reject = reject or set()
        self.assigned: list[str] = []

    async def assign_task(
        self, task: AtomicTask, context: ProjectContext
    ) -> TaskAssignment | None:
        if task.id in self.reject:
            return None
        self.assigned.append(task.id)
        return TaskAssignment(task_id=task.id, assignee="worker-1")


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings isolated to a temporary directory."""
    clear_settings_cache()
    return Settings(
        anthropic_api_key="sk-ant-REDACTED",
        taskforge_log_dir=str(tmp_path / "logs"),
        taskforge_output_dir=str(tmp_path / "output"),
        taskforge_database_url=f"sqlite+aiosqlite:///{tmp_path / 'taskforge.db'}",
    )


@pytest.fixture
def llm_factory() -> type[ScriptedLLM]:
    """The scripted client class, for tests that need custom responses."""
    return ScriptedLLM


@pytest.fixture
def scripted_llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def context_provider_factory() -> type[StaticContextProvider]:
    return StaticContextProvider


@pytest.fixture
def research_provider() -> StaticResearchProvider:
    return StaticResearchProvider()


@pytest.fixture
def assigner() -> RecordingAssigner:
    return RecordingAssigner()


@pytest.fixture
def project_context() -> ProjectContext:
    return ProjectContext(
        project_id="web-app",
        project_name="Web App",
        languages=["python"],
        frameworks=["fastapi"],
    )


@pytest.fixture
def atomic_task() -> AtomicTask:
    """A task that satisfies every atomic criterion."""
    return AtomicTask(
        id="T0100",
        title="Add login route",
        description="Add POST /login to the auth router",
        project_id="web-app",
        estimated_hours=0.15,
        acceptance_criteria=["POST /login returns 200 for valid credentials"],
        file_paths=["src/routes/auth.py"],
    )


@pytest.fixture
def auth_task() -> AtomicTask:
    """A coarse 16-hour task that must be decomposed."""
    return AtomicTask(
        id="T0001",
        title="Implement User Authentication System",
        description="Create login, registration and session handling for users",
        priority=TaskPriority.HIGH,
        project_id="web-app",
        estimated_hours=16.0,
        acceptance_criteria=[
            "Users can register",
            "Users can log in",
            "Sessions expire after inactivity",
        ],
    )


@pytest.fixture
def chain_tasks() -> list[AtomicTask]:
    """T1 (critical, 2h) and T2 (low, 1h) where T2 depends on T1."""
    return [
        AtomicTask(
            id="T1",
            title="Create schema",
            priority=TaskPriority.CRITICAL,
            estimated_hours=2.0,
            project_id="web-app",
        ),
        AtomicTask(
            id="T2",
            title="Write docs",
            priority=TaskPriority.LOW,
            estimated_hours=1.0,
            project_id="web-app",
            dependencies=["T1"],
        ),
    ]


@pytest.fixture
def epic_fixture() -> tuple[list[Epic], list[AtomicTask], list[Dependency]]:
    """
    Two epics: 3 tasks in E1, 2 in E2, and 2 cross-epic dependencies E1 -> E2.

    Strength is 0.4 * 2/6 + 0.6 * 2/3 = 0.533.
    """
    epics = [
        Epic(id="E1", title="Auth Epic", project_id="web-app", task_ids=["a1", "a2", "a3"],
             estimated_hours=6.0),
        Epic(id="E2", title="Api Epic", project_id="web-app", task_ids=["b1", "b2"],
             estimated_hours=4.0),
    ]
    tasks = [
        AtomicTask(id=t, title=f"Task {t}", project_id="web-app", epic_id=e, estimated_hours=1.0)
        for t, e in [("a1", "E1"), ("a2", "E1"), ("a3", "E1"), ("b1", "E2"), ("b2", "E2")]
    ]
    dependencies = [
        Dependency(id="d1", from_task_id="a1", to_task_id="b1"),
        Dependency(id="d2", from_task_id="a2", to_task_id="b2"),
    ]
    return epics, tasks, dependencies


# Markers
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
