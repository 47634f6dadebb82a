"""
Prompt templates for decomposition operations.

This module provides the system prompts and user prompt templates used for
atomicity analysis, task splitting and sibling dependency inference.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# TEMPLATE MODEL
# =============================================================================


class PromptTemplate(BaseModel):
    """A reusable prompt template."""

    model_config = ConfigDict(frozen=True)

    name: str
    template: str
    description: str = ""
    variables: list[str] = Field(default_factory=list)

    def format(self, **kwargs: Any) -> str:
        """Format the template with provided values.

        Args:
            **kwargs: Template variable values.

        Returns:
            Formatted prompt string.
        """
        return self.template.format(**kwargs)

    def get_missing_variables(self, **kwargs: Any) -> list[str]:
        """Get list of variables not provided."""
        return [v for v in self.variables if v not in kwargs]


# =============================================================================
# SYSTEM PROMPTS
# =============================================================================


ATOMIC_DETECTION_SYSTEM_PROMPT = PromptTemplate(
    name="atomic_detection_system",
    description="System prompt for atomicity analysis",
    template="""You are an expert software development task analyzer specializing in atomic task detection.

Your role is to determine whether a task is atomic: small enough to be completed directly by one skilled developer without meaningful further decomposition.

ATOMIC TASK CRITERIA:
- Takes 5-10 minutes for a skilled developer
- Has exactly one acceptance criterion
- Touches at most two files
- Performs exactly one action (no "and" joining two actions)
- Has clear, unambiguous requirements

NON-ATOMIC INDICATORS:
- Requires multiple distinct technical approaches
- Spans multiple system components or layers
- Has vague or broad requirements
- Contains multiple independent deliverables

Be conservative: when in doubt, recommend decomposition.""",
)


DECOMPOSITION_SYSTEM_PROMPT = PromptTemplate(
    name="decomposition_system",
    description="System prompt for splitting a task into atomic subtasks",
    template="""You are an expert software development task decomposition specialist.

Break complex, non-atomic tasks into atomic subtasks that skilled developers can implement independently.

PRINCIPLES:
1. Atomic focus: each subtask takes 5-10 minutes and has a single responsibility
2. Independence: minimize dependencies between subtasks
3. Clarity: each subtask has exactly one testable acceptance criterion
4. Logical flow: list subtasks in natural implementation order
5. Scope preservation: keep the original task's intent

PROHIBITED PATTERNS:
- No "and", "or", "then" in titles or descriptions
- No compound actions, multiple outcomes or sequential steps

REQUIRED PATTERNS:
- Single action verbs: Add, Create, Write, Update, Import, Export, Delete
- Exactly one target file, component or function

TASK TYPES: development, testing, documentation, research
PRIORITIES: critical, high, medium, low""",
)


DEPENDENCY_ANALYSIS_SYSTEM_PROMPT = PromptTemplate(
    name="dependency_analysis_system",
    description="System prompt for inferring dependencies between sibling tasks",
    template="""You are an expert software architect analyzing implementation order.

Identify which tasks must be completed before others can start. Only report real dependencies: shared files, data models used before they exist, interfaces consumed before they are defined, or tests written against code that must exist first.

Dependency types:
- blocks: the second task cannot start until the first completes
- enables: the first task makes the second easier but is not strictly required
- requires: the second task needs an artifact produced by the first
- suggests: a preferred but optional ordering""",
)


# =============================================================================
# ANALYSIS PROMPTS
# =============================================================================


ATOMIC_ANALYSIS_PROMPT = PromptTemplate(
    name="atomic_analysis",
    description="Ask whether a single task is atomic",
    template="""Analyze the following task to determine if it is atomic.

TASK DETAILS:
- Title: {title}
- Description: {description}
- Type: {task_type}
- Priority: {priority}
- Estimated Hours: {estimated_hours}
- Acceptance Criteria: {acceptance_criteria}
- File Paths: {file_paths}

PROJECT CONTEXT:
{project_context}

ATOMIC TASK DEFINITION:
- Takes 5-10 minutes maximum (0.08-0.17 hours)
- Has exactly ONE acceptance criterion
- Touches at most 2 files
- Performs a single action, with no "and" joining two actions

Respond with JSON:
{{
  "isAtomic": true,
  "confidence": 0.9,
  "reasoning": "Why the task is or is not atomic",
  "estimatedHours": 0.1,
  "complexityFactors": ["factor"],
  "recommendations": ["recommendation"]
}}""",
    variables=[
        "title",
        "description",
        "task_type",
        "priority",
        "estimated_hours",
        "acceptance_criteria",
        "file_paths",
        "project_context",
    ],
)


TASK_SPLIT_PROMPT = PromptTemplate(
    name="task_split",
    description="Ask for a split of a non-atomic task into atomic subtasks",
    template="""Decompose the following task into between 2 and {max_sub_tasks} atomic subtasks.

TASK TO DECOMPOSE:
- ID: {task_id}
- Title: {title}
- Description: {description}
- Type: {task_type}
- Priority: {priority}
- Estimated Hours: {estimated_hours}
- Acceptance Criteria: {acceptance_criteria}
- File Paths: {file_paths}

ANALYSIS:
{analysis}

PROJECT CONTEXT:
{project_context}

CONSTRAINTS:
- Each subtask takes 0.08-0.17 hours (5-10 minutes)
- Each subtask has exactly ONE acceptance criterion
- Each subtask touches at most 2 files
- No "and" in any title or description
- The subtasks together must not exceed {epic_time_limit} hours
- Subtasks are identified as {task_id}-01, {task_id}-02, ... in the order listed; reference siblings by these ids in "dependencies"

Respond with JSON:
{{
  "tasks": [
    {{
      "title": "Add user model file",
      "description": "Create the User model in models/user.py",
      "type": "development",
      "priority": "high",
      "estimatedHours": 0.1,
      "filePaths": ["models/user.py"],
      "acceptanceCriteria": ["User model class exists with an email field"],
      "tags": ["model"],
      "dependencies": []
    }}
  ]
}}""",
    variables=[
        "max_sub_tasks",
        "task_id",
        "title",
        "description",
        "task_type",
        "priority",
        "estimated_hours",
        "acceptance_criteria",
        "file_paths",
        "analysis",
        "project_context",
        "epic_time_limit",
    ],
)


DEPENDENCY_INFERENCE_PROMPT = PromptTemplate(
    name="dependency_inference",
    description="Ask for dependencies across a set of sibling tasks",
    template="""Analyze the following tasks of project {project_id} and identify dependencies between them.

TASKS:
{tasks}

Only use the task ids listed above. "fromTaskId" is the task that must complete first; "toTaskId" is the task that depends on it.

Respond with JSON:
{{
  "dependencies": [
    {{
      "fromTaskId": "task id",
      "toTaskId": "task id",
      "type": "blocks",
      "reasoning": "Why this dependency exists"
    }}
  ]
}}""",
    variables=["project_id", "tasks"],
)


# =============================================================================
# TEMPLATE REGISTRY
# =============================================================================


TEMPLATES: dict[str, PromptTemplate] = {
    t.name: t
    for t in [
        ATOMIC_DETECTION_SYSTEM_PROMPT,
        DECOMPOSITION_SYSTEM_PROMPT,
        DEPENDENCY_ANALYSIS_SYSTEM_PROMPT,
        ATOMIC_ANALYSIS_PROMPT,
        TASK_SPLIT_PROMPT,
        DEPENDENCY_INFERENCE_PROMPT,
    ]
}


def get_template(name: str) -> PromptTemplate:
    """Get a template by name.

    Raises:
        KeyError: If no template has that name.
    """
    if name not in TEMPLATES:
        raise KeyError(f"Unknown prompt template: {name}")
    return TEMPLATES[name]
