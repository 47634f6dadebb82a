"""
Prompt builder for decomposition operations.

Renders tasks, project context and decomposition constraints into the
templates defined in :mod:`taskforge.prompts.templates`.
"""

from loguru import logger

from taskforge.decomposition.models import AtomicityAnalysis, AtomicTask, ProjectContext
from taskforge.prompts.templates import (
    ATOMIC_ANALYSIS_PROMPT,
    ATOMIC_DETECTION_SYSTEM_PROMPT,
    DECOMPOSITION_SYSTEM_PROMPT,
    DEPENDENCY_ANALYSIS_SYSTEM_PROMPT,
    DEPENDENCY_INFERENCE_PROMPT,
    TASK_SPLIT_PROMPT,
)

# Limits keeping prompts bounded for large projects
MAX_EXISTING_TASKS = 10
MAX_CONTEXT_FILES = 10
MAX_EXCERPT_CHARS = 500


class PromptBuilder:
    """
    Build prompts for analysis, splitting and dependency inference.

    Example:
        >>> builder = PromptBuilder()
        >>> prompt = builder.build_analysis_prompt(task, context)
    """

    # =========================================================================
    # SYSTEM PROMPTS
    # =========================================================================

    @property
    def analysis_system_prompt(self) -> str:
        return ATOMIC_DETECTION_SYSTEM_PROMPT.template

    @property
    def split_system_prompt(self) -> str:
        return DECOMPOSITION_SYSTEM_PROMPT.template

    @property
    def dependency_system_prompt(self) -> str:
        return DEPENDENCY_ANALYSIS_SYSTEM_PROMPT.template

    # =========================================================================
    # USER PROMPTS
    # =========================================================================

    def build_analysis_prompt(self, task: AtomicTask, context: ProjectContext) -> str:
        """Build the atomicity analysis prompt for ``task``."""
        return ATOMIC_ANALYSIS_PROMPT.format(
            title=task.title,
            description=task.description,
            task_type=task.type.value,
            priority=task.priority.value,
            estimated_hours=task.estimated_hours,
            acceptance_criteria=self._join(task.acceptance_criteria),
            file_paths=self._join(task.file_paths),
            project_context=self.format_project_context(context),
        )

    def build_split_prompt(
        self,
        task: AtomicTask,
        context: ProjectContext,
        analysis: AtomicityAnalysis | None,
        max_sub_tasks: int,
        epic_time_limit: float,
    ) -> str:
        """Build the split prompt asking for atomic subtasks of ``task``."""
        prompt = TASK_SPLIT_PROMPT.format(
            max_sub_tasks=max_sub_tasks,
            task_id=task.id,
            title=task.title,
            description=task.description,
            task_type=task.type.value,
            priority=task.priority.value,
            estimated_hours=task.estimated_hours,
            acceptance_criteria=self._join(task.acceptance_criteria),
            file_paths=self._join(task.file_paths),
            analysis=self.format_analysis(analysis),
            project_context=self.format_project_context(context),
            epic_time_limit=epic_time_limit,
        )
        logger.debug(f"Built split prompt for {task.id} ({len(prompt)} chars)")
        return prompt

    def build_dependency_prompt(self, tasks: list[AtomicTask], project_id: str) -> str:
        """Build the sibling dependency inference prompt."""
        lines = []
        for task in tasks:
            files = ", ".join(task.file_paths) or "none"
            lines.append(
                f"- {task.id}: {task.title}\n"
                f"  Description: {task.description}\n"
                f"  Type: {task.type.value}, Files: {files}"
            )
        return DEPENDENCY_INFERENCE_PROMPT.format(project_id=project_id, tasks="\n".join(lines))

    # =========================================================================
    # SECTIONS
    # =========================================================================

    def format_project_context(self, context: ProjectContext) -> str:
        """Render project context as a prompt section."""
        sections = [
            f"- Project: {context.project_name or context.project_id}",
            f"- Languages: {self._join(context.languages)}",
            f"- Frameworks: {self._join(context.frameworks)}",
            f"- Tools: {self._join(context.tools)}",
            f"- Codebase Size: {context.codebase_size}",
            f"- Team Size: {context.team_size}",
            f"- Complexity: {context.complexity}",
        ]

        if context.existing_tasks:
            shown = context.existing_tasks[:MAX_EXISTING_TASKS]
            sections.append(f"- Existing Tasks ({len(context.existing_tasks)}):")
            sections.extend(f"  - {t.title} ({t.estimated_hours}h)" for t in shown)

        if context.codebase_context and context.codebase_context.files:
            sections.append("\nRELEVANT FILES:")
            for f in context.codebase_context.files[:MAX_CONTEXT_FILES]:
                sections.append(f"- {f.path} (relevance {f.relevance:.2f})")
                if f.excerpt:
                    sections.append(f"  {f.excerpt[:MAX_EXCERPT_CHARS]}")
            if context.codebase_context.summary:
                sections.append(f"\nCODEBASE SUMMARY:\n{context.codebase_context.summary}")

        if context.research_context and context.research_context.findings:
            sections.append(f"\nRESEARCH INSIGHTS ({context.research_context.topic}):")
            sections.extend(f"- {finding}" for finding in context.research_context.findings)
            if context.research_context.action_items:
                sections.append("Action items:")
                sections.extend(f"- {item}" for item in context.research_context.action_items)

        return "\n".join(sections)

    @staticmethod
    def format_analysis(analysis: AtomicityAnalysis | None) -> str:
        if analysis is None:
            return "No prior analysis available."
        lines = [
            f"- Atomic: {analysis.is_atomic} (confidence {analysis.confidence:.2f})",
            f"- Reasoning: {analysis.reasoning or 'n/a'}",
        ]
        if analysis.complexity_factors:
            lines.append(f"- Complexity factors: {'; '.join(analysis.complexity_factors)}")
        if analysis.recommendations:
            lines.append(f"- Recommendations: {'; '.join(analysis.recommendations)}")
        return "\n".join(lines)

    @staticmethod
    def _join(values: list[str]) -> str:
        return ", ".join(values) if values else "none"
