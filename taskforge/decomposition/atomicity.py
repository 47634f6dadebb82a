"""Atomicity Analyzer - decides whether a task can be executed directly.

One low-temperature generative judgement is combined with the deterministic
override rules in :mod:`taskforge.decomposition.rules`. When the generative
call fails, a purely heuristic judgement is used instead so the pipeline
degrades rather than stalls.
"""

from collections.abc import Sequence
from typing import Any

from loguru import logger

from taskforge.core.errors import LLMResponseError
from taskforge.decomposition.models import (
    MAX_ATOMIC_FILES,
    MAX_ATOMIC_HOURS,
    MIN_ATOMIC_HOURS,
    AtomicityAnalysis,
    AtomicTask,
    ProjectContext,
)
from taskforge.decomposition.rules import (
    DEFAULT_RULES,
    AtomicityRule,
    RuleInput,
    apply_rules,
    contains_conjunction,
)
from taskforge.llm.client import GenerativeTextClient, OutputFormat
from taskforge.llm.parsing import extract_json
from taskforge.prompts.builder import PromptBuilder

ANALYSIS_TEMPERATURE = 0.1
FALLBACK_CONFIDENCE = 0.4
DEFAULT_CONFIDENCE = 0.5
DEFAULT_ESTIMATED_HOURS = 0.1

ANALYSIS_SCHEMA: dict[str, Any] = {
    "isAtomic": "boolean",
    "confidence": "number between 0 and 1",
    "reasoning": "string",
    "estimatedHours": "number",
    "complexityFactors": ["string"],
    "recommendations": ["string"],
}


class AtomicityAnalyzer:
    """
    Decide whether a single task is atomic.

    Example:
        >>> analyzer = AtomicityAnalyzer(llm)
        >>> analysis = await analyzer.analyze(task, context)
        >>> analysis.is_atomic, analysis.confidence
        (False, 0.0)
    """

    def __init__(
        self,
        llm: GenerativeTextClient,
        epic_time_limit: float = 8.0,
        prompt_builder: PromptBuilder | None = None,
        rules: Sequence[AtomicityRule] = DEFAULT_RULES,
    ) -> None:
        """
        Initialize the analyzer.

        Args:
            llm: Generative-text capability.
            epic_time_limit: Default epic cap in hours, used when the
                project context does not override it.
            prompt_builder: Prompt builder instance.
            rules: Ordered override rules.
        """
        self.llm = llm
        self.epic_time_limit = epic_time_limit
        self.prompts = prompt_builder or PromptBuilder()
        self.rules = tuple(rules)

    async def analyze(self, task: AtomicTask, context: ProjectContext) -> AtomicityAnalysis:
        """
        Analyze ``task`` and return the rule-adjusted judgement.

        Args:
            task: Task to analyze.
            context: Project context for the prompt and the epic rule.

        Returns:
            Final AtomicityAnalysis.
        """
        logger.debug(f"Analyzing atomicity of {task.id}: {task.title}")

        try:
            response = await self.llm.generate(
                self.prompts.build_analysis_prompt(task, context),
                system_prompt=self.prompts.analysis_system_prompt,
                output_format=OutputFormat.JSON,
                schema_hint=ANALYSIS_SCHEMA,
                temperature=ANALYSIS_TEMPERATURE,
            )
            analysis = self.parse_response(response)
        except Exception as e:
            logger.warning(f"Atomicity analysis failed for {task.id}: {e}, using fallback")
            analysis = self.fallback_analysis(task)

        analysis = self.apply_rules(analysis, task, context)

        logger.info(
            f"Atomicity of {task.id}: atomic={analysis.is_atomic} "
            f"confidence={analysis.confidence:.2f}"
        )
        return analysis

    def apply_rules(
        self,
        analysis: AtomicityAnalysis,
        task: AtomicTask,
        context: ProjectContext,
    ) -> AtomicityAnalysis:
        """Apply the deterministic override rules to ``analysis``."""
        data = RuleInput(task=task, context=context, epic_time_limit=self.epic_time_limit)
        return apply_rules(analysis, data, self.rules)

    # =========================================================================
    # PARSING
    # =========================================================================

    @staticmethod
    def parse_response(response: str) -> AtomicityAnalysis:
        """
        Parse a generative analysis response.

        Confidence is clamped to [0, 1]; hours are floored at five minutes.

        Raises:
            LLMResponseError: If the response lacks a boolean ``isAtomic``.
        """
        parsed = extract_json(response)

        is_atomic = parsed.get("isAtomic", parsed.get("is_atomic"))
        if not isinstance(is_atomic, bool):
            raise LLMResponseError("Invalid analysis response: isAtomic must be a boolean")

        confidence = _as_float(parsed.get("confidence"), DEFAULT_CONFIDENCE)
        hours = _as_float(parsed.get("estimatedHours", parsed.get("estimated_hours")), 0.0)

        return AtomicityAnalysis(
            is_atomic=is_atomic,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=str(parsed.get("reasoning") or "No reasoning provided"),
            estimated_hours=max(MIN_ATOMIC_HOURS, hours or DEFAULT_ESTIMATED_HOURS),
            complexity_factors=tuple(_as_strings(parsed.get("complexityFactors"))),
            recommendations=tuple(_as_strings(parsed.get("recommendations"))),
        )

    @staticmethod
    def fallback_analysis(task: AtomicTask) -> AtomicityAnalysis:
        """Heuristic judgement used when the generative call fails."""
        hours = task.estimated_hours
        is_atomic = (
            MIN_ATOMIC_HOURS <= hours <= MAX_ATOMIC_HOURS
            and len(task.file_paths) <= MAX_ATOMIC_FILES
            and len(task.acceptance_criteria) == 1
            and not contains_conjunction(task.title)
            and not contains_conjunction(task.description)
        )

        return AtomicityAnalysis(
            is_atomic=is_atomic,
            confidence=FALLBACK_CONFIDENCE,
            reasoning="Fallback analysis based on atomic task criteria",
            estimated_hours=max(MIN_ATOMIC_HOURS, min(MAX_ATOMIC_HOURS, hours)),
            complexity_factors=("LLM analysis unavailable",),
            recommendations=(
                ("Task appears atomic",)
                if is_atomic
                else ("Task should be broken down into smaller atomic units",)
            ),
        )


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]
