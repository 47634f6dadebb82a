"""Deterministic override rules for atomicity analysis.

Each rule is a pure function taking the current analysis and returning a
(possibly) adjusted copy. Rules run in a fixed order and are cumulative:
every rule sees the output of the previous one, and none short-circuits.
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from taskforge.decomposition.models import (
    MAX_ATOMIC_FILES,
    MIN_ATOMIC_HOURS,
    AtomicityAnalysis,
    AtomicTask,
    ProjectContext,
)

# Longest duration a task may have and still be considered atomic (20 minutes)
MAX_VALIDATION_HOURS = 0.33

COMPLEX_ACTION_WORDS = (
    "implement",
    "create and",
    "setup and",
    "design and",
    "build and",
    "configure and",
    "develop",
    "establish",
    "integrate",
    "coordinate",
    "build",
    "construct",
    "architect",
    "engineer",
)

VAGUE_WORDS = (
    "various",
    "multiple",
    "several",
    "different",
    "appropriate",
    "necessary",
    "proper",
    "suitable",
)

_AND_RE = re.compile(r"\s+and\s+", re.IGNORECASE)


@dataclass(frozen=True)
class RuleInput:
    """Everything a rule may inspect besides the analysis itself."""

    task: AtomicTask
    context: ProjectContext
    epic_time_limit: float


AtomicityRule = Callable[[AtomicityAnalysis, RuleInput], AtomicityAnalysis]


# =============================================================================
# HELPERS
# =============================================================================


def contains_conjunction(text: str) -> bool:
    """Check whether ``text`` joins two actions with "and"."""
    return bool(_AND_RE.search(text))


def _contains_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}", text, re.IGNORECASE) is not None


def _task_text(task: AtomicTask) -> str:
    return f"{task.title} {task.description}"


# =============================================================================
# RULES
# =============================================================================


def max_duration_rule(analysis: AtomicityAnalysis, data: RuleInput) -> AtomicityAnalysis:
    """Tasks longer than 20 minutes are never atomic."""
    hours = max(analysis.estimated_hours, data.task.estimated_hours)
    if hours > MAX_VALIDATION_HOURS:
        return analysis.reject(
            f"Task exceeds 20-minute validation threshold ({hours:.2f}h)",
            "Task exceeds 20-minute validation threshold - consider breaking down further",
        )
    return analysis


def min_duration_rule(analysis: AtomicityAnalysis, data: RuleInput) -> AtomicityAnalysis:
    """Tasks shorter than 5 minutes are suspiciously granular."""
    declared = data.task.estimated_hours
    too_short = analysis.estimated_hours < MIN_ATOMIC_HOURS or 0 < declared < MIN_ATOMIC_HOURS
    if too_short:
        return analysis.cap(
            0.7,
            recommendation="Task may be too granular - consider combining with related tasks",
        )
    return analysis


def acceptance_criteria_rule(analysis: AtomicityAnalysis, data: RuleInput) -> AtomicityAnalysis:
    """Atomic tasks have exactly one acceptance criterion."""
    count = len(data.task.acceptance_criteria)
    if count != 1:
        return analysis.reject(
            f"Task has {count} acceptance criteria (expected exactly 1)",
            "Atomic tasks must have exactly ONE acceptance criterion",
        )
    return analysis


def conjunction_rule(analysis: AtomicityAnalysis, data: RuleInput) -> AtomicityAnalysis:
    """Titles and descriptions must not join two actions with "and"."""
    task = data.task
    if contains_conjunction(task.title) or contains_conjunction(task.description):
        return analysis.reject(
            "Task contains 'and' operator",
            "Remove 'and' operations - split into separate atomic tasks",
        )
    return analysis


def file_count_rule(analysis: AtomicityAnalysis, data: RuleInput) -> AtomicityAnalysis:
    """Atomic tasks touch at most two files."""
    count = len(data.task.file_paths)
    if count > MAX_ATOMIC_FILES:
        return analysis.reject(
            f"Task modifies {count} files (max {MAX_ATOMIC_FILES})",
            "Split into tasks that each modify at most two files",
        )
    return analysis


def complex_action_rule(analysis: AtomicityAnalysis, data: RuleInput) -> AtomicityAnalysis:
    """Complex-action verbs signal multi-step work."""
    text = _task_text(data.task)
    found = [word for word in COMPLEX_ACTION_WORDS if _contains_word(text, word)]
    if found:
        return analysis.cap(
            0.3,
            factor=f"Task contains complex action words: {', '.join(found)}",
            recommendation="Use simple action verbs: Add, Create, Write, Update, Import, Export",
            atomic=False,
        )
    return analysis


def vague_description_rule(analysis: AtomicityAnalysis, data: RuleInput) -> AtomicityAnalysis:
    """Vague qualifiers in the description signal unclear scope."""
    found = [word for word in VAGUE_WORDS if _contains_word(data.task.description, word)]
    if found:
        return analysis.cap(
            0.4,
            factor=f"Task description contains vague terms: {', '.join(found)}",
            recommendation="Use specific, concrete descriptions instead of vague terms",
            atomic=False,
        )
    return analysis


def epic_time_rule(analysis: AtomicityAnalysis, data: RuleInput) -> AtomicityAnalysis:
    """Warn when the task would push its epic over the time cap."""
    existing = data.context.existing_tasks
    if not existing:
        return analysis

    if data.task.epic_id:
        existing = [t for t in existing if t.epic_id == data.task.epic_id and t.id != data.task.id]

    cap = data.context.epic_time_limit or data.epic_time_limit
    total = sum(t.estimated_hours for t in existing) + analysis.estimated_hours
    if total > cap:
        return analysis.cap(
            0.5,
            factor="Would exceed epic time limit",
            recommendation=f"Epic time limit ({cap}h) would be exceeded ({total:.2f}h)",
        )
    return analysis


DEFAULT_RULES: tuple[AtomicityRule, ...] = (
    max_duration_rule,
    min_duration_rule,
    acceptance_criteria_rule,
    conjunction_rule,
    file_count_rule,
    complex_action_rule,
    vague_description_rule,
    epic_time_rule,
)


def apply_rules(
    analysis: AtomicityAnalysis,
    data: RuleInput,
    rules: Sequence[AtomicityRule] = DEFAULT_RULES,
) -> AtomicityAnalysis:
    """
    Fold ``rules`` over ``analysis`` in order.

    Args:
        analysis: Initial analysis (usually the generative judgement).
        data: Task, context and epic cap inspected by the rules.
        rules: Ordered rule functions.

    Returns:
        The analysis after every rule has been applied.

    Example:
        >>> result = apply_rules(analysis, RuleInput(task, context, 8.0))
        >>> result.confidence
        0.0
    """
    for rule in rules:
        analysis = rule(analysis, data)
    return analysis
