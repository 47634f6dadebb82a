"""Prompt templates and builder."""

from taskforge.prompts.builder import PromptBuilder
from taskforge.prompts.templates import TEMPLATES, PromptTemplate, get_template

__all__ = ["PromptBuilder", "PromptTemplate", "TEMPLATES", "get_template"]
