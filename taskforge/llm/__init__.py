"""Generative-text clients."""

from taskforge.llm.client import AnthropicClient, GenerativeTextClient, OutputFormat
from taskforge.llm.parsing import extract_json

__all__ = [
    "AnthropicClient",
    "GenerativeTextClient",
    "OutputFormat",
    "extract_json",
]
