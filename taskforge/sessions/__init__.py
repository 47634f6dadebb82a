"""Decomposition sessions."""

from taskforge.sessions.enrichment import ContextEnricher
from taskforge.sessions.models import (
    DecompositionOptions,
    DecompositionSession,
    SessionStatus,
    generate_session_id,
)
from taskforge.sessions.service import DecompositionService

__all__ = [
    "ContextEnricher",
    "DecompositionOptions",
    "DecompositionService",
    "DecompositionSession",
    "SessionStatus",
    "generate_session_id",
]
