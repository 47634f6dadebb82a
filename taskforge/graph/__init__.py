"""Dependency graph and artifact rendering."""

from taskforge.graph.dependency_graph import (
    DependencyGraph,
    GraphStatistics,
    TaskNode,
    infer_dependency_type,
)
from taskforge.graph.rendering import (
    DependencyGraphArtifactWriter,
    GraphArtifacts,
    render_mermaid,
    render_summary,
)

__all__ = [
    "DependencyGraph",
    "DependencyGraphArtifactWriter",
    "GraphArtifacts",
    "GraphStatistics",
    "TaskNode",
    "infer_dependency_type",
    "render_mermaid",
    "render_summary",
]
