"""Unit tests for dependency graph artifacts."""

import json
from pathlib import Path

import pytest

from taskforge.decomposition.models import AtomicTask, Dependency
from taskforge.graph.dependency_graph import DependencyGraph
from taskforge.graph.rendering import (
    DependencyGraphArtifactWriter,
    render_mermaid,
    render_summary,
)


@pytest.fixture
def graph() -> DependencyGraph:
    tasks = [
        AtomicTask(id="T-1", title="Create schema", estimated_hours=2.0),
        AtomicTask(id="T-2", title='Write "quoted" docs for the whole public API',
                   estimated_hours=0.5),
        AtomicTask(id="T-3", title="Add views", estimated_hours=1.0, dependencies=["T-1"]),
    ]
    return DependencyGraph.from_tasks(tasks, project_id="web-app")


class TestMermaid:
    """Tests for the Mermaid diagram."""

    def test_nodes_edges_and_classes(self, graph: DependencyGraph) -> None:
        """Test sanitized ids, edge labels and critical styling."""
        text = render_mermaid(graph)

        assert text.startswith("# Dependency Graph: web-app")
        assert "```mermaid\ngraph TD" in text
        assert 'T_1["Create schema"]' in text
        assert "T_1 -->|requires| T_3" in text
        assert "class T_1 critical" in text
        assert "class T_2 normal" in text
        assert "T-1 -> T-3" in text

    def test_labels_escaped_and_truncated(self, graph: DependencyGraph) -> None:
        """Test that quotes are replaced and long titles shortened."""
        text = render_mermaid(graph)

        assert "Write 'quoted' docs for the..." in text
        assert '"quoted"' not in text

    def test_cyclic_graph(self) -> None:
        """Test that cycles disable the critical path section."""
        graph = DependencyGraph.from_tasks(
            [AtomicTask(id="A", title="A"), AtomicTask(id="B", title="B")],
            [
                Dependency(from_task_id="A", to_task_id="B"),
                Dependency(from_task_id="B", to_task_id="A"),
            ],
        )

        assert "Not available (graph has cycles)" in render_mermaid(graph)
        assert "## Circular Dependencies" in render_summary(graph)


class TestSummary:
    """Tests for the narrative summary."""

    def test_execution_order_listed(self, graph: DependencyGraph) -> None:
        """Test the ordered task list and independent tasks."""
        text = render_summary(graph)

        assert "3 tasks connected by 1 dependencies" in text
        assert "1. T-1: Create schema (2.0h)" in text
        assert "## Independent Tasks" in text
        assert "- T-2" in text


class TestArtifactWriter:
    """Tests for writing artifacts to disk."""

    def test_write(self, graph: DependencyGraph, tmp_path: Path) -> None:
        """Test that all three artifacts are written and parseable."""
        writer = DependencyGraphArtifactWriter(tmp_path / "graphs")

        artifacts = writer.write(graph)

        assert len(artifacts.paths) == 3
        for path in artifacts.paths:
            assert Path(path).exists()
            assert Path(path).name.startswith("web_app-")
        data = json.loads(Path(artifacts.graph_json).read_text(encoding="utf-8"))
        assert data["project_id"] == "web-app"
        assert data["critical_path"] == ["T-1", "T-3"]
        assert data["cycles"] == []
