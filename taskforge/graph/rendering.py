"""Dependency graph artifacts: Mermaid diagram, narrative summary and JSON."""

import json
import re
from pathlib import Path

from loguru import logger
from pydantic import BaseModel

from taskforge.decomposition.models import utc_now
from taskforge.graph.dependency_graph import DependencyGraph

MAX_LABEL_LENGTH = 30


class GraphArtifacts(BaseModel):
    """Paths of the artifacts written for one graph."""

    mermaid: str
    summary: str
    graph_json: str

    @property
    def paths(self) -> list[str]:
        return [self.mermaid, self.summary, self.graph_json]


def _sanitize_id(task_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9_]", "_", task_id)


def _label(title: str) -> str:
    text = title.replace('"', "'")
    if len(text) > MAX_LABEL_LENGTH:
        text = text[: MAX_LABEL_LENGTH - 3] + "..."
    return text


def render_mermaid(graph: DependencyGraph) -> str:
    """
    Render the graph as a Mermaid ``graph TD`` diagram wrapped in markdown.

    Critical-path nodes are styled with the ``critical`` class.
    """
    cycles = graph.detect_cycles()
    critical = set() if cycles else set(graph.critical_path())

    lines = [
        f"# Dependency Graph: {graph.project_id or 'project'}",
        "",
        "```mermaid",
        "graph TD",
    ]
    for node in graph.nodes.values():
        lines.append(f'    {_sanitize_id(node.id)}["{_label(node.title or node.id)}"]')
    for edge in graph.edges:
        lines.append(
            f"    {_sanitize_id(edge.from_task_id)} -->|{edge.type.value}| "
            f"{_sanitize_id(edge.to_task_id)}"
        )

    lines.extend(
        [
            "",
            "    classDef critical fill:#ff6b6b,stroke:#c92a2a,color:#fff",
            "    classDef normal fill:#e9ecef,stroke:#495057",
        ]
    )
    for node_id in graph.nodes:
        css = "critical" if node_id in critical else "normal"
        lines.append(f"    class {_sanitize_id(node_id)} {css}")
    lines.append("```")

    stats = graph.statistics()
    lines.extend(["", "## Critical Path", ""])
    if critical:
        lines.append(" -> ".join(graph.critical_path()))
    else:
        lines.append("Not available (graph has cycles)" if cycles else "No tasks")
    lines.extend(
        [
            "",
            "## Statistics",
            "",
            f"- Tasks: {stats.total_tasks}",
            f"- Dependencies: {stats.total_dependencies}",
            f"- Max depth: {stats.max_depth}",
            f"- Orphaned tasks: {len(stats.orphaned_tasks)}",
        ]
    )
    return "\n".join(lines) + "\n"


def render_summary(graph: DependencyGraph) -> str:
    """Render a narrative markdown summary of the graph."""
    stats = graph.statistics()
    cycles = graph.detect_cycles()

    lines = [
        f"# Dependency Analysis Summary: {graph.project_id or 'project'}",
        "",
        f"Generated at {utc_now().isoformat()}.",
        "",
        f"The project contains {stats.total_tasks} tasks connected by "
        f"{stats.total_dependencies} dependencies, totalling {stats.total_hours} estimated hours.",
        "",
    ]

    if cycles:
        lines.append("## Circular Dependencies")
        lines.append("")
        lines.extend(f"- {' -> '.join(cycle)}" for cycle in cycles)
        lines.append("")
    else:
        order = graph.execution_order()
        lines.extend(
            [
                f"The longest dependency chain spans {stats.max_depth} levels. "
                f"The critical path has {stats.critical_path_length} tasks "
                f"and takes {stats.critical_path_hours} hours.",
                "",
                "## Execution Order",
                "",
            ]
        )
        for index, task_id in enumerate(order, start=1):
            node = graph.nodes[task_id]
            lines.append(f"{index}. {task_id}: {node.title} ({node.estimated_hours}h)")
        lines.append("")

    if stats.orphaned_tasks:
        lines.extend(["## Independent Tasks", ""])
        lines.extend(f"- {task_id}" for task_id in stats.orphaned_tasks)
        lines.append("")

    return "\n".join(lines)


class DependencyGraphArtifactWriter:
    """
    Write dependency graph artifacts keyed by project id and timestamp.

    Example:
        >>> writer = DependencyGraphArtifactWriter("./output/dependency-graphs")
        >>> artifacts = writer.write(graph)
        >>> artifacts.graph_json
        './output/dependency-graphs/web-app-20250101T120000Z-graph.json'
    """

    def __init__(self, output_dir: str | Path) -> None:
        self.output_dir = Path(output_dir)

    def write(self, graph: DependencyGraph) -> GraphArtifacts:
        """Write the Mermaid diagram, the summary and the JSON graph."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
        prefix = f"{_sanitize_id(graph.project_id or 'project')}-{timestamp}"

        mermaid_path = self.output_dir / f"{prefix}-mermaid.md"
        summary_path = self.output_dir / f"{prefix}-summary.md"
        json_path = self.output_dir / f"{prefix}-graph.json"

        mermaid_path.write_text(render_mermaid(graph), encoding="utf-8")
        summary_path.write_text(render_summary(graph), encoding="utf-8")
        json_path.write_text(json.dumps(graph.to_dict(), indent=2), encoding="utf-8")

        logger.info(f"Wrote dependency graph artifacts to {self.output_dir} ({prefix})")

        return GraphArtifacts(
            mermaid=str(mermaid_path),
            summary=str(summary_path),
            graph_json=str(json_path),
        )
