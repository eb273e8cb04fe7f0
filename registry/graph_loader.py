"""
Graph Loader — reads and writes workflow documents.

Responsibility:
- Parse editor JSON (camelCase keys) into a ``WorkflowGraph``
- Persist a graph back to disk in the same wire format
- Provide the editor's initial single-start graph
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from shared.workflow_contracts import Position, StartData, StartNode, WorkflowGraph

logger = logging.getLogger(__name__)


class GraphLoadError(ValueError):
    """Raised when a workflow document cannot be read or validated."""


def parse_graph(payload: dict[str, Any] | str) -> WorkflowGraph:
    """Validate a decoded document (or raw JSON text) into a graph."""
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise GraphLoadError(f"Invalid workflow JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise GraphLoadError("Workflow document must be a JSON object")

    try:
        return WorkflowGraph.model_validate(payload)
    except ValidationError as exc:
        raise GraphLoadError(f"Invalid workflow graph: {exc}") from exc


def load_graph(path: str | Path) -> WorkflowGraph:
    graph_path = Path(path)
    try:
        raw = graph_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise GraphLoadError(f"Cannot read workflow file '{graph_path}': {exc}") from exc

    graph = parse_graph(raw)
    logger.info(
        "Loaded workflow '%s' from %s: %d nodes, %d connections",
        graph.id,
        graph_path,
        len(graph.nodes),
        len(graph.connections),
    )
    return graph


def save_graph(graph: WorkflowGraph, path: str | Path) -> Path:
    graph_path = Path(path)
    graph_path.parent.mkdir(parents=True, exist_ok=True)
    document = graph.model_dump(mode="json", by_alias=True, exclude_none=True)
    graph_path.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return graph_path


def default_graph() -> WorkflowGraph:
    """Fresh editor canvas: one start node, no connections."""
    start = StartNode(
        id="start-1",
        label="Start",
        position=Position(x=100, y=100),
        data=StartData(initial_context="Emergency response workflow"),
    )
    return WorkflowGraph(
        id="default-graph",
        name="Emergency Response Workflow",
        description="AI-powered disaster response coordination",
        nodes=[start],
    )
