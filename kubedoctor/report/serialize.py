"""JSON payloads shared by the MCP and REST surfaces."""

from __future__ import annotations

import dataclasses
from typing import Any

from kubedoctor.graph.builder import connectivity_graph
from kubedoctor.graph.models import Graph
from kubedoctor.models.analysis import ConnectivityReport
from kubedoctor.report.mermaid import to_mermaid
from kubedoctor.report.text import render


def graph_of(result: Any) -> Graph | None:
    """The graph attached to a report, or None for reports without one."""
    if isinstance(result, ConnectivityReport):
        return connectivity_graph(result)
    graph = getattr(result, "graph", None)
    return graph if isinstance(graph, Graph) else None


def to_jsonable(result: Any) -> dict[str, Any]:
    """Convert a report dataclass to a JSON-serialisable dict.

    StrEnum members serialise as their string value; tuples become lists.
    """
    return _plain(dataclasses.asdict(result))


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, str):
        return str(value)
    return value


def payload_for(operation: str, result: Any) -> dict[str, Any]:
    """Envelope returned by every surface: structured result plus rendered text."""
    graph = graph_of(result)
    return {
        "operation": operation,
        "result": to_jsonable(result),
        "text": render(result),
        "mermaid": to_mermaid(graph) if graph is not None and not graph.empty else None,
    }
