"""Render Graph values as Mermaid flowchart markup."""

from __future__ import annotations

from kubedoctor.graph.models import Graph


def _escape(label: str) -> str:
    return label.replace('"', "#quot;")


def to_mermaid(graph: Graph, direction: str = "LR") -> str:
    """Mermaid ``graph`` block for ``graph``.

    Solid edges render as ``-->``, dashed edges as ``-.->``. Edge labels are
    attached with ``|label|``. An empty graph renders as an empty string.
    """
    if graph.empty:
        return ""

    lines = [f"graph {direction}"]
    for node in graph.nodes:
        lines.append(f'    {node.node_id}["{_escape(node.label)}"]')
    for edge in graph.edges:
        arrow = "-.->" if edge.dashed else "-->"
        if edge.label:
            arrow = f"{arrow}|{_escape(edge.label)}|"
        lines.append(f"    {edge.source} {arrow} {edge.target}")
    return "\n".join(lines)
