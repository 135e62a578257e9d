"""Graph data types produced by the GraphBuilder.

Graphs are plain values: the engine never renders them. Node ids are
sanitised identifiers safe for diagram markup.
"""

from __future__ import annotations

from dataclasses import dataclass

from kubedoctor.models.resources import ResourceRef


@dataclass(frozen=True)
class GraphNode:
    node_id: str
    ref: ResourceRef
    label: str


@dataclass(frozen=True)
class GraphEdge:
    """Directed edge between two node ids.

    ``dashed`` marks a denied or inferred relationship (e.g. traffic blocked
    by a NetworkPolicy).
    """

    source: str
    target: str
    label: str = ""
    dashed: bool = False


@dataclass(frozen=True)
class Graph:
    nodes: tuple[GraphNode, ...] = ()
    edges: tuple[GraphEdge, ...] = ()

    def node(self, ref: ResourceRef) -> GraphNode | None:
        """Return the node for a ref, or None."""
        for node in self.nodes:
            if node.ref == ref:
                return node
        return None

    @property
    def empty(self) -> bool:
        return not self.nodes
