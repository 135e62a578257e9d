"""Node/edge graph construction for external rendering.

The builder assigns every distinct ResourceRef a sanitised node id
(``<Kind>_<namespace>_<name>`` restricted to ``[A-Za-z0-9_]``). Two refs
that sanitise to the same id are disambiguated with ``_2``, ``_3``... in
insertion order. Duplicate refs and duplicate edges collapse. Cycles are
allowed; nothing here traverses the graph.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import NamedTuple

from kubedoctor.graph.models import Graph, GraphEdge, GraphNode
from kubedoctor.models.analysis import ConnectivityReport, ReconcilerSummary
from kubedoctor.models.resources import DependencySet, HealthVerdict, ResourceRef

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_]")

# Pseudo-kinds for graph nodes that are not cluster objects.
PEER_KIND = "Peer"
GROUP_KIND = "Group"


class RefEdge(NamedTuple):
    source: ResourceRef
    target: ResourceRef
    label: str = ""
    dashed: bool = False


def node_id_for(ref: ResourceRef) -> str:
    """Sanitised base id for a ref, before collision handling."""
    return _UNSAFE_ID_CHARS.sub("", f"{ref.kind}_{ref.namespace}_{ref.name}")


def default_label(ref: ResourceRef) -> str:
    return f"{ref.kind}: {ref.name}"


class GraphBuilder:
    """Accumulates nodes and edges, then freezes them into a Graph."""

    def __init__(self) -> None:
        self._nodes: dict[ResourceRef, GraphNode] = {}
        self._used_ids: set[str] = set()
        self._edges: dict[tuple[str, str, str, bool], GraphEdge] = {}

    def add_node(self, ref: ResourceRef, label: str | None = None) -> GraphNode:
        """Add a node for ``ref`` if absent; return the (possibly existing) node."""
        existing = self._nodes.get(ref)
        if existing is not None:
            return existing

        base = node_id_for(ref) or "node"
        node_id = base
        suffix = 2
        while node_id in self._used_ids:
            node_id = f"{base}_{suffix}"
            suffix += 1

        node = GraphNode(node_id=node_id, ref=ref, label=label or default_label(ref))
        self._nodes[ref] = node
        self._used_ids.add(node_id)
        return node

    def add_edge(
        self,
        source: ResourceRef,
        target: ResourceRef,
        label: str = "",
        dashed: bool = False,
    ) -> None:
        """Add an edge, creating default-labelled endpoints as needed."""
        src = self.add_node(source)
        dst = self.add_node(target)
        key = (src.node_id, dst.node_id, label, dashed)
        if key not in self._edges:
            self._edges[key] = GraphEdge(source=src.node_id, target=dst.node_id, label=label, dashed=dashed)

    def build(self) -> Graph:
        return Graph(nodes=tuple(self._nodes.values()), edges=tuple(self._edges.values()))


def build(nodes: Iterable[ResourceRef], edges: Iterable[RefEdge]) -> Graph:
    """Build a graph from refs and ref-to-ref edges."""
    builder = GraphBuilder()
    for ref in nodes:
        builder.add_node(ref)
    for edge in edges:
        builder.add_edge(edge.source, edge.target, edge.label, edge.dashed)
    return builder.build()


# ---------------------------------------------------------------------------
# Producers
# ---------------------------------------------------------------------------


def dependency_graph(deps: DependencySet) -> Graph:
    """Workload at the centre; referenced objects below it, Services pointing at it."""
    owner = deps.owner
    ns = owner.namespace
    builder = GraphBuilder()
    builder.add_node(owner, f"{owner.kind}: {owner.name}")

    if deps.service_account:
        builder.add_edge(owner, ResourceRef("ServiceAccount", ns, deps.service_account))
    for name in deps.config_maps:
        builder.add_edge(owner, ResourceRef("ConfigMap", ns, name))
    for name in deps.secrets:
        builder.add_edge(owner, ResourceRef("Secret", ns, name))
    for name in deps.pvcs:
        pvc = ResourceRef("PersistentVolumeClaim", ns, name)
        builder.add_node(pvc, f"PVC: {name}")
        builder.add_edge(owner, pvc)
    for name in deps.matching_services:
        builder.add_edge(ResourceRef("Service", ns, name), owner)
    return builder.build()


def connectivity_graph(report: ConnectivityReport) -> Graph:
    """Allowed (solid) and denied (dashed) traffic around one pod."""
    pod = report.pod
    builder = GraphBuilder()
    builder.add_node(pod, f"Pod: {pod.name}")

    if not report.ingress_restricted:
        source = ResourceRef(PEER_KIND, "", "any-source")
        builder.add_node(source, "Any Source")
        builder.add_edge(source, pod, "allowed")
    elif report.ingress_sources:
        for peer in report.ingress_sources:
            ref = ResourceRef(PEER_KIND, "in", peer)
            builder.add_node(ref, peer)
            builder.add_edge(ref, pod, "allowed")
    else:
        blocked = ResourceRef(PEER_KIND, "in", "all-sources")
        builder.add_node(blocked, "All Sources")
        builder.add_edge(blocked, pod, "denied", dashed=True)

    if not report.egress_restricted:
        dest = ResourceRef(PEER_KIND, "", "any-destination")
        builder.add_node(dest, "Any Destination")
        builder.add_edge(pod, dest, "allowed")
    elif report.egress_destinations:
        for peer in report.egress_destinations:
            ref = ResourceRef(PEER_KIND, "out", peer)
            builder.add_node(ref, peer)
            builder.add_edge(pod, ref, "allowed")
    else:
        blocked = ResourceRef(PEER_KIND, "out", "all-destinations")
        builder.add_node(blocked, "All Destinations")
        builder.add_edge(pod, blocked, "denied", dashed=True)

    return builder.build()


def reconciler_tree(
    root: ResourceRef,
    verdict: HealthVerdict,
    source: ResourceRef | None,
    depends_on: Iterable[ResourceRef],
) -> Graph:
    """Root reconciler pointing at its source; dependencies pointing at the root."""
    builder = GraphBuilder()
    builder.add_node(root, f"{root.kind}: {root.name} - {verdict.value}")
    if source is not None:
        builder.add_edge(root, source)
    for dep in depends_on:
        builder.add_edge(dep, root)
    return builder.build()


def flux_topology(
    kustomizations: ReconcilerSummary | None,
    helm_releases: ReconcilerSummary | None,
) -> Graph:
    """Flux system node fanning out to reconciler group summaries."""
    builder = GraphBuilder()
    flux = ResourceRef(GROUP_KIND, "flux-system", "flux")
    builder.add_node(flux, "Flux System")
    for kind, summary in (("Kustomizations", kustomizations), ("HelmReleases", helm_releases)):
        group = ResourceRef(GROUP_KIND, "flux-system", kind)
        if summary is None:
            builder.add_node(group, f"{kind}: unavailable")
            builder.add_edge(flux, group, dashed=True)
        else:
            builder.add_node(group, f"{kind}: {summary.ready}/{summary.total} ready")
            builder.add_edge(flux, group)
    return builder.build()
