"""Report data structures returned by the DiagnosticsCoordinator.

Every report is a frozen dataclass built once per request. Sections whose
collector failed are listed in ``unavailable`` rather than left empty, so
a consumer can tell "no PDBs" from "could not list PDBs".
"""

from __future__ import annotations

from dataclasses import dataclass, field

from kubedoctor.graph.models import Graph
from kubedoctor.k8s.pods import ContainerSummary
from kubedoctor.models.outcome import Unavailable
from kubedoctor.models.resources import (
    Classification,
    DependencySet,
    Finding,
    HealthVerdict,
    QuotaUsage,
    ResourceRef,
    Score,
    ScopeCounts,
)

# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventSummary:
    """A Warning event reduced to what reports display."""

    involved: ResourceRef
    reason: str
    message: str
    count: int = 1
    last_seen: str = ""


@dataclass(frozen=True)
class Deduction:
    """One security-score deduction. ``points`` is 0 when the category was not evaluated."""

    category: str
    points: int
    reason: str


# ---------------------------------------------------------------------------
# Health reports
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PodDiagnosis:
    pod: ResourceRef
    phase: str
    node_name: str
    containers: ContainerSummary
    classification: Classification
    events: tuple[EventSummary, ...] = ()
    unavailable: tuple[Unavailable, ...] = ()

    @property
    def findings(self) -> tuple[Finding, ...]:
        return self.classification.findings

    @property
    def healthy(self) -> bool:
        return self.classification.verdict is HealthVerdict.HEALTHY and self.classification.healthy


@dataclass(frozen=True)
class NamespaceDiagnosis:
    namespace: str
    counts: ScopeCounts
    unhealthy_pods: tuple[Classification, ...] = ()
    workloads: tuple[Classification, ...] = ()
    pvcs: tuple[Classification, ...] = ()
    events: tuple[EventSummary, ...] = ()
    histogram: dict[str, int] = field(default_factory=dict)
    unavailable: tuple[Unavailable, ...] = ()


@dataclass(frozen=True)
class ClusterDiagnosis:
    nodes: tuple[Classification, ...]
    counts: ScopeCounts
    unhealthy_pods: tuple[Classification, ...] = ()
    kube_system: tuple[Classification, ...] = ()
    events: tuple[EventSummary, ...] = ()
    histogram: dict[str, int] = field(default_factory=dict)
    unavailable: tuple[Unavailable, ...] = ()

    @property
    def ready_nodes(self) -> int:
        return sum(1 for node in self.nodes if node.verdict is HealthVerdict.READY)


@dataclass(frozen=True)
class UnhealthyPods:
    """Unhealthy pods in scope. ``namespace`` is None for all namespaces."""

    namespace: str | None
    total_pods: int
    pods: tuple[Classification, ...] = ()
    truncated: bool = False


# ---------------------------------------------------------------------------
# Security reports
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PodSecurityReport:
    namespace: str
    results: tuple[Classification, ...] = ()
    histogram: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class NamespaceSecurityAudit:
    """Namespace posture summary.

    Count fields are None when the corresponding collector was unavailable.
    """

    namespace: str
    score: Score
    deductions: tuple[Deduction, ...] = ()
    network_policies: int | None = None
    pdbs: int | None = None
    quotas: int | None = None
    role_bindings: int | None = None
    pods: int | None = None
    privileged_pods: int | None = None
    root_pods: int | None = None
    no_security_context_pods: int | None = None
    findings: tuple[Finding, ...] = ()
    unavailable: tuple[Unavailable, ...] = ()


@dataclass(frozen=True)
class BindingEntry:
    """One subject granted a role by a RoleBinding or ClusterRoleBinding."""

    binding: ResourceRef
    scope: str
    role: str
    subject_kind: str
    subject_name: str
    subject_namespace: str = ""


@dataclass(frozen=True)
class RBACBindings:
    """Role grants reaching a namespace.

    ClusterRoleBindings are best-effort; when they cannot be listed only the
    namespace's own RoleBindings are shown and the gap is in ``unavailable``.
    """

    namespace: str
    subject_filter: str = ""
    bindings: tuple[BindingEntry, ...] = ()
    findings: tuple[Finding, ...] = ()
    histogram: dict[str, int] = field(default_factory=dict)
    unavailable: tuple[Unavailable, ...] = ()


# ---------------------------------------------------------------------------
# Dependency / connectivity reports
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkloadDependencies:
    dependencies: DependencySet
    graph: Graph
    unavailable: tuple[Unavailable, ...] = ()


@dataclass(frozen=True)
class PolicyMatch:
    """A NetworkPolicy that selects the analysed pod."""

    name: str
    policy_types: tuple[str, ...]
    ingress_peers: tuple[str, ...] = ()
    egress_peers: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConnectivityReport:
    """Effective traffic rules for one pod.

    ``ingress_restricted``/``egress_restricted`` are True when at least one
    matching policy declares that direction. An empty peer tuple for a
    restricted direction means all traffic in that direction is denied.
    """

    pod: ResourceRef
    labels: dict[str, str]
    policies: tuple[PolicyMatch, ...] = ()
    ingress_restricted: bool = False
    egress_restricted: bool = False
    ingress_sources: tuple[str, ...] = ()
    egress_destinations: tuple[str, ...] = ()
    findings: tuple[Finding, ...] = ()


@dataclass(frozen=True)
class QuotaReport:
    namespace: str | None
    usages: tuple[QuotaUsage, ...] = ()
    findings: tuple[Finding, ...] = ()


# ---------------------------------------------------------------------------
# GitOps reports
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DependencyStatus:
    """Verdict of a referenced reconciler object; None when it could not be read."""

    ref: ResourceRef
    verdict: HealthVerdict | None


@dataclass(frozen=True)
class ReleaseSnapshot:
    chart_version: str
    status: str
    app_version: str = ""


@dataclass(frozen=True)
class ReconcilerDiagnosis:
    """Diagnosis of a Kustomization or HelmRelease and its dependency chain.

    ``findings`` holds the resource's own finding first, then source and
    dependency findings in ``dependsOn`` order.
    """

    subject: ResourceRef
    verdict: HealthVerdict
    suspended: bool
    findings: tuple[Finding, ...] = ()
    source: DependencyStatus | None = None
    depends_on: tuple[DependencyStatus, ...] = ()
    revision: str = ""
    path: str = ""
    chart: str = ""
    chart_version: str = ""
    created: str = ""
    history: tuple[ReleaseSnapshot, ...] = ()


@dataclass(frozen=True)
class ReconcilerSummary:
    """Counts over a set of reconciler objects. ``failed`` includes Stalled."""

    total: int = 0
    ready: int = 0
    failed: int = 0
    suspended: int = 0


@dataclass(frozen=True)
class ReconcilerEntry:
    """One row of a reconciler listing. Fields that do not apply to the kind stay empty."""

    classification: Classification
    suspended: bool = False
    source: str = ""
    path: str = ""
    revision: str = ""
    chart: str = ""
    chart_version: str = ""
    remediation: str = ""
    url: str = ""
    latest: str = ""
    created: str = ""


@dataclass(frozen=True)
class ReconcilerListing:
    namespace: str | None
    kinds: tuple[str, ...]
    entries: tuple[ReconcilerEntry, ...] = ()
    summary: ReconcilerSummary = field(default_factory=ReconcilerSummary)
    histogram: dict[str, int] = field(default_factory=dict)
    source_type: str = ""
    unavailable: tuple[Unavailable, ...] = ()


@dataclass(frozen=True)
class FluxSystemReport:
    controllers: int | None
    unhealthy_controllers: tuple[Classification, ...] = ()
    kustomizations: ReconcilerSummary | None = None
    helm_releases: ReconcilerSummary | None = None
    events: tuple[EventSummary, ...] = ()
    findings: tuple[Finding, ...] = ()
    graph: Graph = field(default_factory=Graph)
    unavailable: tuple[Unavailable, ...] = ()


@dataclass(frozen=True)
class FluxResourceTree:
    root: ResourceRef
    verdict: HealthVerdict
    source: ResourceRef | None = None
    chart: str = ""
    depends_on: tuple[ResourceRef, ...] = ()
    inventory: tuple[str, ...] = ()
    inventory_total: int = 0
    graph: Graph = field(default_factory=Graph)


# ---------------------------------------------------------------------------
# Capacity reports
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResourceAllocation:
    """Summed container requests/limits against node allocatable.

    CPU values are millicores, memory values bytes. Allocatable and usage
    are None when nodes or metrics could not be read.
    """

    namespace: str | None
    pods: int
    cpu_requests: int = 0
    cpu_limits: int = 0
    memory_requests: int = 0
    memory_limits: int = 0
    allocatable_cpu: int | None = None
    allocatable_memory: int | None = None
    cpu_usage: int | None = None
    memory_usage: int | None = None
    findings: tuple[Finding, ...] = ()
    unavailable: tuple[Unavailable, ...] = ()

    @property
    def cpu_request_percent(self) -> float | None:
        if not self.allocatable_cpu:
            return None
        return self.cpu_requests / self.allocatable_cpu * 100

    @property
    def memory_request_percent(self) -> float | None:
        if not self.allocatable_memory:
            return None
        return self.memory_requests / self.allocatable_memory * 100


@dataclass(frozen=True)
class PodUsage:
    pod: ResourceRef
    cpu: int
    memory: int


@dataclass(frozen=True)
class TopConsumers:
    namespace: str | None
    sort_by: str
    consumers: tuple[PodUsage, ...] = ()
    total_pods: int = 0
