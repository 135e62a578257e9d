"""Plain-text rendering of diagnostic reports.

``render(result)`` dispatches on the report type. Output is meant for a
terminal or an assistant transcript; the structured result stays the
source of truth.
"""

from __future__ import annotations

from collections.abc import Iterable
from functools import singledispatch

from kubedoctor.k8s.quantity import format_bytes, format_cpu
from kubedoctor.models.analysis import (
    ClusterDiagnosis,
    ConnectivityReport,
    EventSummary,
    FluxResourceTree,
    FluxSystemReport,
    NamespaceDiagnosis,
    NamespaceSecurityAudit,
    PodDiagnosis,
    PodSecurityReport,
    QuotaReport,
    RBACBindings,
    ReconcilerDiagnosis,
    ReconcilerListing,
    ReconcilerSummary,
    ResourceAllocation,
    TopConsumers,
    UnhealthyPods,
    WorkloadDependencies,
)
from kubedoctor.models.outcome import Unavailable
from kubedoctor.models.resources import SEVERITY_ORDER, Classification, Finding, ScopeCounts

_NONE = "<none>"


def truncate_revision(revision: str, max_len: int = 12) -> str:
    """Shorten a Flux revision for display.

    ``main@sha1:0123456789abcdef`` keeps the branch and the first ``max_len``
    characters of the digest (a ``sha256:`` prefix does not count against it).
    Other revisions longer than ``max_len`` are cut with an ellipsis.
    """
    if not revision:
        return _NONE
    branch, _, digest = revision.rpartition("@")
    if branch:
        keep = max_len + len("sha256:") if digest.startswith("sha256:") else max_len
        return f"{branch}@{digest[:keep]}"
    if len(revision) > max_len:
        return revision[:max_len] + "..."
    return revision


def _scope(namespace: str | None) -> str:
    return namespace if namespace else "all namespaces"


def _count(value: int | None) -> str:
    return "n/a" if value is None else str(value)


def _finding_lines(findings: Iterable[Finding], indent: str = "  ") -> list[str]:
    ordered = sorted(findings, key=lambda f: SEVERITY_ORDER.index(f.severity))
    lines: list[str] = []
    for finding in ordered:
        lines.append(f"{indent}[{finding.severity.value}] {finding.message}")
        for detail in finding.details:
            lines.append(f"{indent}    {detail}")
        if finding.suggested_action:
            lines.append(f"{indent}    -> {finding.suggested_action}")
    return lines


def _event_lines(events: Iterable[EventSummary]) -> list[str]:
    lines = []
    for event in events:
        count = f" (x{event.count})" if event.count > 1 else ""
        lines.append(f"  {event.involved.kind}/{event.involved.name}: {event.reason}{count} - {event.message}")
    return lines


def _unavailable_lines(unavailable: Iterable[Unavailable]) -> list[str]:
    items = list(unavailable)
    if not items:
        return []
    lines = ["", "Unavailable sections:"]
    lines.extend(f"  {u.source}: {u.error_code} - {u.reason}" for u in items)
    return lines


def _histogram_line(histogram: dict[str, int]) -> str:
    return ", ".join(f"{key}: {value}" for key, value in histogram.items())


def _counts_lines(counts: ScopeCounts) -> list[str]:
    lines = [
        f"Pods: {counts.total} total, {counts.healthy} healthy, {counts.unhealthy} unhealthy, "
        f"{counts.high_restarts} with high restarts"
    ]
    if counts.by_phase:
        lines.append("  " + ", ".join(f"{phase}={n}" for phase, n in sorted(counts.by_phase.items())))
    return lines


def _classification_lines(results: Iterable[Classification]) -> list[str]:
    lines: list[str] = []
    for result in results:
        phase = f" ({result.phase})" if result.phase else ""
        lines.append(f"  {result.subject}: {result.verdict.value}{phase}")
        lines.extend(_finding_lines(result.findings, indent="    "))
    return lines


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


@singledispatch
def render(result: object) -> str:
    """Render any report dataclass as text."""
    raise TypeError(f"No text renderer for {type(result).__name__}")


@render.register
def _(result: PodDiagnosis) -> str:
    c = result.containers
    lines = [
        f"Pod {result.pod}",
        f"Status: {result.classification.verdict.value} ({result.phase})",
        f"Node: {result.node_name or _NONE}",
        f"Containers: {c.ready}/{c.total} ready, {c.restarts} restarts",
    ]
    if result.findings:
        lines += ["", "Findings:"] + _finding_lines(result.findings)
    if result.events:
        lines += ["", "Recent warning events:"] + _event_lines(result.events)
    lines += _unavailable_lines(result.unavailable)
    return "\n".join(lines)


@render.register
def _(result: NamespaceDiagnosis) -> str:
    lines = [f"Namespace {result.namespace}"] + _counts_lines(result.counts)
    lines.append(f"Findings: {_histogram_line(result.histogram)}")
    if result.unhealthy_pods:
        lines += ["", "Unhealthy pods:"] + _classification_lines(result.unhealthy_pods)
    if result.workloads:
        lines += ["", "Degraded workloads:"] + _classification_lines(result.workloads)
    if result.pvcs:
        lines += ["", "Unbound PVCs:"] + _classification_lines(result.pvcs)
    if result.events:
        lines += ["", "Recent warning events:"] + _event_lines(result.events)
    lines += _unavailable_lines(result.unavailable)
    return "\n".join(lines)


@render.register
def _(result: ClusterDiagnosis) -> str:
    lines = [f"Nodes: {result.ready_nodes}/{len(result.nodes)} ready"]
    lines += _classification_lines(n for n in result.nodes if n.findings)
    lines += _counts_lines(result.counts)
    lines.append(f"Findings: {_histogram_line(result.histogram)}")
    if result.unhealthy_pods:
        lines += ["", "Unhealthy pods:"] + _classification_lines(result.unhealthy_pods)
    if result.kube_system:
        lines += ["", "kube-system problems:"] + _classification_lines(result.kube_system)
    if result.events:
        lines += ["", "Recent warning events:"] + _event_lines(result.events)
    lines += _unavailable_lines(result.unavailable)
    return "\n".join(lines)


@render.register
def _(result: UnhealthyPods) -> str:
    header = f"{len(result.pods)} unhealthy of {result.total_pods} pods in {_scope(result.namespace)}"
    if result.truncated:
        header += " (truncated)"
    if not result.pods:
        return header + "\nAll pods are healthy."
    return "\n".join([header] + _classification_lines(result.pods))


@render.register
def _(result: PodSecurityReport) -> str:
    lines = [
        f"Pod security in {result.namespace}: {len(result.results)} pod(s)",
        f"Findings: {_histogram_line(result.histogram)}",
    ]
    lines += _classification_lines(r for r in result.results if r.findings)
    return "\n".join(lines)


@render.register
def _(result: NamespaceSecurityAudit) -> str:
    lines = [
        f"Security audit: {result.namespace}",
        f"Score: {result.score.value}/100 (grade {result.score.grade})",
        "",
        f"NetworkPolicies: {_count(result.network_policies)}",
        f"PodDisruptionBudgets: {_count(result.pdbs)}",
        f"ResourceQuotas: {_count(result.quotas)}",
        f"RoleBindings: {_count(result.role_bindings)}",
        f"Pods: {_count(result.pods)} (privileged {_count(result.privileged_pods)}, "
        f"root {_count(result.root_pods)}, no securityContext {_count(result.no_security_context_pods)})",
    ]
    deductions = [d for d in result.deductions if d.points or d.reason == "not available"]
    if deductions:
        lines += ["", "Deductions:"]
        lines += [f"  -{d.points} {d.category}: {d.reason}" for d in deductions]
    if result.findings:
        lines += ["", "Findings:"] + _finding_lines(result.findings)
    lines += _unavailable_lines(result.unavailable)
    return "\n".join(lines)


@render.register
def _(result: RBACBindings) -> str:
    matching = f" matching '{result.subject_filter}'" if result.subject_filter else ""
    lines = [f"RBAC bindings in {result.namespace}{matching}: {len(result.bindings)} subject(s)"]
    for entry in result.bindings:
        subject = f"{entry.subject_kind}/{entry.subject_name}"
        if entry.subject_namespace:
            subject += f" ({entry.subject_namespace})"
        lines.append(f"  [{entry.scope}] {entry.binding.name}: {entry.role} -> {subject}")
    if not result.bindings:
        lines.append("  none found")
    if result.findings:
        lines += ["", "Findings:"] + _finding_lines(result.findings)
    lines += _unavailable_lines(result.unavailable)
    return "\n".join(lines)


@render.register
def _(result: WorkloadDependencies) -> str:
    deps = result.dependencies

    def joined(items: tuple[str, ...]) -> str:
        return ", ".join(items) if items else _NONE

    lines = [
        f"Dependencies of {deps.owner}",
        f"ServiceAccount: {deps.service_account or _NONE}",
        f"ConfigMaps: {joined(deps.config_maps)}",
        f"Secrets: {joined(deps.secrets)}",
        f"PVCs: {joined(deps.pvcs)}",
        f"Services: {joined(deps.matching_services)}",
    ]
    lines += _unavailable_lines(result.unavailable)
    return "\n".join(lines)


@render.register
def _(result: ConnectivityReport) -> str:
    labels = ", ".join(f"{k}={v}" for k, v in sorted(result.labels.items())) or _NONE
    lines = [f"Connectivity for {result.pod}", f"Labels: {labels}"]
    if result.policies:
        lines.append("Matching policies:")
        for policy in result.policies:
            lines.append(f"  {policy.name} ({', '.join(policy.policy_types)})")

    def direction(restricted: bool, peers: tuple[str, ...], unrestricted: str) -> str:
        if not restricted:
            return unrestricted
        return ", ".join(peers) if peers else "DENIED"

    lines.append(f"Ingress: {direction(result.ingress_restricted, result.ingress_sources, 'all sources allowed')}")
    lines.append(
        f"Egress: {direction(result.egress_restricted, result.egress_destinations, 'all destinations allowed')}"
    )
    if result.findings:
        lines += ["", "Findings:"] + _finding_lines(result.findings)
    return "\n".join(lines)


@render.register
def _(result: QuotaReport) -> str:
    if not result.usages:
        return f"No resource quotas in {_scope(result.namespace)}"
    lines = [f"Resource quotas in {_scope(result.namespace)}:"]
    for usage in result.usages:
        pct = "n/a" if usage.percentage is None else f"{usage.percentage:.0f}%"
        quota = usage.quota
        lines.append(f"  {quota.namespace}/{quota.name} {usage.resource}: {usage.used}/{usage.hard} ({pct})")
    if result.findings:
        lines += ["", "Findings:"] + _finding_lines(result.findings)
    return "\n".join(lines)


@render.register
def _(result: ReconcilerDiagnosis) -> str:
    suspended = " (suspended)" if result.suspended else ""
    lines = [f"{result.subject}", f"Status: {result.verdict.value}{suspended}"]
    if result.chart:
        version = f"@{result.chart_version}" if result.chart_version else ""
        lines.append(f"Chart: {result.chart}{version}")
    if result.path:
        lines.append(f"Path: {result.path}")
    if result.revision:
        lines.append(f"Revision: {result.revision}")
    if result.source is not None:
        verdict = result.source.verdict.value if result.source.verdict else "unknown"
        lines.append(f"Source: {result.source.ref.kind}/{result.source.ref.name} ({verdict})")
    if result.depends_on:
        lines.append("Depends on:")
        for dep in result.depends_on:
            verdict = dep.verdict.value if dep.verdict else "unknown"
            lines.append(f"  {dep.ref.namespace}/{dep.ref.name}: {verdict}")
    if result.history:
        lines.append("History:")
        for snap in result.history:
            app = f" (app {snap.app_version})" if snap.app_version else ""
            lines.append(f"  {snap.chart_version}: {snap.status}{app}")
    if result.findings:
        lines += ["", "Findings:"] + _finding_lines(result.findings)
    return "\n".join(lines)


def _summary_line(label: str, summary: ReconcilerSummary | None) -> str:
    if summary is None:
        return f"{label}: unavailable"
    return (
        f"{label}: {summary.ready}/{summary.total} ready, {summary.failed} failed, {summary.suspended} suspended"
    )


_KIND_LABELS = {
    "Kustomization": "Kustomizations",
    "HelmRelease": "HelmReleases",
    "GitRepository": "GitRepositories",
    "OCIRepository": "OCIRepositories",
    "HelmRepository": "HelmRepositories",
    "HelmChart": "HelmCharts",
    "Bucket": "Buckets",
    "ImageRepository": "ImageRepositories",
    "ImagePolicy": "ImagePolicies",
}


@render.register
def _(result: ReconcilerListing) -> str:
    label = ", ".join(_KIND_LABELS.get(kind, kind) for kind in result.kinds)
    if len(result.kinds) > 2:
        label = "Flux sources"
    lines = [
        _summary_line(f"{label} in {_scope(result.namespace)}", result.summary),
        f"Findings: {_histogram_line(result.histogram)}",
    ]
    for entry in result.entries:
        c = entry.classification
        suspended = " (suspended)" if entry.suspended else ""
        lines.append(f"  {c.subject}: {c.verdict.value}{suspended}")
        if entry.source:
            lines.append(f"    source: {entry.source}")
        if entry.chart:
            version = f"@{entry.chart_version}" if entry.chart_version else ""
            lines.append(f"    chart: {entry.chart}{version}")
        if entry.path:
            lines.append(f"    path: {entry.path}")
        if entry.url:
            lines.append(f"    url: {entry.url}")
        if entry.latest:
            lines.append(f"    latest: {entry.latest}")
        if entry.remediation:
            lines.append(f"    remediation: {entry.remediation}")
        if c.subject.kind not in ("ImageRepository", "ImagePolicy"):
            lines.append(f"    revision: {truncate_revision(entry.revision)}")
        lines.extend(_finding_lines(c.findings, indent="    "))
    if not result.entries:
        lines.append("  none found")
    lines += _unavailable_lines(result.unavailable)
    return "\n".join(lines)


@render.register
def _(result: FluxSystemReport) -> str:
    lines = [
        "Flux system",
        f"Controllers: {_count(result.controllers)} pod(s), {len(result.unhealthy_controllers)} unhealthy",
        _summary_line("Kustomizations", result.kustomizations),
        _summary_line("HelmReleases", result.helm_releases),
    ]
    if result.findings:
        lines += ["", "Findings:"] + _finding_lines(result.findings)
    if result.events:
        lines += ["", "Recent warning events:"] + _event_lines(result.events)
    lines += _unavailable_lines(result.unavailable)
    return "\n".join(lines)


@render.register
def _(result: FluxResourceTree) -> str:
    lines = [f"{result.root}: {result.verdict.value}"]
    if result.source is not None:
        lines.append(f"Source: {result.source.kind}/{result.source.name}")
    if result.chart:
        lines.append(f"Chart: {result.chart}")
    for dep in result.depends_on:
        lines.append(f"Depends on: {dep.namespace}/{dep.name}")
    if result.inventory_total:
        lines.append(f"Inventory ({result.inventory_total} objects):")
        lines += [f"  {entry}" for entry in result.inventory]
        hidden = result.inventory_total - len(result.inventory)
        if hidden > 0:
            lines.append(f"  ... and {hidden} more")
    return "\n".join(lines)


@render.register
def _(result: ResourceAllocation) -> str:
    def pct(value: float | None) -> str:
        return "" if value is None else f" ({value:.0f}% of allocatable)"

    lines = [
        f"Resource allocation in {_scope(result.namespace)}: {result.pods} active pod(s)",
        f"CPU requests: {format_cpu(result.cpu_requests)}{pct(result.cpu_request_percent)}",
        f"CPU limits: {format_cpu(result.cpu_limits)}",
        f"Memory requests: {format_bytes(result.memory_requests)}{pct(result.memory_request_percent)}",
        f"Memory limits: {format_bytes(result.memory_limits)}",
    ]
    if result.allocatable_cpu is not None and result.allocatable_memory is not None:
        lines.append(
            f"Allocatable: {format_cpu(result.allocatable_cpu)} CPU, {format_bytes(result.allocatable_memory)} memory"
        )
    if result.cpu_usage is not None and result.memory_usage is not None:
        lines.append(f"Usage: {format_cpu(result.cpu_usage)} CPU, {format_bytes(result.memory_usage)} memory")
    if result.findings:
        lines += ["", "Findings:"] + _finding_lines(result.findings)
    lines += _unavailable_lines(result.unavailable)
    return "\n".join(lines)


@render.register
def _(result: TopConsumers) -> str:
    shown = len(result.consumers)
    lines = [f"Top {shown} of {result.total_pods} pods by {result.sort_by} in {_scope(result.namespace)}:"]
    for usage in result.consumers:
        pod = usage.pod
        lines.append(f"  {pod.namespace}/{pod.name}: {format_cpu(usage.cpu)} CPU, {format_bytes(usage.memory)}")
    return "\n".join(lines)
