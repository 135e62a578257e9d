"""Diagnostics Coordinator: orchestrates collection, classification and aggregation.

Receives diagnostic requests from MCP/REST/CLI, fetches the resources each
operation needs concurrently through the injected ClusterClient, runs the
classifier registry over them and assembles a report dataclass.

Every operation follows the same shape:

    1. Fetch primary and optional sources concurrently; a failure cancels
       the fetches still in flight.
       A failed primary fetch raises; a failed optional fetch becomes an
       ``Unavailable`` entry on the report.
    2. Classify with the kind-indexed registry.
    3. Aggregate counts, histograms and scores.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, ParamSpec, TypeVar

from kubedoctor.analyst.aggregator import (
    SecurityScorer,
    pod_security_flags,
    scope_counts,
    severity_histogram,
)
from kubedoctor.collector.client import ClusterClient
from kubedoctor.collector.events import recent_warnings
from kubedoctor.collector.fetch import fetch_optional, fetch_primary, unavailable_of, value_or
from kubedoctor.config import parse_time_window
from kubedoctor.errors import FluxNotInstalledError, InvalidArgumentError, KubeDoctorError
from kubedoctor.graph.builder import dependency_graph, flux_topology, reconciler_tree
from kubedoctor.graph.connectivity import analyze_connectivity
from kubedoctor.graph.resolver import WORKLOAD_KINDS, extract_pod_template, resolve
from kubedoctor.k8s.pods import container_summary, pod_phase, pod_spec
from kubedoctor.k8s.quantity import format_bytes, format_cpu, parse_cpu, parse_memory
from kubedoctor.k8s.selectors import namespace_scope
from kubedoctor.models.analysis import (
    BindingEntry,
    ClusterDiagnosis,
    ConnectivityReport,
    DependencyStatus,
    FluxResourceTree,
    FluxSystemReport,
    NamespaceDiagnosis,
    NamespaceSecurityAudit,
    PodDiagnosis,
    PodSecurityReport,
    PodUsage,
    QuotaReport,
    RBACBindings,
    ReconcilerDiagnosis,
    ReconcilerEntry,
    ReconcilerListing,
    ReconcilerSummary,
    ReleaseSnapshot,
    ResourceAllocation,
    TopConsumers,
    UnhealthyPods,
    WorkloadDependencies,
)
from kubedoctor.models.config import CollectorConfig
from kubedoctor.models.outcome import Collected, Outcome, Unavailable
from kubedoctor.models.resources import (
    Classification,
    Finding,
    HealthVerdict,
    ResourceRef,
    Severity,
    parse_conditions,
)
from kubedoctor.observability.logging import bound_operation, get_logger
from kubedoctor.observability.metrics import diagnostics_duration_seconds, diagnostics_requests_total
from kubedoctor.rules.base import SECURITY, ClassifierRegistry
from kubedoctor.rules.r03_reconciler import RECONCILER_KINDS, condition_message, resource_verdict
from kubedoctor.rules.r07_resource_quota import quota_usages
from kubedoctor.rules.r09_rbac_binding import binding_subjects, role_label

_logger = get_logger("diagnostics_coordinator")

P = ParamSpec("P")
R = TypeVar("R")

FLUX_NAMESPACE = "flux-system"
KUBE_SYSTEM = "kube-system"

_POD_EVENT_LIMIT = 10
_INVENTORY_LIMIT = 20
_HISTORY_LIMIT = 5
_ALLOCATION_WARNING_PERCENT = 80
_DEFAULT_TOP_LIMIT = 10

WORKLOAD_ALIASES: dict[str, str] = {
    "deployment": "Deployment",
    "deployments": "Deployment",
    "deploy": "Deployment",
    "statefulset": "StatefulSet",
    "statefulsets": "StatefulSet",
    "sts": "StatefulSet",
    "daemonset": "DaemonSet",
    "daemonsets": "DaemonSet",
    "ds": "DaemonSet",
    "job": "Job",
    "jobs": "Job",
    "replicaset": "ReplicaSet",
    "replicasets": "ReplicaSet",
    "rs": "ReplicaSet",
    "pod": "Pod",
    "pods": "Pod",
    "po": "Pod",
}

FLUX_TREE_ALIASES: dict[str, str] = {
    "kustomization": "Kustomization",
    "kustomizations": "Kustomization",
    "ks": "Kustomization",
    "helmrelease": "HelmRelease",
    "helmreleases": "HelmRelease",
    "hr": "HelmRelease",
}

SORT_ALIASES: dict[str, str] = {"cpu": "cpu", "memory": "memory", "mem": "memory"}

FLUX_SOURCE_KINDS: tuple[str, ...] = ("GitRepository", "OCIRepository", "HelmRepository", "HelmChart", "Bucket")

SOURCE_TYPE_ALIASES: dict[str, str] = {
    "git": "GitRepository",
    "gitrepository": "GitRepository",
    "oci": "OCIRepository",
    "ocirepository": "OCIRepository",
    "helm": "HelmRepository",
    "helmrepository": "HelmRepository",
    "helmchart": "HelmChart",
    "bucket": "Bucket",
}

IMAGE_KINDS: tuple[str, ...] = ("ImageRepository", "ImagePolicy")


def _normalize(value: str, aliases: Mapping[str, str], what: str) -> str:
    normalized = aliases.get(value.strip().lower())
    if normalized is None:
        accepted = sorted(set(aliases.values()))
        raise InvalidArgumentError(f"Unsupported {what}: {value!r}. Accepted: {accepted}")
    return normalized


async def _gather(*calls: Awaitable[Any]) -> list[Any]:
    """Await calls concurrently. The first failure cancels the calls still in flight."""
    tasks = [asyncio.ensure_future(call) for call in calls]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _instrumented(operation: str) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Bind the operation name to log context and record request metrics."""

    def decorator(fn: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.monotonic()
            outcome = "ok"
            with bound_operation(operation):
                try:
                    return await fn(*args, **kwargs)
                except KubeDoctorError as exc:
                    outcome = exc.error_code
                    _logger.warning("diagnostic_failed", error_code=exc.error_code, error=str(exc))
                    raise
                except asyncio.CancelledError:
                    outcome = "cancelled"
                    raise
                finally:
                    elapsed = time.monotonic() - start
                    diagnostics_requests_total.labels(operation=operation, outcome=outcome).inc()
                    diagnostics_duration_seconds.labels(operation=operation).observe(elapsed)
                    _logger.debug("diagnostic_complete", outcome=outcome, duration_ms=int(elapsed * 1000))

        return wrapper

    return decorator


class DiagnosticsCoordinator:
    """Entry point for every diagnostic operation.

    Args:
        client:   ClusterClient used for every read. Injected, never global.
        registry: Classifier registry; its context carries the thresholds.
        config:   Collector bounds (timeout, caps, event window).
    """

    def __init__(
        self,
        client: ClusterClient,
        registry: ClassifierRegistry,
        config: CollectorConfig | None = None,
    ) -> None:
        self._client = client
        self._registry = registry
        self._config = config or CollectorConfig()
        self._thresholds = registry.context.thresholds
        self._event_window = parse_time_window(self._config.event_window)
        self._scorer = SecurityScorer()

    # ------------------------------------------------------------------
    # Fetch helpers
    # ------------------------------------------------------------------

    async def _primary(self, source: str, call: Awaitable[R]) -> R:
        return await fetch_primary(source, call, self._config.fetch_timeout_seconds)

    async def _optional(self, source: str, call: Awaitable[R]) -> Outcome[R]:
        return await fetch_optional(source, call, self._config.fetch_timeout_seconds)

    async def _fetch_reconciler(self, kind: str, namespace: str, name: str) -> Outcome[dict[str, Any]]:
        source = f"{kind}/{namespace}/{name}"
        if kind not in RECONCILER_KINDS:
            return Unavailable(source=source, reason=f"Unsupported kind {kind!r}", error_code="INVALID_ARGUMENT")
        return await self._optional(source, self._client.get(kind, namespace, name))

    # ------------------------------------------------------------------
    # Classification helpers
    # ------------------------------------------------------------------

    def _classify_all(self, kind: str, resources: list[dict[str, Any]], aspect: str = "health") -> list[Classification]:
        return [self._registry.classify(kind, resource, aspect) for resource in resources]

    def _unhealthy_pods(self, pods: list[dict[str, Any]]) -> list[Classification]:
        return [c for c in self._classify_all("Pod", pods) if c.verdict is HealthVerdict.UNHEALTHY]

    @staticmethod
    def _findings_of(*groups: tuple[Classification, ...] | list[Classification]) -> list[Finding]:
        return [finding for group in groups for classification in group for finding in classification.findings]

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @_instrumented("diagnose_pod")
    async def diagnose_pod(self, namespace: str, name: str) -> PodDiagnosis:
        pod, events_out = await _gather(
            self._primary("Pod", self._client.get("Pod", namespace, name)),
            self._optional(
                "Event",
                self._client.list("Event", namespace, field_selector=f"involvedObject.name={name}"),
            ),
        )
        classification = self._registry.classify("Pod", pod)
        return PodDiagnosis(
            pod=classification.subject,
            phase=classification.phase,
            node_name=str(pod_spec(pod).get("nodeName") or ""),
            containers=container_summary(pod),
            classification=classification,
            events=recent_warnings(value_or(events_out, []), self._event_window, _POD_EVENT_LIMIT),
            unavailable=unavailable_of(events_out),
        )

    @_instrumented("diagnose_namespace")
    async def diagnose_namespace(self, namespace: str) -> NamespaceDiagnosis:
        pods, deployments_out, events_out, pvcs_out = await _gather(
            self._primary("Pod", self._client.list("Pod", namespace)),
            self._optional("Deployment", self._client.list("Deployment", namespace)),
            self._optional("Event", self._client.list("Event", namespace)),
            self._optional("PersistentVolumeClaim", self._client.list("PersistentVolumeClaim", namespace)),
        )

        unhealthy = self._unhealthy_pods(pods)[: self._config.max_pods]
        workloads = [c for c in self._classify_all("Deployment", value_or(deployments_out, [])) if not c.healthy]
        pvcs = [c for c in self._classify_all("PersistentVolumeClaim", value_or(pvcs_out, [])) if not c.healthy]

        return NamespaceDiagnosis(
            namespace=namespace,
            counts=scope_counts(pods, self._thresholds.restart_threshold),
            unhealthy_pods=tuple(unhealthy),
            workloads=tuple(workloads),
            pvcs=tuple(pvcs),
            events=recent_warnings(value_or(events_out, []), self._event_window, self._config.max_events),
            histogram=severity_histogram(self._findings_of(unhealthy, workloads, pvcs)),
            unavailable=unavailable_of(deployments_out, events_out, pvcs_out),
        )

    @_instrumented("diagnose_cluster")
    async def diagnose_cluster(self) -> ClusterDiagnosis:
        nodes, pods, events_out, kube_system_out = await _gather(
            self._primary("Node", self._client.list("Node")),
            self._primary("Pod", self._client.list("Pod")),
            self._optional("Event", self._client.list("Event")),
            self._optional("kube-system Pod", self._client.list("Pod", KUBE_SYSTEM)),
        )

        node_results = self._classify_all("Node", nodes)
        unhealthy = self._unhealthy_pods(pods)[: self._config.max_pods]
        kube_system = self._unhealthy_pods(value_or(kube_system_out, []))

        return ClusterDiagnosis(
            nodes=tuple(node_results),
            counts=scope_counts(pods, self._thresholds.restart_threshold),
            unhealthy_pods=tuple(unhealthy),
            kube_system=tuple(kube_system),
            events=recent_warnings(value_or(events_out, []), self._event_window, self._config.max_events),
            histogram=severity_histogram(self._findings_of(node_results, unhealthy)),
            unavailable=unavailable_of(events_out, kube_system_out),
        )

    @_instrumented("find_unhealthy_pods")
    async def find_unhealthy_pods(self, namespace: str | None = None) -> UnhealthyPods:
        scope = namespace_scope(namespace)
        pods = await self._primary("Pod", self._client.list("Pod", scope))
        unhealthy = self._unhealthy_pods(pods)
        return UnhealthyPods(
            namespace=scope,
            total_pods=len(pods),
            pods=tuple(unhealthy[: self._config.max_pods]),
            truncated=len(unhealthy) > self._config.max_pods,
        )

    # ------------------------------------------------------------------
    # Security
    # ------------------------------------------------------------------

    @_instrumented("analyze_pod_security")
    async def analyze_pod_security(self, namespace: str, name: str | None = None) -> PodSecurityReport:
        if name:
            pods = [await self._primary("Pod", self._client.get("Pod", namespace, name))]
        else:
            pods = (await self._primary("Pod", self._client.list("Pod", namespace)))[: self._config.max_pods]

        results = self._classify_all("Pod", pods, SECURITY)
        return PodSecurityReport(
            namespace=namespace,
            results=tuple(results),
            histogram=severity_histogram(self._findings_of(results)),
        )

    @_instrumented("audit_namespace_security")
    async def audit_namespace_security(self, namespace: str) -> NamespaceSecurityAudit:
        netpols_out, pdbs_out, pods_out, bindings_out, quotas_out = await _gather(
            self._optional("NetworkPolicy", self._client.list("NetworkPolicy", namespace)),
            self._optional("PodDisruptionBudget", self._client.list("PodDisruptionBudget", namespace)),
            self._optional("Pod", self._client.list("Pod", namespace)),
            self._optional("RoleBinding", self._client.list("RoleBinding", namespace)),
            self._optional("ResourceQuota", self._client.list("ResourceQuota", namespace)),
        )
        subject = ResourceRef("Namespace", "", namespace)
        findings: list[Finding] = []

        netpol_count = len(netpols_out.value) if isinstance(netpols_out, Collected) else None
        if netpol_count == 0:
            findings.append(
                Finding(
                    severity=Severity.WARNING,
                    subject=subject,
                    message="No network policies - all pod traffic is unrestricted",
                    suggested_action="Add a default-deny NetworkPolicy and allow required traffic explicitly",
                    category="network_policy",
                )
            )

        pdb_count: int | None = None
        if isinstance(pdbs_out, Collected):
            pdb_count = len(pdbs_out.value)
            if pdb_count == 0:
                findings.append(
                    Finding(
                        severity=Severity.INFO,
                        subject=subject,
                        message="No PDBs - workloads have no disruption protection",
                        category="pdb",
                    )
                )
            findings.extend(self._findings_of(self._classify_all("PodDisruptionBudget", pdbs_out.value)))

        pod_count = privileged = root = no_context = None
        if isinstance(pods_out, Collected):
            flags = [pod_security_flags(pod) for pod in pods_out.value]
            pod_count = len(flags)
            privileged = sum(1 for f in flags if f.privileged)
            root = sum(1 for f in flags if f.root)
            no_context = sum(1 for f in flags if f.no_security_context)
            if privileged:
                findings.append(
                    Finding(
                        severity=Severity.CRITICAL,
                        subject=subject,
                        message=f"{privileged} pod(s) running in privileged mode",
                        category="privileged",
                    )
                )
            if root:
                findings.append(
                    Finding(
                        severity=Severity.WARNING,
                        subject=subject,
                        message=f"{root} pod(s) running as root",
                        category="run_as_root",
                    )
                )
            if no_context:
                findings.append(
                    Finding(
                        severity=Severity.INFO,
                        subject=subject,
                        message=f"{no_context} pod(s) with no SecurityContext",
                        category="no_security_context",
                    )
                )

        binding_count = len(bindings_out.value) if isinstance(bindings_out, Collected) else None

        quota_count = len(quotas_out.value) if isinstance(quotas_out, Collected) else None
        if quota_count == 0:
            findings.append(
                Finding(
                    severity=Severity.INFO,
                    subject=subject,
                    message="No resource quotas - resource consumption is unrestricted",
                    category="quota",
                )
            )

        score, deductions = self._scorer.score(
            network_policies=netpol_count,
            pdbs=pdb_count,
            quotas=quota_count,
            privileged_pods=privileged,
            root_pods=root,
            no_security_context_pods=no_context,
        )
        _logger.info("namespace_audit_scored", namespace=namespace, score=score.value, grade=score.grade)

        return NamespaceSecurityAudit(
            namespace=namespace,
            score=score,
            deductions=deductions,
            network_policies=netpol_count,
            pdbs=pdb_count,
            quotas=quota_count,
            role_bindings=binding_count,
            pods=pod_count,
            privileged_pods=privileged,
            root_pods=root,
            no_security_context_pods=no_context,
            findings=tuple(findings),
            unavailable=unavailable_of(netpols_out, pdbs_out, pods_out, bindings_out, quotas_out),
        )

    @_instrumented("list_rbac_bindings")
    async def list_rbac_bindings(self, namespace: str, subject: str | None = None) -> RBACBindings:
        """Role grants reaching ``namespace``, one row per subject.

        ``subject`` is a case-insensitive substring of the subject name. Only
        the kept subjects of a binding are classified, so findings follow the
        filter.
        """
        role_bindings, cluster_out = await _gather(
            self._primary("RoleBinding", self._client.list("RoleBinding", namespace)),
            self._optional("ClusterRoleBinding", self._client.list("ClusterRoleBinding")),
        )
        needle = (subject or "").strip().lower()

        rows: list[BindingEntry] = []
        classifications: list[Classification] = []
        for kind, scope, bindings in (
            ("RoleBinding", "Namespace", role_bindings),
            ("ClusterRoleBinding", "Cluster", value_or(cluster_out, [])),
        ):
            for binding in bindings:
                kept = [
                    s
                    for s in binding_subjects(binding)
                    if _subject_selected(s, namespace, needle, cluster_scoped=kind == "ClusterRoleBinding")
                ]
                if not kept:
                    continue
                classification = self._registry.classify(kind, {**binding, "subjects": kept}, SECURITY)
                classifications.append(classification)
                role = role_label(binding)
                rows.extend(
                    BindingEntry(
                        binding=classification.subject,
                        scope=scope,
                        role=role,
                        subject_kind=str(s.get("kind") or ""),
                        subject_name=str(s.get("name") or ""),
                        subject_namespace=str(s.get("namespace") or ""),
                    )
                    for s in kept
                )

        findings = self._findings_of(classifications)
        return RBACBindings(
            namespace=namespace,
            subject_filter=needle,
            bindings=tuple(rows),
            findings=tuple(findings),
            histogram=severity_histogram(findings),
            unavailable=unavailable_of(cluster_out),
        )

    # ------------------------------------------------------------------
    # Dependencies and connectivity
    # ------------------------------------------------------------------

    @_instrumented("workload_dependencies")
    async def workload_dependencies(self, namespace: str, name: str, kind: str = "Deployment") -> WorkloadDependencies:
        kind = _normalize(kind, WORKLOAD_ALIASES, "workload kind")
        if kind not in WORKLOAD_KINDS:
            raise InvalidArgumentError(f"Unsupported workload kind: {kind}")

        workload, services_out = await _gather(
            self._primary(kind, self._client.get(kind, namespace, name)),
            self._optional("Service", self._client.list("Service", namespace)),
        )
        spec, labels = extract_pod_template(kind, workload)
        deps = resolve(ResourceRef(kind, namespace, name), spec, labels, value_or(services_out, []))
        return WorkloadDependencies(
            dependencies=deps,
            graph=dependency_graph(deps),
            unavailable=unavailable_of(services_out),
        )

    @_instrumented("analyze_pod_connectivity")
    async def analyze_pod_connectivity(self, namespace: str, pod_name: str) -> ConnectivityReport:
        pod, policies = await _gather(
            self._primary("Pod", self._client.get("Pod", namespace, pod_name)),
            self._primary("NetworkPolicy", self._client.list("NetworkPolicy", namespace)),
        )
        return analyze_connectivity(pod, policies)

    @_instrumented("check_resource_quotas")
    async def check_resource_quotas(self, namespace: str | None = None) -> QuotaReport:
        scope = namespace_scope(namespace)
        quotas = await self._primary("ResourceQuota", self._client.list("ResourceQuota", scope))
        usages = [usage for quota in quotas for usage in quota_usages(quota)]
        results = self._classify_all("ResourceQuota", quotas)
        return QuotaReport(namespace=scope, usages=tuple(usages), findings=tuple(self._findings_of(results)))

    # ------------------------------------------------------------------
    # GitOps
    # ------------------------------------------------------------------

    async def _dependency_chain(
        self,
        subject: ResourceRef,
        source_ref: Mapping[str, Any] | None,
        depends_on: list[Mapping[str, Any]],
    ) -> tuple[DependencyStatus | None, tuple[DependencyStatus, ...], list[Finding]]:
        """Fetch the source and every dependsOn entry concurrently and judge them."""
        namespace = subject.namespace
        source: ResourceRef | None = None
        if source_ref and source_ref.get("name"):
            source = ResourceRef(
                kind=str(source_ref.get("kind") or ""),
                namespace=str(source_ref.get("namespace") or namespace),
                name=str(source_ref["name"]),
            )
        deps = [
            ResourceRef(subject.kind, str(d.get("namespace") or namespace), str(d.get("name") or ""))
            for d in depends_on
            if d.get("name")
        ]

        refs = ([source] if source else []) + deps
        calls = [self._fetch_reconciler(ref.kind, ref.namespace, ref.name) for ref in refs]
        outcomes = list(await _gather(*calls))

        findings: list[Finding] = []
        source_status: DependencyStatus | None = None
        if source is not None:
            outcome = outcomes.pop(0)
            label = f"{source.kind}/{source.name}"
            if isinstance(outcome, Collected):
                verdict = resource_verdict(outcome.value)
                source_status = DependencyStatus(ref=source, verdict=verdict)
                if verdict is not HealthVerdict.READY:
                    message = condition_message(
                        parse_conditions((outcome.value.get("status") or {}).get("conditions")), "Ready"
                    )
                    findings.append(
                        Finding(
                            severity=Severity.WARNING,
                            subject=subject,
                            message=f"Source {label} is {verdict.value}" + (f": {message}" if message else ""),
                            category="source",
                        )
                    )
            else:
                source_status = DependencyStatus(ref=source, verdict=None)
                findings.append(
                    Finding(
                        severity=Severity.WARNING,
                        subject=subject,
                        message=f"Could not check source {label}",
                        details=(outcome.reason,),
                        category="source",
                    )
                )

        dep_statuses: list[DependencyStatus] = []
        for ref, outcome in zip(deps, outcomes, strict=True):
            if isinstance(outcome, Collected):
                verdict = resource_verdict(outcome.value)
                dep_statuses.append(DependencyStatus(ref=ref, verdict=verdict))
                if verdict is not HealthVerdict.READY:
                    findings.append(
                        Finding(
                            severity=Severity.WARNING,
                            subject=subject,
                            message=f"Dependency {ref.name} is {verdict.value}",
                            category="depends_on",
                        )
                    )
            else:
                dep_statuses.append(DependencyStatus(ref=ref, verdict=None))
                findings.append(
                    Finding(
                        severity=Severity.WARNING,
                        subject=subject,
                        message=f"Could not check dependency {ref.name}",
                        details=(outcome.reason,),
                        category="depends_on",
                    )
                )
        return source_status, tuple(dep_statuses), findings

    @_instrumented("diagnose_kustomization")
    async def diagnose_kustomization(self, namespace: str, name: str) -> ReconcilerDiagnosis:
        ks = await self._primary("Kustomization", self._client.get("Kustomization", namespace, name))
        classification = self._registry.classify("Kustomization", ks)
        spec = ks.get("spec") or {}
        status = ks.get("status") or {}

        source, depends_on, chain_findings = await self._dependency_chain(
            classification.subject, spec.get("sourceRef"), list(spec.get("dependsOn") or [])
        )
        return ReconcilerDiagnosis(
            subject=classification.subject,
            verdict=classification.verdict,
            suspended=bool(spec.get("suspend")),
            findings=classification.findings + tuple(chain_findings),
            source=source,
            depends_on=depends_on,
            revision=str(status.get("lastAppliedRevision") or ""),
            path=str(spec.get("path") or "./"),
            created=str((ks.get("metadata") or {}).get("creationTimestamp") or ""),
        )

    @_instrumented("diagnose_helm_release")
    async def diagnose_helm_release(self, namespace: str, name: str) -> ReconcilerDiagnosis:
        hr = await self._primary("HelmRelease", self._client.get("HelmRelease", namespace, name))
        classification = self._registry.classify("HelmRelease", hr)
        spec = hr.get("spec") or {}
        status = hr.get("status") or {}
        chart_spec = (spec.get("chart") or {}).get("spec") or {}
        chart_ref = spec.get("chartRef") or {}

        source, depends_on, chain_findings = await self._dependency_chain(
            classification.subject,
            chart_spec.get("sourceRef") or chart_ref or None,
            list(spec.get("dependsOn") or []),
        )
        history = tuple(
            ReleaseSnapshot(
                chart_version=str(snap.get("chartVersion") or "?"),
                status=str(snap.get("status") or ""),
                app_version=str(snap.get("appVersion") or ""),
            )
            for snap in (status.get("history") or [])[:_HISTORY_LIMIT]
        )
        return ReconcilerDiagnosis(
            subject=classification.subject,
            verdict=classification.verdict,
            suspended=bool(spec.get("suspend")),
            findings=classification.findings + tuple(chain_findings),
            source=source,
            depends_on=depends_on,
            revision=str(status.get("lastAppliedRevision") or ""),
            chart=str(chart_spec.get("chart") or chart_ref.get("name") or ""),
            chart_version=str(chart_spec.get("version") or ""),
            created=str((hr.get("metadata") or {}).get("creationTimestamp") or ""),
            history=history,
        )

    @staticmethod
    def _summarize_reconcilers(resources: list[dict[str, Any]]) -> ReconcilerSummary:
        verdicts = [resource_verdict(r) for r in resources]
        return ReconcilerSummary(
            total=len(verdicts),
            ready=sum(1 for v in verdicts if v is HealthVerdict.READY),
            failed=sum(1 for v in verdicts if v in (HealthVerdict.FAILED, HealthVerdict.STALLED)),
            suspended=sum(1 for v in verdicts if v is HealthVerdict.SUSPENDED),
        )

    @_instrumented("diagnose_flux_system")
    async def diagnose_flux_system(self) -> FluxSystemReport:
        pods_out, ks_out, hr_out, events_out = await _gather(
            self._optional("flux-system Pod", self._client.list("Pod", FLUX_NAMESPACE)),
            self._optional("Kustomization", self._client.list("Kustomization")),
            self._optional("HelmRelease", self._client.list("HelmRelease")),
            self._optional("flux-system Event", self._client.list("Event", FLUX_NAMESPACE)),
        )
        if all(
            isinstance(o, Unavailable) and o.error_code == FluxNotInstalledError.error_code for o in (ks_out, hr_out)
        ):
            raise FluxNotInstalledError(
                "Flux toolkit APIs are not served by this cluster. Install with: flux install",
                namespace=FLUX_NAMESPACE,
            )

        subject = ResourceRef("Namespace", "", FLUX_NAMESPACE)
        findings: list[Finding] = []

        controllers: int | None = None
        unhealthy: list[Classification] = []
        if isinstance(pods_out, Collected):
            controllers = len(pods_out.value)
            if controllers == 0:
                findings.append(
                    Finding(
                        severity=Severity.WARNING,
                        subject=subject,
                        message="No pods in flux-system namespace - Flux may not be installed",
                        category="flux_controllers",
                    )
                )
            unhealthy = self._unhealthy_pods(pods_out.value)
            for controller in unhealthy:
                findings.append(
                    Finding(
                        severity=Severity.CRITICAL,
                        subject=controller.subject,
                        message=f"Flux controller {controller.subject.name}: {controller.phase}",
                        category="flux_controllers",
                    )
                )

        ks_summary = self._summarize_reconcilers(ks_out.value) if isinstance(ks_out, Collected) else None
        hr_summary = self._summarize_reconcilers(hr_out.value) if isinstance(hr_out, Collected) else None
        for label, summary in (("kustomizations", ks_summary), ("helm releases", hr_summary)):
            if summary is not None and summary.failed:
                findings.append(
                    Finding(
                        severity=Severity.WARNING,
                        subject=subject,
                        message=f"{summary.failed} {label} are not ready",
                        category="reconciler_state",
                    )
                )

        return FluxSystemReport(
            controllers=controllers,
            unhealthy_controllers=tuple(unhealthy),
            kustomizations=ks_summary,
            helm_releases=hr_summary,
            events=recent_warnings(value_or(events_out, []), self._event_window, self._config.max_events),
            findings=tuple(findings),
            graph=flux_topology(ks_summary, hr_summary),
            unavailable=unavailable_of(pods_out, ks_out, hr_out, events_out),
        )

    @_instrumented("flux_resource_tree")
    async def flux_resource_tree(self, namespace: str, name: str, kind: str = "Kustomization") -> FluxResourceTree:
        kind = _normalize(kind, FLUX_TREE_ALIASES, "Flux resource kind")
        resource = await self._primary(kind, self._client.get(kind, namespace, name))
        spec = resource.get("spec") or {}
        status = resource.get("status") or {}
        root = ResourceRef.of(kind, resource)
        verdict = resource_verdict(resource)

        if kind == "Kustomization":
            source_ref = spec.get("sourceRef") or {}
            chart = ""
        else:
            chart_spec = (spec.get("chart") or {}).get("spec") or {}
            source_ref = chart_spec.get("sourceRef") or spec.get("chartRef") or {}
            chart = str(chart_spec.get("chart") or "")

        source = (
            ResourceRef(
                str(source_ref.get("kind") or ""),
                str(source_ref.get("namespace") or namespace),
                str(source_ref["name"]),
            )
            if source_ref.get("name")
            else None
        )
        depends_on = tuple(
            ResourceRef(kind, str(d.get("namespace") or namespace), str(d["name"]))
            for d in spec.get("dependsOn") or []
            if d.get("name")
        )
        entries = [str(e.get("id") or "") for e in (status.get("inventory") or {}).get("entries") or []]

        return FluxResourceTree(
            root=root,
            verdict=verdict,
            source=source,
            chart=chart,
            depends_on=depends_on,
            inventory=tuple(entries[:_INVENTORY_LIMIT]),
            inventory_total=len(entries),
            graph=reconciler_tree(root, verdict, source, depends_on),
        )

    async def _reconciler_listing(
        self,
        kinds: tuple[str, ...],
        namespace: str | None,
        *,
        best_effort: bool = False,
        source_type: str = "",
    ) -> ReconcilerListing:
        """List and classify reconcilers of several kinds.

        With ``best_effort`` a kind that cannot be listed becomes an
        ``Unavailable`` entry; otherwise any failure raises.
        """
        scope = namespace_scope(namespace)
        outcomes: list[Outcome[list[dict[str, Any]]]]
        if best_effort:
            outcomes = await _gather(*(self._optional(kind, self._client.list(kind, scope)) for kind in kinds))
            if all(isinstance(o, Unavailable) and o.error_code == FluxNotInstalledError.error_code for o in outcomes):
                raise FluxNotInstalledError(
                    "Flux source APIs are not served by this cluster. Install with: flux install"
                )
        else:
            listed = await _gather(*(self._primary(kind, self._client.list(kind, scope)) for kind in kinds))
            outcomes = [Collected(kind, items) for kind, items in zip(kinds, listed, strict=True)]

        entries: list[ReconcilerEntry] = []
        resources: list[dict[str, Any]] = []
        for kind, outcome in zip(kinds, outcomes, strict=True):
            for resource in value_or(outcome, []):
                entries.append(_reconciler_entry(self._registry.classify(kind, resource), resource))
                resources.append(resource)

        return ReconcilerListing(
            namespace=scope,
            kinds=kinds,
            entries=tuple(entries),
            summary=self._summarize_reconcilers(resources),
            histogram=severity_histogram(self._findings_of([e.classification for e in entries])),
            source_type=source_type,
            unavailable=unavailable_of(*outcomes),
        )

    @_instrumented("list_flux_kustomizations")
    async def list_flux_kustomizations(self, namespace: str | None = None) -> ReconcilerListing:
        return await self._reconciler_listing(("Kustomization",), namespace)

    @_instrumented("list_flux_helm_releases")
    async def list_flux_helm_releases(self, namespace: str | None = None) -> ReconcilerListing:
        return await self._reconciler_listing(("HelmRelease",), namespace)

    @_instrumented("list_flux_sources")
    async def list_flux_sources(
        self, namespace: str | None = None, source_type: str | None = None
    ) -> ReconcilerListing:
        """Every Flux source kind, or one kind when ``source_type`` is given (git, oci, helm, helmchart, bucket)."""
        if not source_type:
            return await self._reconciler_listing(FLUX_SOURCE_KINDS, namespace, best_effort=True)
        kind = _normalize(source_type, SOURCE_TYPE_ALIASES, "source type")
        return await self._reconciler_listing((kind,), namespace, best_effort=True, source_type=kind)

    @_instrumented("list_flux_image_policies")
    async def list_flux_image_policies(self, namespace: str | None = None) -> ReconcilerListing:
        return await self._reconciler_listing(IMAGE_KINDS, namespace)

    # ------------------------------------------------------------------
    # Capacity
    # ------------------------------------------------------------------

    @_instrumented("analyze_resource_allocation")
    async def analyze_resource_allocation(self, namespace: str | None = None) -> ResourceAllocation:
        scope = namespace_scope(namespace)
        pods, nodes_out, metrics_out = await _gather(
            self._primary("Pod", self._client.list("Pod", scope)),
            self._optional("Node", self._client.list("Node")),
            self._optional("PodMetrics", self._client.get_metrics("pod", scope)),
        )

        active = [p for p in pods if pod_phase(p) not in ("Succeeded", "Failed")]
        cpu_requests = cpu_limits = memory_requests = memory_limits = 0
        for pod in active:
            for container in pod_spec(pod).get("containers") or []:
                resources = container.get("resources") or {}
                requests = resources.get("requests") or {}
                limits = resources.get("limits") or {}
                cpu_requests += parse_cpu(requests.get("cpu"))
                memory_requests += parse_memory(requests.get("memory"))
                cpu_limits += parse_cpu(limits.get("cpu"))
                memory_limits += parse_memory(limits.get("memory"))

        allocatable_cpu = allocatable_memory = None
        if isinstance(nodes_out, Collected):
            allocatable_cpu = sum(
                parse_cpu(((n.get("status") or {}).get("allocatable") or {}).get("cpu")) for n in nodes_out.value
            )
            allocatable_memory = sum(
                parse_memory(((n.get("status") or {}).get("allocatable") or {}).get("memory")) for n in nodes_out.value
            )

        cpu_usage = memory_usage = None
        if isinstance(metrics_out, Collected):
            usages = [_pod_usage(item) for item in metrics_out.value]
            cpu_usage = sum(u.cpu for u in usages)
            memory_usage = sum(u.memory for u in usages)

        report = ResourceAllocation(
            namespace=scope,
            pods=len(active),
            cpu_requests=cpu_requests,
            cpu_limits=cpu_limits,
            memory_requests=memory_requests,
            memory_limits=memory_limits,
            allocatable_cpu=allocatable_cpu,
            allocatable_memory=allocatable_memory,
            cpu_usage=cpu_usage,
            memory_usage=memory_usage,
            unavailable=unavailable_of(nodes_out, metrics_out),
        )

        subject = ResourceRef("Namespace", "", scope or "")
        findings: list[Finding] = []
        cpu_pct = report.cpu_request_percent
        if cpu_pct is not None and cpu_pct > _ALLOCATION_WARNING_PERCENT:
            findings.append(
                Finding(
                    severity=Severity.WARNING,
                    subject=subject,
                    message=(
                        f"CPU requests at {cpu_pct:.0f}% of allocatable "
                        f"({format_cpu(cpu_requests)}/{format_cpu(allocatable_cpu or 0)})"
                    ),
                    category="allocation",
                )
            )
        mem_pct = report.memory_request_percent
        if mem_pct is not None and mem_pct > _ALLOCATION_WARNING_PERCENT:
            findings.append(
                Finding(
                    severity=Severity.WARNING,
                    subject=subject,
                    message=(
                        f"Memory requests at {mem_pct:.0f}% of allocatable "
                        f"({format_bytes(memory_requests)}/{format_bytes(allocatable_memory or 0)})"
                    ),
                    category="allocation",
                )
            )
        if not findings:
            return report
        return dataclasses.replace(report, findings=tuple(findings))

    @_instrumented("top_consumers")
    async def top_consumers(
        self,
        namespace: str | None = None,
        resource: str = "cpu",
        limit: int = _DEFAULT_TOP_LIMIT,
    ) -> TopConsumers:
        sort_by = _normalize(resource, SORT_ALIASES, "sort resource")
        if limit < 1:
            raise InvalidArgumentError(f"limit must be at least 1, got: {limit}")
        scope = namespace_scope(namespace)

        items = await self._primary("PodMetrics", self._client.get_metrics("pod", scope))
        usages = [_pod_usage(item) for item in items]
        usages.sort(key=lambda u: u.cpu if sort_by == "cpu" else u.memory, reverse=True)
        return TopConsumers(namespace=scope, sort_by=sort_by, consumers=tuple(usages[:limit]), total_pods=len(usages))


def _pod_usage(item: Mapping[str, Any]) -> PodUsage:
    """Sum container usage of one metrics.k8s.io PodMetrics item."""
    cpu = memory = 0
    for container in item.get("containers") or []:
        usage = container.get("usage") or {}
        cpu += parse_cpu(usage.get("cpu"))
        memory += parse_memory(usage.get("memory"))
    return PodUsage(pod=ResourceRef.of("Pod", item), cpu=cpu, memory=memory)


def _ref_label(ref: Mapping[str, Any]) -> str:
    if not ref.get("name"):
        return ""
    return f"{ref.get('kind') or ''}/{ref['name']}"


def helm_remediation(spec: Mapping[str, Any]) -> str:
    """``install:N, upgrade:M`` from the remediation retries, or ``default`` when neither is set."""
    parts = []
    for action in ("install", "upgrade"):
        retries = ((spec.get(action) or {}).get("remediation") or {}).get("retries")
        if retries is not None:
            parts.append(f"{action}:{retries}")
    return ", ".join(parts) or "default"


def _reconciler_entry(classification: Classification, resource: Mapping[str, Any]) -> ReconcilerEntry:
    kind = classification.subject.kind
    spec = resource.get("spec") or {}
    status = resource.get("status") or {}
    columns: dict[str, str] = {}

    if kind == "Kustomization":
        columns = {
            "source": _ref_label(spec.get("sourceRef") or {}),
            "path": str(spec.get("path") or "./"),
            "revision": str(status.get("lastAppliedRevision") or ""),
        }
    elif kind == "HelmRelease":
        chart_spec = (spec.get("chart") or {}).get("spec") or {}
        chart_ref = spec.get("chartRef") or {}
        columns = {
            "source": _ref_label(chart_spec.get("sourceRef") or chart_ref),
            "chart": str(chart_spec.get("chart") or chart_ref.get("name") or ""),
            "chart_version": str(chart_spec.get("version") or ""),
            "revision": str(status.get("lastAppliedRevision") or ""),
            "remediation": helm_remediation(spec),
        }
    elif kind in FLUX_SOURCE_KINDS:
        url = spec.get("url")
        if kind == "HelmChart":
            url = spec.get("chart")
        elif kind == "Bucket":
            url = spec.get("endpoint")
        columns = {
            "url": str(url or ""),
            "revision": str((status.get("artifact") or {}).get("revision") or ""),
        }
    elif kind == "ImageRepository":
        latest_tags = (status.get("lastScanResult") or {}).get("latestTags") or []
        columns = {"url": str(spec.get("image") or ""), "latest": str(latest_tags[0]) if latest_tags else ""}
    elif kind == "ImagePolicy":
        latest_ref = status.get("latestRef") or {}
        latest = f"{latest_ref['name']}:{latest_ref.get('tag') or ''}" if latest_ref.get("name") else ""
        repository = (spec.get("imageRepositoryRef") or {}).get("name")
        columns = {
            "source": f"ImageRepository/{repository}" if repository else "",
            "latest": latest or str(status.get("latestImage") or ""),
        }

    return ReconcilerEntry(
        classification=classification,
        suspended=bool(spec.get("suspend")),
        created=str((resource.get("metadata") or {}).get("creationTimestamp") or ""),
        **columns,
    )


def _subject_selected(subject: Mapping[str, Any], namespace: str, needle: str, cluster_scoped: bool) -> bool:
    if needle and needle not in str(subject.get("name") or "").lower():
        return False
    # A cluster-wide grant to another namespace's ServiceAccount does not reach this namespace.
    if cluster_scoped and subject.get("kind") == "ServiceAccount":
        subject_namespace = subject.get("namespace")
        if subject_namespace and subject_namespace != namespace:
            return False
    return True
