"""Tests for DiagnosticsCoordinator over an in-memory cluster."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fakes import (
    FakeClusterClient,
    make_binding,
    make_container_status,
    make_event,
    make_node,
    make_pod,
    make_reconciler,
    meta,
)

from kubedoctor.analyst.coordinator import DiagnosticsCoordinator
from kubedoctor.errors import (
    FluxNotInstalledError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    UnavailableError,
)
from kubedoctor.models.analysis import ReconcilerSummary
from kubedoctor.models.config import CollectorConfig
from kubedoctor.models.resources import HealthVerdict, Severity
from kubedoctor.rules import build_registry


def _make_coordinator(
    resources: dict[str, list[dict[str, Any]]] | None = None,
    errors: dict[str, Exception] | None = None,
    metrics: dict[str, list[dict[str, Any]]] | None = None,
    **config: Any,
) -> tuple[DiagnosticsCoordinator, FakeClusterClient]:
    client = FakeClusterClient(resources, errors, metrics)
    return DiagnosticsCoordinator(client, build_registry(), CollectorConfig(**config)), client


def _crashing_pod(name: str = "api-0", namespace: str = "default") -> dict[str, Any]:
    return make_pod(
        name,
        namespace,
        statuses=[make_container_status(ready=False, restarts=12, waiting="CrashLoopBackOff", last_reason="OOMKilled")],
    )


def _pod_metrics(name: str, cpu: str, memory: str, namespace: str = "default") -> dict[str, Any]:
    return {
        "metadata": meta(name, namespace),
        "containers": [{"name": "app", "usage": {"cpu": cpu, "memory": memory}}],
    }


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestDiagnosePod:
    @pytest.mark.asyncio
    async def test_crash_looping_pod_with_events(self) -> None:
        coordinator, client = _make_coordinator(
            {
                "Pod": [_crashing_pod()],
                "Event": [
                    make_event("api-0", "BackOff", "Back-off restarting failed container"),
                    make_event("other", "BackOff", "not this pod"),
                ],
            }
        )
        report = await coordinator.diagnose_pod("default", "api-0")
        assert not report.healthy
        assert report.phase == "CrashLoopBackOff"
        assert report.node_name == "node-1"
        assert report.containers.restarts == 12
        assert [e.involved.name for e in report.events] == ["api-0"]
        assert report.unavailable == ()
        assert ("list", "Event", "default") in client.calls

    @pytest.mark.asyncio
    async def test_missing_pod_raises(self) -> None:
        coordinator, _ = _make_coordinator({"Pod": []})
        with pytest.raises(NotFoundError, match="default/ghost"):
            await coordinator.diagnose_pod("default", "ghost")

    @pytest.mark.asyncio
    async def test_forbidden_events_degrade(self) -> None:
        coordinator, _ = _make_coordinator(
            {"Pod": [make_pod()]},
            errors={"Event": ForbiddenError("Permission denied reading Event", kind="Event")},
        )
        report = await coordinator.diagnose_pod("default", "web-0")
        assert report.healthy
        assert report.events == ()
        assert [(u.source, u.error_code) for u in report.unavailable] == [("Event", "FORBIDDEN")]


class TestDiagnoseNamespace:
    @pytest.mark.asyncio
    async def test_collects_unhealthy_resources(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "Pod": [make_pod("web-0"), _crashing_pod(), make_pod("elsewhere", "other")],
                "Deployment": [
                    {"metadata": meta("api"), "spec": {"replicas": 2}, "status": {"availableReplicas": 0}},
                    {"metadata": meta("web"), "spec": {"replicas": 1}, "status": {"availableReplicas": 1}},
                ],
                "PersistentVolumeClaim": [{"metadata": meta("data"), "status": {"phase": "Pending"}}],
                "Event": [make_event("api-0", "BackOff", "restarting")],
            }
        )
        report = await coordinator.diagnose_namespace("default")
        assert report.counts.total == 2
        assert report.counts.unhealthy == 1
        assert [c.subject.name for c in report.unhealthy_pods] == ["api-0"]
        assert [c.subject.name for c in report.workloads] == ["api"]
        assert [c.subject.name for c in report.pvcs] == ["data"]
        assert len(report.events) == 1
        assert sum(report.histogram.values()) >= 3

    @pytest.mark.asyncio
    async def test_optional_sources_reported_unavailable(self) -> None:
        denied = ForbiddenError("denied", kind="Deployment")
        coordinator, _ = _make_coordinator({"Pod": [make_pod()]}, errors={"Deployment": denied})
        report = await coordinator.diagnose_namespace("default")
        assert report.workloads == ()
        assert [u.source for u in report.unavailable] == ["Deployment"]

    @pytest.mark.asyncio
    async def test_primary_failure_propagates(self) -> None:
        coordinator, _ = _make_coordinator(errors={"Pod": ForbiddenError("denied", kind="Pod")})
        with pytest.raises(ForbiddenError):
            await coordinator.diagnose_namespace("default")


class TestDiagnoseCluster:
    @pytest.mark.asyncio
    async def test_nodes_and_kube_system(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "Node": [make_node("node-1"), make_node("node-2", ready="False", pressure=("MemoryPressure",))],
                "Pod": [make_pod(), _crashing_pod("coredns-0", "kube-system")],
            }
        )
        report = await coordinator.diagnose_cluster()
        assert report.ready_nodes == 1
        assert len(report.nodes) == 2
        assert report.counts.total == 2
        assert [c.subject.name for c in report.kube_system] == ["coredns-0"]
        assert report.histogram["CRITICAL"] >= 1
        assert report.histogram["WARNING"] >= 1


class TestFindUnhealthyPods:
    @pytest.mark.asyncio
    async def test_all_namespaces_with_truncation(self) -> None:
        coordinator, client = _make_coordinator(
            {"Pod": [_crashing_pod("a", "ns1"), _crashing_pod("b", "ns2"), make_pod("ok", "ns1")]},
            max_pods=1,
        )
        report = await coordinator.find_unhealthy_pods("all")
        assert report.namespace is None
        assert report.total_pods == 3
        assert len(report.pods) == 1
        assert report.truncated
        assert ("list", "Pod", "") in client.calls

    @pytest.mark.asyncio
    async def test_single_namespace(self) -> None:
        coordinator, _ = _make_coordinator({"Pod": [_crashing_pod("a", "ns1"), _crashing_pod("b", "ns2")]})
        report = await coordinator.find_unhealthy_pods("ns2")
        assert [c.subject.name for c in report.pods] == ["b"]
        assert not report.truncated


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


_PRIVILEGED = [{"name": "app", "securityContext": {"privileged": True}}]


class TestPodSecurity:
    @pytest.mark.asyncio
    async def test_single_pod_by_name(self) -> None:
        coordinator, client = _make_coordinator({"Pod": [make_pod(containers=_PRIVILEGED)]})
        report = await coordinator.analyze_pod_security("default", "web-0")
        assert len(report.results) == 1
        assert report.histogram["CRITICAL"] >= 1
        assert client.calls[0][0] == "get"

    @pytest.mark.asyncio
    async def test_whole_namespace(self) -> None:
        coordinator, _ = _make_coordinator({"Pod": [make_pod("a"), make_pod("b"), make_pod("c", "other")]})
        report = await coordinator.analyze_pod_security("default")
        assert [r.subject.name for r in report.results] == ["a", "b"]


class TestAuditNamespaceSecurity:
    @pytest.mark.asyncio
    async def test_bare_namespace_with_privileged_pod(self) -> None:
        coordinator, _ = _make_coordinator({"Pod": [make_pod(containers=_PRIVILEGED)]})
        audit = await coordinator.audit_namespace_security("default")
        assert audit.score.value == 55
        assert audit.score.grade == "F"
        assert audit.network_policies == 0
        assert audit.privileged_pods == 1
        assert audit.role_bindings == 0
        categories = {d.category for d in audit.deductions}
        assert categories == {"no_network_policies", "privileged_pods", "no_pdb", "no_quota"}
        messages = [f.message for f in audit.findings]
        assert "No network policies - all pod traffic is unrestricted" in messages
        assert "1 pod(s) running in privileged mode" in messages

    @pytest.mark.asyncio
    async def test_hardened_namespace_scores_a(self) -> None:
        hardened = [{"name": "app", "securityContext": {"runAsNonRoot": True}}]
        coordinator, _ = _make_coordinator(
            {
                "Pod": [make_pod(containers=hardened)],
                "NetworkPolicy": [{"metadata": meta("deny"), "spec": {"podSelector": {}}}],
                "PodDisruptionBudget": [
                    {"metadata": meta("web"), "status": {"disruptionsAllowed": 1, "expectedPods": 2}}
                ],
                "ResourceQuota": [{"metadata": meta("compute"), "status": {"hard": {}, "used": {}}}],
            }
        )
        audit = await coordinator.audit_namespace_security("default")
        assert audit.score.value == 100
        assert audit.score.grade == "A"
        assert audit.findings == ()

    @pytest.mark.asyncio
    async def test_unavailable_sources_are_not_deducted(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "Pod": [make_pod(containers=[{"name": "app", "securityContext": {"runAsNonRoot": True}}])],
                "PodDisruptionBudget": [{"metadata": meta("web"), "status": {"disruptionsAllowed": 1}}],
                "ResourceQuota": [{"metadata": meta("compute"), "status": {}}],
            },
            errors={
                "NetworkPolicy": ForbiddenError("denied", kind="NetworkPolicy"),
                "RoleBinding": ForbiddenError("denied", kind="RoleBinding"),
            },
        )
        audit = await coordinator.audit_namespace_security("default")
        assert audit.score.value == 100
        assert audit.network_policies is None
        assert audit.role_bindings is None
        assert {u.source for u in audit.unavailable} == {"NetworkPolicy", "RoleBinding"}
        not_available = [d for d in audit.deductions if d.reason == "not available"]
        assert [(d.category, d.points) for d in not_available] == [("no_network_policies", 0)]


class TestListRBACBindings:
    @pytest.mark.asyncio
    async def test_rows_scopes_and_findings(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "RoleBinding": [
                    make_binding(
                        "deployers",
                        "edit",
                        [
                            {"kind": "ServiceAccount", "name": "ci", "namespace": "default"},
                            {"kind": "User", "name": "alice"},
                        ],
                    ),
                    make_binding("other-ns", "view", [{"kind": "User", "name": "bob"}], "staging"),
                ],
                "ClusterRoleBinding": [
                    make_binding("root", "cluster-admin", [{"kind": "Group", "name": "platform"}], ""),
                    make_binding(
                        "monitoring",
                        "view",
                        [{"kind": "ServiceAccount", "name": "prometheus", "namespace": "monitoring"}],
                        "",
                    ),
                ],
            }
        )
        report = await coordinator.list_rbac_bindings("default")

        rows = [(b.scope, b.binding.name, b.role, b.subject_name) for b in report.bindings]
        assert rows == [
            ("Namespace", "deployers", "ClusterRole/edit", "ci"),
            ("Namespace", "deployers", "ClusterRole/edit", "alice"),
            ("Cluster", "root", "ClusterRole/cluster-admin", "platform"),
        ]
        assert [f.severity for f in report.findings] == [Severity.CRITICAL]
        assert report.histogram["CRITICAL"] == 1
        assert report.unavailable == ()

    @pytest.mark.asyncio
    async def test_subject_filter_trims_findings(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "RoleBinding": [
                    make_binding(
                        "mixed",
                        "edit",
                        [{"kind": "ServiceAccount", "name": "default"}, {"kind": "User", "name": "Alice"}],
                    )
                ]
            }
        )
        everyone = await coordinator.list_rbac_bindings("default")
        assert [f.category for f in everyone.findings] == ["default_service_account"]

        filtered = await coordinator.list_rbac_bindings("default", subject=" ALICE ")
        assert filtered.subject_filter == "alice"
        assert [b.subject_name for b in filtered.bindings] == ["Alice"]
        assert filtered.findings == ()

    @pytest.mark.asyncio
    async def test_cluster_bindings_best_effort(self) -> None:
        coordinator, _ = _make_coordinator(
            {"RoleBinding": [make_binding("readers", "view", [{"kind": "User", "name": "alice"}])]},
            errors={"ClusterRoleBinding": ForbiddenError("denied", kind="ClusterRoleBinding")},
        )
        report = await coordinator.list_rbac_bindings("default")
        assert len(report.bindings) == 1
        assert [(u.source, u.error_code) for u in report.unavailable] == [("ClusterRoleBinding", "FORBIDDEN")]

    @pytest.mark.asyncio
    async def test_role_bindings_are_required(self) -> None:
        coordinator, _ = _make_coordinator(errors={"RoleBinding": ForbiddenError("denied", kind="RoleBinding")})
        with pytest.raises(ForbiddenError):
            await coordinator.list_rbac_bindings("default")


# ---------------------------------------------------------------------------
# Dependencies and connectivity
# ---------------------------------------------------------------------------


def _deployment() -> dict[str, Any]:
    return {
        "metadata": meta("web"),
        "spec": {
            "template": {
                "metadata": {"labels": {"app": "web"}},
                "spec": {
                    "serviceAccountName": "web-sa",
                    "containers": [{"name": "app", "envFrom": [{"secretRef": {"name": "db-creds"}}]}],
                    "volumes": [{"name": "cfg", "configMap": {"name": "web-config"}}],
                },
            }
        },
    }


class TestWorkloadDependencies:
    @pytest.mark.asyncio
    async def test_resolves_and_graphs(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "Deployment": [_deployment()],
                "Service": [{"metadata": meta("web"), "spec": {"selector": {"app": "web"}}}],
            }
        )
        result = await coordinator.workload_dependencies("default", "web", "deploy")
        deps = result.dependencies
        assert deps.owner.kind == "Deployment"
        assert deps.config_maps == ("web-config",)
        assert deps.secrets == ("db-creds",)
        assert deps.matching_services == ("web",)
        assert len(result.graph.nodes) == 5

    @pytest.mark.asyncio
    async def test_services_unavailable(self) -> None:
        coordinator, _ = _make_coordinator(
            {"Deployment": [_deployment()]},
            errors={"Service": ForbiddenError("denied", kind="Service")},
        )
        result = await coordinator.workload_dependencies("default", "web")
        assert result.dependencies.matching_services == ()
        assert [u.source for u in result.unavailable] == ["Service"]

    @pytest.mark.asyncio
    async def test_unsupported_kind(self) -> None:
        coordinator, _ = _make_coordinator()
        with pytest.raises(InvalidArgumentError, match="workload kind"):
            await coordinator.workload_dependencies("default", "web", "cronjob")


class TestConnectivityAndQuotas:
    @pytest.mark.asyncio
    async def test_pod_connectivity(self) -> None:
        deny = {"metadata": meta("deny"), "spec": {"podSelector": {}, "policyTypes": ["Ingress"]}}
        coordinator, _ = _make_coordinator({"Pod": [make_pod(labels={"app": "web"})], "NetworkPolicy": [deny]})
        report = await coordinator.analyze_pod_connectivity("default", "web-0")
        assert report.ingress_restricted
        assert [p.name for p in report.policies] == ["deny"]

    @pytest.mark.asyncio
    async def test_quota_report_across_namespaces(self) -> None:
        quota = {
            "metadata": meta("compute", "team-a"),
            "status": {"hard": {"requests.cpu": "10", "pods": "10"}, "used": {"requests.cpu": "9.5", "pods": "1"}},
        }
        coordinator, _ = _make_coordinator({"ResourceQuota": [quota]})
        report = await coordinator.check_resource_quotas()
        assert report.namespace is None
        assert len(report.usages) == 2
        assert [f.severity for f in report.findings] == [Severity.CRITICAL]


# ---------------------------------------------------------------------------
# GitOps
# ---------------------------------------------------------------------------


def _apps_kustomization(**spec: Any) -> dict[str, Any]:
    return make_reconciler(
        "Kustomization",
        "apps",
        ready="False",
        message="dependency 'flux-system/infra' is not ready",
        spec={"path": "./apps", "sourceRef": {"kind": "GitRepository", "name": "repo"}, **spec},
    )


class TestDiagnoseKustomization:
    @pytest.mark.asyncio
    async def test_failing_dependency_chain(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "Kustomization": [
                    _apps_kustomization(dependsOn=[{"name": "infra"}]),
                    make_reconciler("Kustomization", "infra", ready="False", message="apply failed"),
                ],
                "GitRepository": [make_reconciler("GitRepository", "repo")],
            }
        )
        report = await coordinator.diagnose_kustomization("flux-system", "apps")
        assert report.verdict is HealthVerdict.FAILED
        assert report.path == "./apps"
        assert report.source is not None
        assert report.source.verdict is HealthVerdict.READY
        assert [(d.ref.name, d.verdict) for d in report.depends_on] == [("infra", HealthVerdict.FAILED)]
        messages = [f.message for f in report.findings]
        assert messages[0] == "Kustomization is failing: dependency 'flux-system/infra' is not ready"
        assert f"Dependency infra is {HealthVerdict.FAILED.value}" in messages

    @pytest.mark.asyncio
    async def test_missing_source_is_reported_not_raised(self) -> None:
        coordinator, _ = _make_coordinator({"Kustomization": [_apps_kustomization()]})
        report = await coordinator.diagnose_kustomization("flux-system", "apps")
        assert report.source is not None
        assert report.source.verdict is None
        assert "Could not check source GitRepository/repo" in [f.message for f in report.findings]

    @pytest.mark.asyncio
    async def test_unsupported_source_kind_is_not_fetched(self) -> None:
        ks = make_reconciler("Kustomization", "apps", spec={"sourceRef": {"kind": "Widget", "name": "w"}})
        coordinator, client = _make_coordinator({"Kustomization": [ks]})
        report = await coordinator.diagnose_kustomization("flux-system", "apps")
        assert report.source is not None
        assert report.source.verdict is None
        assert not any(call[1] == "Widget" for call in client.calls)

    @pytest.mark.asyncio
    async def test_missing_kustomization_raises(self) -> None:
        coordinator, _ = _make_coordinator({"Kustomization": []})
        with pytest.raises(NotFoundError):
            await coordinator.diagnose_kustomization("flux-system", "apps")


class TestDiagnoseHelmRelease:
    @pytest.mark.asyncio
    async def test_chart_source_and_history(self) -> None:
        hr = make_reconciler(
            "HelmRelease",
            "podinfo",
            "apps",
            spec={
                "chart": {
                    "spec": {
                        "chart": "podinfo",
                        "version": "6.x",
                        "sourceRef": {"kind": "HelmRepository", "name": "podinfo", "namespace": "flux-system"},
                    }
                }
            },
            status={
                "history": [{"chartVersion": f"6.{i}.0", "status": "deployed"} for i in range(8)],
            },
        )
        coordinator, _ = _make_coordinator(
            {"HelmRelease": [hr], "HelmRepository": [make_reconciler("HelmRepository", "podinfo", stalled=True)]}
        )
        report = await coordinator.diagnose_helm_release("apps", "podinfo")
        assert report.verdict is HealthVerdict.READY
        assert report.chart == "podinfo"
        assert report.chart_version == "6.x"
        assert len(report.history) == 5
        assert report.source is not None
        assert report.source.ref.namespace == "flux-system"
        assert report.source.verdict is HealthVerdict.STALLED
        assert any(f.message.startswith("Source HelmRepository/podinfo is") for f in report.findings)


class TestDiagnoseFluxSystem:
    @pytest.mark.asyncio
    async def test_summaries_and_topology(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "Pod": [make_pod("source-controller", "flux-system"), _crashing_pod("helm-controller", "flux-system")],
                "Kustomization": [
                    make_reconciler("Kustomization", "apps"),
                    make_reconciler("Kustomization", "infra", ready="False"),
                    make_reconciler("Kustomization", "paused", suspend=True),
                ],
                "HelmRelease": [make_reconciler("HelmRelease", "podinfo", "apps")],
            }
        )
        report = await coordinator.diagnose_flux_system()
        assert report.controllers == 2
        assert [c.subject.name for c in report.unhealthy_controllers] == ["helm-controller"]
        assert report.kustomizations is not None
        assert (report.kustomizations.total, report.kustomizations.ready) == (3, 1)
        assert (report.kustomizations.failed, report.kustomizations.suspended) == (1, 1)
        messages = [f.message for f in report.findings]
        assert "1 kustomizations are not ready" in messages
        assert any(m.startswith("Flux controller helm-controller") for m in messages)
        assert len(report.graph.nodes) == 3

    @pytest.mark.asyncio
    async def test_flux_not_installed(self) -> None:
        coordinator, _ = _make_coordinator(
            errors={
                "Kustomization": FluxNotInstalledError("no flux", kind="Kustomization"),
                "HelmRelease": FluxNotInstalledError("no flux", kind="HelmRelease"),
            }
        )
        with pytest.raises(FluxNotInstalledError):
            await coordinator.diagnose_flux_system()

    @pytest.mark.asyncio
    async def test_helm_controller_missing_only(self) -> None:
        coordinator, _ = _make_coordinator(
            {"Pod": [make_pod("kustomize-controller", "flux-system")]},
            errors={"HelmRelease": FluxNotInstalledError("no helm", kind="HelmRelease")},
        )
        report = await coordinator.diagnose_flux_system()
        assert report.kustomizations is not None
        assert report.helm_releases is None
        assert [u.error_code for u in report.unavailable] == ["FLUX_NOT_INSTALLED"]

    @pytest.mark.asyncio
    async def test_empty_flux_namespace_warns(self) -> None:
        coordinator, _ = _make_coordinator({"Kustomization": [], "HelmRelease": []})
        report = await coordinator.diagnose_flux_system()
        assert report.controllers == 0
        assert report.findings[0].message.startswith("No pods in flux-system namespace")


class TestFluxListings:
    @pytest.mark.asyncio
    async def test_kustomizations_rows(self) -> None:
        coordinator, client = _make_coordinator(
            {
                "Kustomization": [
                    make_reconciler(
                        "Kustomization",
                        "apps",
                        spec={"sourceRef": {"kind": "GitRepository", "name": "fleet"}, "path": "./apps"},
                        status={"lastAppliedRevision": "main@sha1:0123456789abcdef"},
                    ),
                    make_reconciler("Kustomization", "paused", suspend=True),
                    make_reconciler("Kustomization", "broken", "apps", ready="False", message="kustomize build failed"),
                ]
            }
        )
        listing = await coordinator.list_flux_kustomizations()
        assert listing.namespace is None
        assert ("list", "Kustomization", "") in client.calls

        apps = listing.entries[0]
        assert (apps.source, apps.path) == ("GitRepository/fleet", "./apps")
        assert apps.revision == "main@sha1:0123456789abcdef"
        assert listing.entries[1].suspended is True
        assert listing.entries[1].path == "./"
        assert listing.summary == ReconcilerSummary(total=3, ready=1, failed=1, suspended=1)
        assert listing.histogram["CRITICAL"] == 1

        scoped = await coordinator.list_flux_kustomizations("apps")
        assert [e.classification.subject.name for e in scoped.entries] == ["broken"]

    @pytest.mark.asyncio
    async def test_helm_release_chart_and_remediation(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "HelmRelease": [
                    make_reconciler(
                        "HelmRelease",
                        "podinfo",
                        "apps",
                        spec={
                            "chart": {
                                "spec": {
                                    "chart": "podinfo",
                                    "version": "6.x",
                                    "sourceRef": {"kind": "HelmRepository", "name": "podinfo"},
                                }
                            },
                            "install": {"remediation": {"retries": 3}},
                            "upgrade": {"remediation": {"retries": 1}},
                        },
                    ),
                    make_reconciler(
                        "HelmRelease", "redis", "apps", spec={"chartRef": {"kind": "OCIRepository", "name": "redis"}}
                    ),
                ]
            }
        )
        listing = await coordinator.list_flux_helm_releases("apps")
        podinfo, redis = listing.entries
        assert (podinfo.chart, podinfo.chart_version, podinfo.source) == ("podinfo", "6.x", "HelmRepository/podinfo")
        assert podinfo.remediation == "install:3, upgrade:1"
        assert (redis.chart, redis.source, redis.remediation) == ("redis", "OCIRepository/redis", "default")

    @pytest.mark.asyncio
    async def test_sources_per_kind_columns(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "GitRepository": [
                    make_reconciler(
                        "GitRepository",
                        "fleet",
                        spec={"url": "ssh://git@example.com/fleet"},
                        status={"artifact": {"revision": "main@sha1:abc"}},
                    )
                ],
                "HelmChart": [make_reconciler("HelmChart", "apps-podinfo", spec={"chart": "podinfo"})],
                "Bucket": [make_reconciler("Bucket", "artifacts", ready="False", spec={"endpoint": "s3.example.com"})],
            }
        )
        listing = await coordinator.list_flux_sources()
        assert listing.kinds == ("GitRepository", "OCIRepository", "HelmRepository", "HelmChart", "Bucket")
        by_kind = {e.classification.subject.kind: e for e in listing.entries}
        assert by_kind["GitRepository"].url == "ssh://git@example.com/fleet"
        assert by_kind["GitRepository"].revision == "main@sha1:abc"
        assert by_kind["HelmChart"].url == "podinfo"
        assert by_kind["Bucket"].url == "s3.example.com"
        assert listing.summary.failed == 1

    @pytest.mark.asyncio
    async def test_source_type_filter(self) -> None:
        coordinator, client = _make_coordinator({"OCIRepository": [make_reconciler("OCIRepository", "manifests")]})
        listing = await coordinator.list_flux_sources(source_type="OCI")
        assert listing.kinds == ("OCIRepository",)
        assert listing.source_type == "OCIRepository"
        assert [call[1] for call in client.calls] == ["OCIRepository"]

        with pytest.raises(InvalidArgumentError):
            await coordinator.list_flux_sources(source_type="svn")

    @pytest.mark.asyncio
    async def test_forbidden_source_kind_is_unavailable(self) -> None:
        coordinator, _ = _make_coordinator(
            {"GitRepository": [make_reconciler("GitRepository", "fleet")]},
            errors={"Bucket": ForbiddenError("denied", kind="Bucket")},
        )
        listing = await coordinator.list_flux_sources()
        assert len(listing.entries) == 1
        assert [(u.source, u.error_code) for u in listing.unavailable] == [("Bucket", "FORBIDDEN")]

    @pytest.mark.asyncio
    async def test_sources_without_flux(self) -> None:
        kinds = ("GitRepository", "OCIRepository", "HelmRepository", "HelmChart", "Bucket")
        coordinator, _ = _make_coordinator(errors={kind: FluxNotInstalledError("no flux", kind=kind) for kind in kinds})
        with pytest.raises(FluxNotInstalledError):
            await coordinator.list_flux_sources()

    @pytest.mark.asyncio
    async def test_image_policies(self) -> None:
        coordinator, _ = _make_coordinator(
            {
                "ImageRepository": [
                    make_reconciler(
                        "ImageRepository",
                        "web",
                        spec={"image": "ghcr.io/acme/web"},
                        status={"lastScanResult": {"latestTags": ["1.4.2", "1.4.1"]}},
                    )
                ],
                "ImagePolicy": [
                    make_reconciler(
                        "ImagePolicy",
                        "web",
                        spec={"imageRepositoryRef": {"name": "web"}},
                        status={"latestRef": {"name": "ghcr.io/acme/web", "tag": "1.4.2"}},
                    )
                ],
            }
        )
        listing = await coordinator.list_flux_image_policies()
        repository, policy = listing.entries
        assert (repository.url, repository.latest) == ("ghcr.io/acme/web", "1.4.2")
        assert (policy.source, policy.latest) == ("ImageRepository/web", "ghcr.io/acme/web:1.4.2")

    @pytest.mark.asyncio
    async def test_image_policy_failure_raises(self) -> None:
        coordinator, _ = _make_coordinator(errors={"ImagePolicy": ForbiddenError("denied", kind="ImagePolicy")})
        with pytest.raises(ForbiddenError):
            await coordinator.list_flux_image_policies()


class TestFluxResourceTree:
    @pytest.mark.asyncio
    async def test_inventory_is_capped(self) -> None:
        entries = [{"id": f"default_web-{i}_apps_Deployment"} for i in range(25)]
        ks = make_reconciler(
            "Kustomization",
            "apps",
            spec={"sourceRef": {"kind": "GitRepository", "name": "repo"}, "dependsOn": [{"name": "infra"}]},
            status={"inventory": {"entries": entries}},
        )
        coordinator, _ = _make_coordinator({"Kustomization": [ks]})
        tree = await coordinator.flux_resource_tree("flux-system", "apps", "ks")
        assert tree.verdict is HealthVerdict.READY
        assert tree.source is not None
        assert tree.source.name == "repo"
        assert [d.name for d in tree.depends_on] == ["infra"]
        assert len(tree.inventory) == 20
        assert tree.inventory_total == 25
        assert len(tree.graph.edges) == 2

    @pytest.mark.asyncio
    async def test_rejects_other_kinds(self) -> None:
        coordinator, _ = _make_coordinator()
        with pytest.raises(InvalidArgumentError):
            await coordinator.flux_resource_tree("flux-system", "repo", "GitRepository")


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


class TestResourceAllocation:
    @pytest.mark.asyncio
    async def test_totals_and_overcommit_warning(self) -> None:
        big = [{"name": "app", "resources": {"requests": {"cpu": "3600m", "memory": "1Gi"}, "limits": {"cpu": "4"}}}]
        coordinator, _ = _make_coordinator(
            {
                "Pod": [make_pod("big", containers=big), make_pod("done", phase="Succeeded", containers=big)],
                "Node": [make_node()],
            },
            metrics={"pod": [_pod_metrics("big", "1200m", "512Mi")]},
        )
        report = await coordinator.analyze_resource_allocation("default")
        assert report.pods == 1
        assert report.cpu_requests == 3600
        assert report.cpu_limits == 4000
        assert report.memory_requests == 1024**3
        assert report.allocatable_cpu == 4000
        assert report.cpu_usage == 1200
        assert [f.message for f in report.findings] == ["CPU requests at 90% of allocatable (3600m/4000m)"]

    @pytest.mark.asyncio
    async def test_missing_metrics_and_nodes(self) -> None:
        coordinator, _ = _make_coordinator(
            {"Pod": [make_pod()]},
            errors={
                "metrics:pod": UnavailableError("Metrics API not available", kind="podmetrics"),
                "Node": ForbiddenError("denied", kind="Node"),
            },
        )
        report = await coordinator.analyze_resource_allocation()
        assert report.cpu_requests == 100
        assert report.allocatable_cpu is None
        assert report.cpu_usage is None
        assert report.cpu_request_percent is None
        assert report.findings == ()
        assert {u.source for u in report.unavailable} == {"Node", "PodMetrics"}


class TestTopConsumers:
    @pytest.mark.asyncio
    async def test_sorted_and_limited(self) -> None:
        coordinator, _ = _make_coordinator(
            metrics={
                "pod": [
                    _pod_metrics("a", "100m", "900Mi"),
                    _pod_metrics("b", "900m", "100Mi"),
                    _pod_metrics("c", "500m", "500Mi"),
                ]
            }
        )
        by_cpu = await coordinator.top_consumers(limit=2)
        assert [u.pod.name for u in by_cpu.consumers] == ["b", "c"]
        assert by_cpu.total_pods == 3
        by_memory = await coordinator.top_consumers("default", "mem")
        assert by_memory.sort_by == "memory"
        assert [u.pod.name for u in by_memory.consumers] == ["a", "c", "b"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("resource", "limit"), [("disk", 10), ("cpu", 0)])
    async def test_invalid_arguments(self, resource: str, limit: int) -> None:
        coordinator, client = _make_coordinator()
        with pytest.raises(InvalidArgumentError):
            await coordinator.top_consumers(resource=resource, limit=limit)
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_metrics_unavailable_raises(self) -> None:
        coordinator, _ = _make_coordinator(errors={"metrics:pod": UnavailableError("Metrics API not available")})
        with pytest.raises(UnavailableError):
            await coordinator.top_consumers()


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class _StallingEventsClient(FakeClusterClient):
    """Event lists never finish; pod lists optionally fail once events are in flight."""

    def __init__(self, pod_error: Exception | None = None) -> None:
        super().__init__({"Pod": [make_pod("web-0")]})
        self.pod_error = pod_error
        self.events_started = asyncio.Event()
        self.events_cancelled = False
        self.events_finished = False

    async def list(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        if kind == "Event":
            self.events_started.set()
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                self.events_cancelled = True
                raise
            self.events_finished = True
            return []
        if kind == "Pod" and self.pod_error is not None:
            await self.events_started.wait()
            raise self.pod_error
        return await super().list(kind, namespace, label_selector, field_selector)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelling_operation_cancels_inflight_fetches(self) -> None:
        client = _StallingEventsClient()
        coordinator = DiagnosticsCoordinator(client, build_registry(), CollectorConfig())

        task = asyncio.create_task(coordinator.diagnose_namespace("default"))
        await asyncio.wait_for(client.events_started.wait(), timeout=1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert client.events_cancelled is True

    @pytest.mark.asyncio
    async def test_primary_failure_cancels_sibling_fetches(self) -> None:
        client = _StallingEventsClient(pod_error=ForbiddenError("denied", kind="Pod"))
        coordinator = DiagnosticsCoordinator(client, build_registry(), CollectorConfig())

        with pytest.raises(ForbiddenError):
            await asyncio.wait_for(coordinator.diagnose_namespace("default"), timeout=1)

        assert client.events_cancelled is True
        assert client.events_finished is False
