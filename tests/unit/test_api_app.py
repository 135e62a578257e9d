"""Unit tests for kubedoctor.api - routes, the error envelope and status mapping."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fakes import FakeClusterClient, make_binding, make_pod, make_reconciler
from fastapi.testclient import TestClient

from kubedoctor.analyst.coordinator import DiagnosticsCoordinator
from kubedoctor.api.app import STATUS_BY_CODE, create_app
from kubedoctor.errors import (
    FluxNotInstalledError,
    ForbiddenError,
    InvalidArgumentError,
    MalformedResourceError,
    NotFoundError,
    UnauthorizedError,
    UnavailableError,
)
from kubedoctor.rules import build_registry

# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _make_client(resources: dict[str, list[dict[str, Any]]] | None = None) -> TestClient:
    registry = build_registry()
    coordinator = DiagnosticsCoordinator(FakeClusterClient(resources), registry)
    return TestClient(create_app(coordinator, registry), raise_server_exceptions=False)


def _failing_client(operation: str, exc: Exception) -> TestClient:
    coordinator = MagicMock()
    setattr(coordinator, operation, AsyncMock(side_effect=exc))
    return TestClient(create_app(coordinator), raise_server_exceptions=False)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health_reports_classifiers(self) -> None:
        response = _make_client().get("/api/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["classifiers"] == 9
        assert body["version"]

    def test_health_without_registry(self) -> None:
        client = TestClient(create_app(MagicMock()), raise_server_exceptions=False)
        assert client.get("/api/v1/health").json()["classifiers"] == 0


# ---------------------------------------------------------------------------
# Diagnostic routes
# ---------------------------------------------------------------------------


class TestRoutes:
    def test_pod(self) -> None:
        response = _make_client({"Pod": [make_pod()]}).get("/api/v1/namespaces/default/pods/web-0")
        assert response.status_code == 200
        body = response.json()
        assert body["operation"] == "diagnose_pod"
        assert body["result"]["pod"]["name"] == "web-0"
        assert body["text"].startswith("Pod Pod/default/web-0")

    def test_unhealthy_query_param(self) -> None:
        client = _make_client({"Pod": [make_pod("a", "ns1"), make_pod("b", "ns2")]})
        body = client.get("/api/v1/unhealthy", params={"namespace": "ns1"}).json()
        assert body["result"]["namespace"] == "ns1"
        assert body["result"]["total_pods"] == 1

    def test_audit(self) -> None:
        body = _make_client({"Pod": []}).get("/api/v1/namespaces/default/audit").json()
        assert body["result"]["score"] == {"value": 70, "grade": "C"}

    def test_flux_tree_carries_mermaid(self) -> None:
        ks = make_reconciler("Kustomization", "apps", spec={"sourceRef": {"kind": "GitRepository", "name": "repo"}})
        body = _make_client({"Kustomization": [ks]}).get("/api/v1/flux/tree/flux-system/apps").json()
        assert body["operation"] == "flux_resource_tree"
        assert body["mermaid"].startswith("graph LR")

    def test_flux_listings(self) -> None:
        client = _make_client(
            {
                "Kustomization": [
                    make_reconciler("Kustomization", "apps"),
                    make_reconciler("Kustomization", "infra", "ops"),
                ],
                "HelmRelease": [make_reconciler("HelmRelease", "redis", "cache", ready="False")],
                "ImageRepository": [make_reconciler("ImageRepository", "web", spec={"image": "ghcr.io/acme/web"})],
            }
        )
        kustomizations = client.get("/api/v1/flux/kustomizations", params={"namespace": "ops"}).json()
        assert [e["classification"]["subject"]["name"] for e in kustomizations["result"]["entries"]] == ["infra"]

        releases = client.get("/api/v1/flux/helmreleases").json()
        assert releases["result"]["summary"] == {"total": 1, "ready": 0, "failed": 1, "suspended": 0}
        assert releases["result"]["entries"][0]["remediation"] == "default"

        images = client.get("/api/v1/flux/images").json()
        assert images["result"]["kinds"] == ["ImageRepository", "ImagePolicy"]
        assert images["result"]["entries"][0]["url"] == "ghcr.io/acme/web"

    def test_unknown_source_type_is_400(self) -> None:
        response = _make_client().get("/api/v1/flux/sources", params={"source_type": "svn"})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_ARGUMENT"

    def test_rbac_subject_filter(self) -> None:
        bindings = [
            make_binding("readers", "view", [{"kind": "User", "name": "Alice"}, {"kind": "User", "name": "bob"}]),
        ]
        body = _make_client({"RoleBinding": bindings}).get(
            "/api/v1/namespaces/default/rbac", params={"subject": "ALI"}
        ).json()
        assert body["operation"] == "list_rbac_bindings"
        assert [b["subject_name"] for b in body["result"]["bindings"]] == ["Alice"]

    def test_arguments_forwarded(self) -> None:
        coordinator = MagicMock()
        coordinator.top_consumers = AsyncMock(return_value=object())
        client = TestClient(create_app(coordinator), raise_server_exceptions=False)
        envelope = {"operation": "top_consumers", "result": {}, "text": "", "mermaid": None}
        with patch("kubedoctor.api.routes.payload_for", return_value=envelope):
            response = client.get("/api/v1/top", params={"namespace": "prod", "resource": "memory", "limit": 3})
        assert response.status_code == 200
        coordinator.top_consumers.assert_awaited_once_with(namespace="prod", resource="memory", limit=3)

    def test_connectivity_passes_pod_name(self) -> None:
        coordinator = MagicMock()
        coordinator.analyze_pod_connectivity = AsyncMock(return_value=object())
        client = TestClient(create_app(coordinator), raise_server_exceptions=False)
        envelope = {"operation": "analyze_pod_connectivity", "result": {}, "text": ""}
        with patch("kubedoctor.api.routes.payload_for", return_value=envelope):
            client.get("/api/v1/namespaces/default/pods/web-0/connectivity")
        coordinator.analyze_pod_connectivity.assert_awaited_once_with(namespace="default", pod_name="web-0")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    @pytest.mark.parametrize(
        ("exc", "status"),
        [
            (NotFoundError("Not found: Pod/default/ghost"), 404),
            (ForbiddenError("Permission denied reading Pod/default/ghost."), 403),
            (UnauthorizedError("Unauthorized reading Pod/default/ghost."), 401),
            (UnavailableError("Timed out after 30s reading Pod"), 503),
            (FluxNotInstalledError("Flux API for Kustomization not found."), 503),
            (MalformedResourceError("Deployment has no pod template"), 422),
            (InvalidArgumentError("Unsupported workload kind: 'cronjob'"), 400),
        ],
    )
    def test_taxonomy_maps_to_status(self, exc: Exception, status: int) -> None:
        response = _failing_client("diagnose_pod", exc).get("/api/v1/namespaces/default/pods/ghost")
        assert response.status_code == status
        body = response.json()
        assert body["error"] == exc.error_code  # type: ignore[attr-defined]
        assert body["detail"] == str(exc)

    def test_every_code_has_a_status(self) -> None:
        assert set(STATUS_BY_CODE) >= {
            "RESOURCE_NOT_FOUND",
            "FORBIDDEN",
            "UNAUTHORIZED",
            "UNAVAILABLE",
            "FLUX_NOT_INSTALLED",
            "MALFORMED_RESOURCE",
            "INVALID_ARGUMENT",
            "INTERNAL_ERROR",
        }

    def test_unexpected_error_is_500(self) -> None:
        response = _failing_client("diagnose_cluster", RuntimeError("boom")).get("/api/v1/cluster")
        assert response.status_code == 500
        assert response.json() == {"error": "INTERNAL_ERROR", "detail": "An unexpected error occurred."}

    def test_validation_error_is_400(self) -> None:
        response = _make_client().get("/api/v1/top", params={"limit": "many"})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_ARGUMENT"

    def test_invalid_limit_from_coordinator(self) -> None:
        response = _make_client().get("/api/v1/top", params={"limit": 0})
        assert response.status_code == 400
        assert "limit must be at least 1" in response.json()["detail"]
