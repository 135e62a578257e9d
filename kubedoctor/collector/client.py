"""Read-only cluster access.

``ClusterClient`` is the protocol the DiagnosticsCoordinator depends on;
``KubernetesClusterClient`` implements it over kubernetes_asyncio. Every
resource crosses this boundary as a plain dict in Kubernetes JSON
(camelCase) shape, and every ApiException is converted into the
``kubedoctor.errors`` taxonomy before it leaves this module.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio.client.exceptions import ApiException

from kubedoctor.errors import (
    FluxNotInstalledError,
    UnavailableError,
    from_api_exception,
)
from kubedoctor.observability.logging import get_logger

_logger = get_logger("cluster_client")

Resource = dict[str, Any]

_PAGE_SIZE = 500


@runtime_checkable
class ClusterClient(Protocol):
    """Typed list/get per kind plus raw metrics. Read-only."""

    async def list(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[Resource]: ...

    async def get(self, kind: str, namespace: str, name: str) -> Resource: ...

    async def get_metrics(self, kind: str, namespace: str | None = None) -> list[Resource]: ...


# ---------------------------------------------------------------------------
# Kind tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _BuiltinKind:
    api: str
    list_namespaced: str
    list_all: str
    read: str
    namespaced: bool = True


@dataclass(frozen=True)
class _CustomKind:
    group: str
    version: str
    plural: str

    @property
    def is_flux(self) -> bool:
        return self.group.endswith("toolkit.fluxcd.io")


_BUILTIN_KINDS: dict[str, _BuiltinKind] = {
    "Pod": _BuiltinKind("core", "list_namespaced_pod", "list_pod_for_all_namespaces", "read_namespaced_pod"),
    "Node": _BuiltinKind("core", "list_node", "list_node", "read_node", namespaced=False),
    "Namespace": _BuiltinKind("core", "list_namespace", "list_namespace", "read_namespace", namespaced=False),
    "Event": _BuiltinKind("core", "list_namespaced_event", "list_event_for_all_namespaces", "read_namespaced_event"),
    "Service": _BuiltinKind(
        "core", "list_namespaced_service", "list_service_for_all_namespaces", "read_namespaced_service"
    ),
    "PersistentVolumeClaim": _BuiltinKind(
        "core",
        "list_namespaced_persistent_volume_claim",
        "list_persistent_volume_claim_for_all_namespaces",
        "read_namespaced_persistent_volume_claim",
    ),
    "ResourceQuota": _BuiltinKind(
        "core",
        "list_namespaced_resource_quota",
        "list_resource_quota_for_all_namespaces",
        "read_namespaced_resource_quota",
    ),
    "Deployment": _BuiltinKind(
        "apps", "list_namespaced_deployment", "list_deployment_for_all_namespaces", "read_namespaced_deployment"
    ),
    "StatefulSet": _BuiltinKind(
        "apps", "list_namespaced_stateful_set", "list_stateful_set_for_all_namespaces", "read_namespaced_stateful_set"
    ),
    "DaemonSet": _BuiltinKind(
        "apps", "list_namespaced_daemon_set", "list_daemon_set_for_all_namespaces", "read_namespaced_daemon_set"
    ),
    "ReplicaSet": _BuiltinKind(
        "apps", "list_namespaced_replica_set", "list_replica_set_for_all_namespaces", "read_namespaced_replica_set"
    ),
    "Job": _BuiltinKind("batch", "list_namespaced_job", "list_job_for_all_namespaces", "read_namespaced_job"),
    "NetworkPolicy": _BuiltinKind(
        "networking",
        "list_namespaced_network_policy",
        "list_network_policy_for_all_namespaces",
        "read_namespaced_network_policy",
    ),
    "PodDisruptionBudget": _BuiltinKind(
        "policy",
        "list_namespaced_pod_disruption_budget",
        "list_pod_disruption_budget_for_all_namespaces",
        "read_namespaced_pod_disruption_budget",
    ),
    "RoleBinding": _BuiltinKind(
        "rbac",
        "list_namespaced_role_binding",
        "list_role_binding_for_all_namespaces",
        "read_namespaced_role_binding",
    ),
    "ClusterRoleBinding": _BuiltinKind(
        "rbac",
        "list_cluster_role_binding",
        "list_cluster_role_binding",
        "read_cluster_role_binding",
        namespaced=False,
    ),
}

_CUSTOM_KINDS: dict[str, _CustomKind] = {
    "Kustomization": _CustomKind("kustomize.toolkit.fluxcd.io", "v1", "kustomizations"),
    "HelmRelease": _CustomKind("helm.toolkit.fluxcd.io", "v2", "helmreleases"),
    "GitRepository": _CustomKind("source.toolkit.fluxcd.io", "v1", "gitrepositories"),
    "HelmRepository": _CustomKind("source.toolkit.fluxcd.io", "v1", "helmrepositories"),
    "HelmChart": _CustomKind("source.toolkit.fluxcd.io", "v1", "helmcharts"),
    "OCIRepository": _CustomKind("source.toolkit.fluxcd.io", "v1beta2", "ocirepositories"),
    "Bucket": _CustomKind("source.toolkit.fluxcd.io", "v1beta2", "buckets"),
    "ImageRepository": _CustomKind("image.toolkit.fluxcd.io", "v1beta2", "imagerepositories"),
    "ImagePolicy": _CustomKind("image.toolkit.fluxcd.io", "v1beta2", "imagepolicies"),
    "ImageUpdateAutomation": _CustomKind("image.toolkit.fluxcd.io", "v1beta2", "imageupdateautomations"),
}

_METRICS = _CustomKind("metrics.k8s.io", "v1beta1", "")
_METRICS_PLURALS: dict[str, str] = {"node": "nodes", "pod": "pods"}


def supported_kinds() -> list[str]:
    return sorted([*_BUILTIN_KINDS, *_CUSTOM_KINDS])


def _object_missing(exc: ApiException, name: str) -> bool:
    """True when a 404 names the object itself rather than the whole API.

    A missing object yields a Status whose ``details.name`` is the object
    name; a missing CRD yields a bare "could not find the requested resource".
    """
    try:
        body = json.loads(exc.body or "{}")
    except (TypeError, ValueError):
        return False
    details = body.get("details") if isinstance(body, Mapping) else None
    return isinstance(details, Mapping) and details.get("name") == name


class KubernetesClusterClient:
    """ClusterClient over kubernetes_asyncio.

    Holds one ApiClient and one typed API object per group. Carries no
    per-request state and is safe to share between concurrent diagnostics.
    """

    def __init__(self, api_client: k8s_client.ApiClient | None = None) -> None:
        self._api_client = api_client or k8s_client.ApiClient()
        self._apis: dict[str, Any] = {
            "core": k8s_client.CoreV1Api(self._api_client),
            "apps": k8s_client.AppsV1Api(self._api_client),
            "batch": k8s_client.BatchV1Api(self._api_client),
            "networking": k8s_client.NetworkingV1Api(self._api_client),
            "policy": k8s_client.PolicyV1Api(self._api_client),
            "rbac": k8s_client.RbacAuthorizationV1Api(self._api_client),
        }
        self._custom = k8s_client.CustomObjectsApi(self._api_client)

    async def close(self) -> None:
        await self._api_client.close()

    # ------------------------------------------------------------------
    # ClusterClient protocol
    # ------------------------------------------------------------------

    async def list(
        self,
        kind: str,
        namespace: str | None = None,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[Resource]:
        """List every object of ``kind``, following ``continue`` tokens."""
        kwargs: dict[str, Any] = {"limit": _PAGE_SIZE}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector

        items: list[Resource] = []
        token: str | None = None
        while True:
            if token:
                kwargs["_continue"] = token
            page = await self._list_page(kind, namespace, kwargs)
            items.extend(page.get("items") or [])
            token = (page.get("metadata") or {}).get("continue")
            if not token:
                break

        _logger.debug("cluster_list", kind=kind, namespace=namespace or "*", count=len(items))
        return items

    async def get(self, kind: str, namespace: str, name: str) -> Resource:
        builtin = _BUILTIN_KINDS.get(kind)
        try:
            if builtin is not None:
                method = getattr(self._apis[builtin.api], builtin.read)
                raw = await (method(name, namespace) if builtin.namespaced else method(name))
                return self._serialize(raw)

            custom = self._custom_kind(kind)
            return dict(
                await self._custom.get_namespaced_custom_object(
                    custom.group, custom.version, namespace, custom.plural, name
                )
            )
        except ApiException as exc:
            custom = _CUSTOM_KINDS.get(kind)
            if exc.status == 404 and custom is not None and custom.is_flux and not _object_missing(exc, name):
                raise self._flux_missing(kind) from exc
            raise from_api_exception(exc, kind=kind, namespace=namespace, name=name) from exc
        except (OSError, TimeoutError) as exc:
            raise UnavailableError(
                f"Cannot reach the cluster reading {kind}/{namespace}/{name}: {exc}",
                kind=kind,
                namespace=namespace,
                name=name,
            ) from exc

    async def get_metrics(self, kind: str, namespace: str | None = None) -> list[Resource]:
        """Return raw metrics.k8s.io items for ``"node"`` or ``"pod"``."""
        plural = _METRICS_PLURALS.get(kind.lower())
        if plural is None:
            raise ValueError(f"Unsupported metrics kind: {kind}")
        try:
            if namespace and plural == "pods":
                result = await self._custom.list_namespaced_custom_object(
                    _METRICS.group, _METRICS.version, namespace, plural
                )
            else:
                result = await self._custom.list_cluster_custom_object(_METRICS.group, _METRICS.version, plural)
        except ApiException as exc:
            if exc.status == 404:
                raise UnavailableError(
                    "Metrics API not available. Install metrics-server to enable usage data.",
                    kind=f"{kind}metrics",
                    namespace=namespace or "",
                ) from exc
            raise from_api_exception(exc, kind=f"{kind}metrics", namespace=namespace or "") from exc
        except (OSError, TimeoutError) as exc:
            raise UnavailableError(f"Cannot reach the metrics API: {exc}", kind=f"{kind}metrics") from exc
        return list(result.get("items") or [])

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _list_page(self, kind: str, namespace: str | None, kwargs: dict[str, Any]) -> Mapping[str, Any]:
        builtin = _BUILTIN_KINDS.get(kind)
        try:
            if builtin is not None:
                api = self._apis[builtin.api]
                if builtin.namespaced and namespace:
                    raw = await getattr(api, builtin.list_namespaced)(namespace, **kwargs)
                else:
                    raw = await getattr(api, builtin.list_all)(**kwargs)
                return self._serialize(raw)

            custom = self._custom_kind(kind)
            if namespace:
                return await self._custom.list_namespaced_custom_object(
                    custom.group, custom.version, namespace, custom.plural, **kwargs
                )
            return await self._custom.list_cluster_custom_object(custom.group, custom.version, custom.plural, **kwargs)
        except ApiException as exc:
            custom = _CUSTOM_KINDS.get(kind)
            if exc.status == 404 and custom is not None and custom.is_flux:
                raise self._flux_missing(kind) from exc
            raise from_api_exception(exc, kind=kind, namespace=namespace or "") from exc
        except (OSError, TimeoutError) as exc:
            raise UnavailableError(
                f"Cannot reach the cluster listing {kind}: {exc}", kind=kind, namespace=namespace or ""
            ) from exc

    def _serialize(self, obj: Any) -> Resource:
        return dict(self._api_client.sanitize_for_serialization(obj))

    @staticmethod
    def _custom_kind(kind: str) -> _CustomKind:
        custom = _CUSTOM_KINDS.get(kind)
        if custom is None:
            raise ValueError(f"Unsupported resource kind: {kind}")
        return custom

    @staticmethod
    def _flux_missing(kind: str) -> FluxNotInstalledError:
        _logger.warning("flux_api_not_found", kind=kind)
        return FluxNotInstalledError(
            f"Flux API for {kind} not found. Is Flux installed? Install with: flux install",
            kind=kind,
        )
