"""Workload dependency resolution.

Correlates a pod template with the ConfigMaps, Secrets, PVCs,
ServiceAccount and Services it references. Pure: callers fetch the
workload and candidate Services, this module only reads dicts.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from kubedoctor.errors import MalformedResourceError
from kubedoctor.k8s.selectors import matches
from kubedoctor.models.resources import DependencySet, ResourceRef

TEMPLATE_KINDS: frozenset[str] = frozenset({"Deployment", "StatefulSet", "DaemonSet", "Job", "ReplicaSet"})
WORKLOAD_KINDS: tuple[str, ...] = ("Deployment", "StatefulSet", "DaemonSet", "Job", "ReplicaSet", "Pod")


class _OrderedSet:
    """Insertion-ordered set of non-empty names."""

    def __init__(self) -> None:
        self._items: dict[str, None] = {}

    def add(self, value: Any) -> None:
        if value:
            self._items.setdefault(str(value), None)

    def as_tuple(self) -> tuple[str, ...]:
        return tuple(self._items)


def extract_pod_template(kind: str, resource: Mapping[str, Any]) -> tuple[Mapping[str, Any], dict[str, str]]:
    """Return ``(pod_spec, pod_labels)`` for a workload or Pod.

    Raises:
        ValueError: ``kind`` is not a supported workload kind.
        MalformedResourceError: the resource has no pod spec.
    """
    metadata = resource.get("metadata") or {}
    name = str(metadata.get("name") or "")
    namespace = str(metadata.get("namespace") or "")

    if kind == "Pod":
        spec = resource.get("spec")
        labels = metadata.get("labels") or {}
    elif kind in TEMPLATE_KINDS:
        template = (resource.get("spec") or {}).get("template") or {}
        spec = template.get("spec")
        labels = (template.get("metadata") or {}).get("labels") or {}
    else:
        raise ValueError(f"Unsupported workload kind: {kind}")

    if not isinstance(spec, Mapping) or not spec:
        raise MalformedResourceError(f"Could not extract pod spec from {kind}/{namespace}/{name}")
    return spec, dict(labels)


def _collect_volume_refs(
    spec: Mapping[str, Any], config_maps: _OrderedSet, secrets: _OrderedSet, pvcs: _OrderedSet
) -> None:
    for volume in spec.get("volumes") or []:
        if not isinstance(volume, Mapping):
            continue
        config_maps.add((volume.get("configMap") or {}).get("name"))
        secrets.add((volume.get("secret") or {}).get("secretName"))
        pvcs.add((volume.get("persistentVolumeClaim") or {}).get("claimName"))
        for source in (volume.get("projected") or {}).get("sources") or []:
            if isinstance(source, Mapping):
                config_maps.add((source.get("configMap") or {}).get("name"))
                secrets.add((source.get("secret") or {}).get("name"))


def _collect_env_refs(spec: Mapping[str, Any], config_maps: _OrderedSet, secrets: _OrderedSet) -> None:
    containers = [*(spec.get("initContainers") or []), *(spec.get("containers") or [])]
    for container in containers:
        if not isinstance(container, Mapping):
            continue
        for env_from in container.get("envFrom") or []:
            config_maps.add((env_from.get("configMapRef") or {}).get("name"))
            secrets.add((env_from.get("secretRef") or {}).get("name"))
        for env in container.get("env") or []:
            value_from = env.get("valueFrom") or {}
            config_maps.add((value_from.get("configMapKeyRef") or {}).get("name"))
            secrets.add((value_from.get("secretKeyRef") or {}).get("name"))


def matching_services(pod_labels: Mapping[str, str], services: Iterable[Mapping[str, Any]]) -> tuple[str, ...]:
    """Names of Services whose non-empty selector subset-matches the pod labels.

    A pod without labels matches nothing, and a selector-less Service never
    matches (it is managed through manual Endpoints).
    """
    if not pod_labels:
        return ()
    names = _OrderedSet()
    for service in services:
        selector = (service.get("spec") or {}).get("selector") or {}
        if selector and matches(selector, pod_labels):
            names.add((service.get("metadata") or {}).get("name"))
    return names.as_tuple()


def resolve(
    owner: ResourceRef,
    pod_spec: Mapping[str, Any],
    pod_labels: Mapping[str, str],
    candidate_services: Iterable[Mapping[str, Any]] = (),
) -> DependencySet:
    config_maps = _OrderedSet()
    secrets = _OrderedSet()
    pvcs = _OrderedSet()

    _collect_volume_refs(pod_spec, config_maps, secrets, pvcs)
    _collect_env_refs(pod_spec, config_maps, secrets)

    return DependencySet(
        owner=owner,
        config_maps=config_maps.as_tuple(),
        secrets=secrets.as_tuple(),
        pvcs=pvcs.as_tuple(),
        service_account=str(pod_spec.get("serviceAccountName") or ""),
        matching_services=matching_services(pod_labels, candidate_services),
    )
