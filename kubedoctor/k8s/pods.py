"""Read helpers over raw pod dicts.

Every helper treats missing fields as their zero value so classifiers can
call them on partially populated objects.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

Resource = Mapping[str, Any]


def _status(pod: Resource) -> Mapping[str, Any]:
    return pod.get("status") or {}


def pod_spec(pod: Resource) -> Mapping[str, Any]:
    return pod.get("spec") or {}


def has_security_context(value: Any) -> bool:
    """A securityContext counts as set only when it is a non-empty mapping."""
    return isinstance(value, Mapping) and bool(value)


def pod_labels(pod: Resource) -> dict[str, str]:
    metadata = pod.get("metadata") or {}
    return dict(metadata.get("labels") or {})


def pod_phase(pod: Resource) -> str:
    return str(_status(pod).get("phase") or "Unknown")


def container_statuses(pod: Resource) -> list[Mapping[str, Any]]:
    return [cs for cs in _status(pod).get("containerStatuses") or [] if isinstance(cs, Mapping)]


def init_container_statuses(pod: Resource) -> list[Mapping[str, Any]]:
    return [cs for cs in _status(pod).get("initContainerStatuses") or [] if isinstance(cs, Mapping)]


def waiting_state(container_status: Mapping[str, Any]) -> Mapping[str, Any] | None:
    state = container_status.get("state") or {}
    waiting = state.get("waiting")
    return waiting if isinstance(waiting, Mapping) else None


def terminated_state(container_status: Mapping[str, Any]) -> Mapping[str, Any] | None:
    state = container_status.get("state") or {}
    terminated = state.get("terminated")
    return terminated if isinstance(terminated, Mapping) else None


def last_terminated_state(container_status: Mapping[str, Any]) -> Mapping[str, Any] | None:
    last = container_status.get("lastState") or {}
    terminated = last.get("terminated")
    return terminated if isinstance(terminated, Mapping) else None


def is_pod_healthy(pod: Resource) -> bool:
    """Succeeded, or Running with every container ready and none waiting."""
    phase = _status(pod).get("phase")
    if phase == "Succeeded":
        return True
    if phase != "Running":
        return False
    for cs in container_statuses(pod):
        if not cs.get("ready") or waiting_state(cs) is not None:
            return False
    return True


def _state_reason(container_status: Mapping[str, Any]) -> str:
    waiting = waiting_state(container_status)
    if waiting is not None and waiting.get("reason"):
        return str(waiting["reason"])
    terminated = terminated_state(container_status)
    if terminated is not None and terminated.get("reason"):
        return str(terminated["reason"])
    return ""


def pod_phase_reason(pod: Resource) -> str:
    """Kubectl-style status string: first container reason, else the phase.

    Init containers are scanned first and prefixed with ``Init:``.
    """
    for cs in init_container_statuses(pod):
        reason = _state_reason(cs)
        if reason:
            return f"Init:{reason}"
    for cs in container_statuses(pod):
        reason = _state_reason(cs)
        if reason:
            return reason
    return pod_phase(pod)


@dataclass(frozen=True)
class ContainerSummary:
    ready: int
    total: int
    restarts: int


def container_summary(pod: Resource) -> ContainerSummary:
    """Ready/total container counts and summed restarts of regular containers."""
    total = len(pod_spec(pod).get("containers") or [])
    ready = 0
    restarts = 0
    for cs in container_statuses(pod):
        if cs.get("ready"):
            ready += 1
        restarts += int(cs.get("restartCount") or 0)
    return ContainerSummary(ready=ready, total=total, restarts=restarts)


def find_container(pod: Resource, name: str) -> Mapping[str, Any] | None:
    for container in pod_spec(pod).get("containers") or []:
        if isinstance(container, Mapping) and container.get("name") == name:
            return container
    return None


def container_limit(container: Mapping[str, Any] | None, resource: str) -> str:
    """Return the container's limit for ``resource`` or '' when unset."""
    if container is None:
        return ""
    resources = container.get("resources") or {}
    limits = resources.get("limits") or {}
    return str(limits.get(resource) or "")


def container_request(container: Mapping[str, Any] | None, resource: str) -> str:
    if container is None:
        return ""
    resources = container.get("resources") or {}
    requests = resources.get("requests") or {}
    return str(requests.get(resource) or "")
