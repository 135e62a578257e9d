"""C05 Workload replica availability for Deployments, StatefulSets and DaemonSets."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from kubedoctor.models.resources import (
    Classification,
    Finding,
    HealthVerdict,
    ResourceRef,
    Severity,
)
from kubedoctor.rules.base import Classifier, ClassifierContext

# kind -> (desired field, desired source, available field)
_REPLICA_FIELDS: dict[str, tuple[str, str, str]] = {
    "Deployment": ("replicas", "spec", "availableReplicas"),
    "StatefulSet": ("replicas", "spec", "readyReplicas"),
    "DaemonSet": ("desiredNumberScheduled", "status", "numberAvailable"),
}


def replica_counts(kind: str, resource: Mapping[str, Any]) -> tuple[int, int]:
    """Return (available, desired) for a workload; unknown kinds give (0, 0)."""
    fields = _REPLICA_FIELDS.get(kind)
    if fields is None:
        return 0, 0
    desired_field, desired_source, available_field = fields
    source = resource.get(desired_source) or {}
    status = resource.get("status") or {}
    return int(status.get(available_field) or 0), int(source.get(desired_field) or 0)


class WorkloadReplicasClassifier(Classifier):
    classifier_id = "C05_workload_replicas"
    display_name = "Workload replicas"
    kinds = tuple(_REPLICA_FIELDS)
    priority = 20

    def classify(
        self,
        kind: str,
        resource: Mapping[str, Any],
        context: ClassifierContext,
    ) -> Classification:
        subject = ResourceRef.of(kind, resource)
        available, desired = replica_counts(kind, resource)
        if available >= desired:
            return Classification(subject=subject, verdict=HealthVerdict.HEALTHY, phase=f"{available}/{desired}")

        finding = Finding(
            severity=Severity.WARNING,
            subject=subject,
            message=f"{kind} '{subject.name}' has unavailable replicas: {available}/{desired} available",
            category="replicas",
        )
        return Classification(
            subject=subject,
            verdict=HealthVerdict.UNHEALTHY,
            findings=(finding,),
            phase=f"{available}/{desired}",
        )
