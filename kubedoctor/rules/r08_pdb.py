"""C08 PodDisruptionBudget blocking voluntary disruptions."""

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


class PDBClassifier(Classifier):
    classifier_id = "C08_pdb"
    display_name = "PodDisruptionBudget"
    kinds = ("PodDisruptionBudget",)
    priority = 20

    def classify(
        self,
        kind: str,
        resource: Mapping[str, Any],
        context: ClassifierContext,
    ) -> Classification:
        subject = ResourceRef.of(kind, resource)
        status = resource.get("status") or {}
        allowed = int(status.get("disruptionsAllowed") or 0)
        expected = int(status.get("expectedPods") or 0)

        if allowed == 0 and expected > 0:
            finding = Finding(
                severity=Severity.WARNING,
                subject=subject,
                message=f"PDB '{subject.name}' has 0 disruptions allowed",
                suggested_action="Node drains will block until more replicas are healthy",
                category="pdb_blocking",
            )
            return Classification(subject=subject, verdict=HealthVerdict.UNHEALTHY, findings=(finding,))
        return Classification(subject=subject, verdict=HealthVerdict.HEALTHY)
