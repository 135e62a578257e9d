"""C06 PersistentVolumeClaim binding."""

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


class PVCBindingClassifier(Classifier):
    classifier_id = "C06_pvc_binding"
    display_name = "PVC binding"
    kinds = ("PersistentVolumeClaim",)
    priority = 20

    def classify(
        self,
        kind: str,
        resource: Mapping[str, Any],
        context: ClassifierContext,
    ) -> Classification:
        subject = ResourceRef.of(kind, resource)
        phase = str((resource.get("status") or {}).get("phase") or "Unknown")
        if phase == "Bound":
            return Classification(subject=subject, verdict=HealthVerdict.HEALTHY, phase=phase)

        finding = Finding(
            severity=Severity.WARNING,
            subject=subject,
            message=f"PVC '{subject.name}' is not bound: {phase}",
            suggested_action="Check the StorageClass and provisioner events for this claim",
            category="pvc_binding",
        )
        return Classification(subject=subject, verdict=HealthVerdict.UNHEALTHY, findings=(finding,), phase=phase)
