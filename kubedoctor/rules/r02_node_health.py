"""C02 Node health: Ready verdict plus independent pressure warnings."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from kubedoctor.models.resources import (
    Classification,
    Condition,
    Finding,
    HealthVerdict,
    ResourceRef,
    Severity,
    find_condition,
    parse_conditions,
)
from kubedoctor.rules.base import Classifier, ClassifierContext

_PRESSURE_CONDITIONS: tuple[str, ...] = ("MemoryPressure", "DiskPressure", "PIDPressure")


def node_verdict(conditions: tuple[Condition, ...]) -> HealthVerdict:
    ready = find_condition(conditions, "Ready")
    if ready is None:
        return HealthVerdict.UNKNOWN
    return HealthVerdict.READY if ready.status == "True" else HealthVerdict.NOT_READY


class NodeHealthClassifier(Classifier):
    classifier_id = "C02_node_health"
    display_name = "Node health"
    kinds = ("Node",)
    priority = 10

    def classify(
        self,
        kind: str,
        resource: Mapping[str, Any],
        context: ClassifierContext,
    ) -> Classification:
        subject = ResourceRef.of(kind, resource)
        conditions = parse_conditions((resource.get("status") or {}).get("conditions"))
        verdict = node_verdict(conditions)
        findings: list[Finding] = []

        if verdict is not HealthVerdict.READY:
            findings.append(
                Finding(
                    severity=Severity.CRITICAL,
                    subject=subject,
                    message=f"Node '{subject.name}' is {verdict.value}",
                    category="node_ready",
                )
            )

        for cond in conditions:
            if cond.type in _PRESSURE_CONDITIONS and cond.status == "True":
                findings.append(
                    Finding(
                        severity=Severity.WARNING,
                        subject=subject,
                        message=f"Node '{subject.name}' has {cond.type}",
                        category="node_pressure",
                    )
                )

        return Classification(subject=subject, verdict=verdict, findings=tuple(findings), phase=verdict.value)
