"""C07 ResourceQuota usage.

Each ``status.hard`` line is compared with its ``status.used`` counterpart
using the quantity parser, so "9.5"/"10" and "750m"/"1" both work. Lines
whose percentage cannot be computed are reported without a finding.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from kubedoctor.k8s.quantity import usage_percentage
from kubedoctor.models.resources import (
    Classification,
    Finding,
    HealthVerdict,
    QuotaUsage,
    ResourceRef,
    Severity,
)
from kubedoctor.rules.base import Classifier, ClassifierContext


def quota_usages(resource: Mapping[str, Any]) -> list[QuotaUsage]:
    """Per-resource usage lines in ``status.hard`` order."""
    subject = ResourceRef.of("ResourceQuota", resource)
    status = resource.get("status") or {}
    hard: Mapping[str, Any] = status.get("hard") or {}
    used: Mapping[str, Any] = status.get("used") or {}
    usages: list[QuotaUsage] = []
    for name, hard_value in hard.items():
        used_value = str(used.get(name) or "0")
        usages.append(
            QuotaUsage(
                quota=subject,
                resource=str(name),
                used=used_value,
                hard=str(hard_value),
                percentage=usage_percentage(used_value, str(hard_value)),
            )
        )
    return usages


def usage_severity(percentage: float | None, warning_percent: float, critical_percent: float) -> Severity | None:
    if percentage is None:
        return None
    if percentage >= critical_percent:
        return Severity.CRITICAL
    if percentage >= warning_percent:
        return Severity.WARNING
    return None


class ResourceQuotaClassifier(Classifier):
    classifier_id = "C07_resource_quota"
    display_name = "Resource quota usage"
    kinds = ("ResourceQuota",)
    priority = 20

    def classify(
        self,
        kind: str,
        resource: Mapping[str, Any],
        context: ClassifierContext,
    ) -> Classification:
        subject = ResourceRef.of(kind, resource)
        thresholds = context.thresholds
        findings: list[Finding] = []

        for usage in quota_usages(resource):
            severity = usage_severity(
                usage.percentage,
                thresholds.quota_warning_percent,
                thresholds.quota_critical_percent,
            )
            if severity is None or usage.percentage is None:
                continue
            findings.append(
                Finding(
                    severity=severity,
                    subject=subject,
                    message=f"{usage.resource}: {usage.percentage:.0f}% used ({usage.used}/{usage.hard})",
                    category="quota_usage",
                )
            )

        critical = any(f.severity is Severity.CRITICAL for f in findings)
        return Classification(
            subject=subject,
            verdict=HealthVerdict.UNHEALTHY if critical else HealthVerdict.HEALTHY,
            findings=tuple(findings),
        )
