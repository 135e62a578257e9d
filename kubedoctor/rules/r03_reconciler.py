"""C03 GitOps reconciler health.

Applies to every Flux toolkit kind. The verdict is a strict priority chain,
not a vote:

    suspended        -> Suspended
    Stalled=True     -> Stalled
    Reconciling=True -> Reconciling
    Ready present    -> Ready if True else Failed
    otherwise        -> Unknown
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
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

RECONCILER_KINDS: tuple[str, ...] = (
    "Kustomization",
    "HelmRelease",
    "GitRepository",
    "OCIRepository",
    "HelmRepository",
    "HelmChart",
    "Bucket",
    "ImageRepository",
    "ImagePolicy",
    "ImageUpdateAutomation",
)


def reconciler_verdict(conditions: Iterable[Condition], suspended: bool) -> HealthVerdict:
    """Derive the single verdict for a reconciler resource."""
    if suspended:
        return HealthVerdict.SUSPENDED
    conditions = tuple(conditions)
    stalled = find_condition(conditions, "Stalled")
    if stalled is not None and stalled.status == "True":
        return HealthVerdict.STALLED
    reconciling = find_condition(conditions, "Reconciling")
    if reconciling is not None and reconciling.status == "True":
        return HealthVerdict.RECONCILING
    ready = find_condition(conditions, "Ready")
    if ready is not None:
        return HealthVerdict.READY if ready.status == "True" else HealthVerdict.FAILED
    return HealthVerdict.UNKNOWN


def condition_message(conditions: Iterable[Condition], condition_type: str) -> str:
    cond = find_condition(conditions, condition_type)
    return cond.message if cond is not None else ""


def resource_verdict(resource: Mapping[str, Any]) -> HealthVerdict:
    """Shortcut for callers holding a raw reconciler resource."""
    conditions = parse_conditions((resource.get("status") or {}).get("conditions"))
    suspended = bool((resource.get("spec") or {}).get("suspend"))
    return reconciler_verdict(conditions, suspended)


class ReconcilerClassifier(Classifier):
    classifier_id = "C03_reconciler"
    display_name = "GitOps reconciler"
    kinds = RECONCILER_KINDS
    priority = 10

    def classify(
        self,
        kind: str,
        resource: Mapping[str, Any],
        context: ClassifierContext,
    ) -> Classification:
        subject = ResourceRef.of(kind, resource)
        conditions = parse_conditions((resource.get("status") or {}).get("conditions"))
        suspended = bool((resource.get("spec") or {}).get("suspend"))
        verdict = reconciler_verdict(conditions, suspended)

        finding: Finding | None = None
        if verdict is HealthVerdict.FAILED:
            finding = Finding(
                severity=Severity.CRITICAL,
                subject=subject,
                message=f"{kind} is failing: {condition_message(conditions, 'Ready')}",
                category="reconciler_state",
            )
        elif verdict is HealthVerdict.STALLED:
            finding = Finding(
                severity=Severity.WARNING,
                subject=subject,
                message=f"{kind} is stalled: {condition_message(conditions, 'Stalled')}",
                category="reconciler_state",
            )
        elif verdict is HealthVerdict.RECONCILING:
            finding = Finding(
                severity=Severity.INFO,
                subject=subject,
                message=f"{kind} is reconciling: {condition_message(conditions, 'Reconciling')}",
                category="reconciler_state",
            )
        elif verdict is HealthVerdict.SUSPENDED:
            finding = Finding(
                severity=Severity.INFO,
                subject=subject,
                message=f"{kind} is suspended",
                category="reconciler_state",
            )

        return Classification(
            subject=subject,
            verdict=verdict,
            findings=(finding,) if finding is not None else (),
            phase=verdict.value,
        )
