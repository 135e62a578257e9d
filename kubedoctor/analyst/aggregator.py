"""Aggregation of classifications into counts, histograms and a security score.

The score formula is fixed and explainable:

    score = 100
    - 20  if the namespace has no NetworkPolicies
    - 15  if any pod runs a privileged container
    - 10  if any pod runs as root (pod or container runAsUser == 0)
    -  5  if the namespace has no PodDisruptionBudgets
    -  5  if the namespace has no ResourceQuotas
    -  5  if any pod has no security context at all
    -> clamped to [0, 100]

Each deduction applies at most once. A category whose collector was
unavailable is never deducted; it is reported with 0 points instead.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from kubedoctor.k8s.pods import container_statuses, has_security_context, is_pod_healthy, pod_phase, pod_spec
from kubedoctor.models.analysis import Deduction
from kubedoctor.models.resources import SEVERITY_ORDER, Finding, Score, ScopeCounts

NO_NETWORK_POLICIES = "no_network_policies"
PRIVILEGED_PODS = "privileged_pods"
ROOT_PODS = "root_pods"
NO_PDB = "no_pdb"
NO_QUOTA = "no_quota"
NO_SECURITY_CONTEXT = "no_security_context"

_DEDUCTIONS: dict[str, tuple[int, str]] = {
    NO_NETWORK_POLICIES: (20, "No NetworkPolicies - all traffic is allowed"),
    PRIVILEGED_PODS: (15, "Privileged containers are running"),
    ROOT_PODS: (10, "Pods are running as root"),
    NO_PDB: (5, "No PodDisruptionBudgets"),
    NO_QUOTA: (5, "No ResourceQuotas"),
    NO_SECURITY_CONTEXT: (5, "Pods without any SecurityContext"),
}

_GRADES: tuple[tuple[int, str], ...] = ((90, "A"), (80, "B"), (70, "C"), (60, "D"))


def severity_histogram(findings: Iterable[Finding]) -> dict[str, int]:
    """Count findings per severity; every severity is present, highest first."""
    histogram = {severity.value: 0 for severity in SEVERITY_ORDER}
    for finding in findings:
        histogram[finding.severity.value] += 1
    return histogram


def grade_for(value: int) -> str:
    for threshold, grade in _GRADES:
        if value >= threshold:
            return grade
    return "F"


@dataclass(frozen=True)
class PodSecurityFlags:
    privileged: bool
    root: bool
    no_security_context: bool


def pod_security_flags(pod: Mapping[str, Any]) -> PodSecurityFlags:
    """Per-pod audit flags; a pod counts once however many containers match."""
    spec = pod_spec(pod)
    pod_sc = spec.get("securityContext") or {}
    containers = [c for c in [*(spec.get("initContainers") or []), *(spec.get("containers") or [])] if c]
    container_scs = [c.get("securityContext") or {} for c in containers]

    privileged = any(sc.get("privileged") is True for sc in container_scs)
    root = pod_sc.get("runAsUser") == 0 or any(sc.get("runAsUser") == 0 for sc in container_scs)
    no_security_context = not has_security_context(pod_sc) and not any(has_security_context(sc) for sc in container_scs)
    return PodSecurityFlags(privileged=privileged, root=root, no_security_context=no_security_context)


class SecurityScorer:
    """Applies the fixed category deductions to namespace audit counts.

    Pass None for a count whose collector was unavailable.
    """

    def score(
        self,
        *,
        network_policies: int | None,
        pdbs: int | None,
        quotas: int | None,
        privileged_pods: int | None,
        root_pods: int | None,
        no_security_context_pods: int | None,
    ) -> tuple[Score, tuple[Deduction, ...]]:
        triggers: dict[str, bool | None] = {
            NO_NETWORK_POLICIES: None if network_policies is None else network_policies == 0,
            PRIVILEGED_PODS: None if privileged_pods is None else privileged_pods > 0,
            ROOT_PODS: None if root_pods is None else root_pods > 0,
            NO_PDB: None if pdbs is None else pdbs == 0,
            NO_QUOTA: None if quotas is None else quotas == 0,
            NO_SECURITY_CONTEXT: None if no_security_context_pods is None else no_security_context_pods > 0,
        }

        value = 100
        deductions: list[Deduction] = []
        for category, triggered in triggers.items():
            points, reason = _DEDUCTIONS[category]
            if triggered is None:
                deductions.append(Deduction(category=category, points=0, reason="not available"))
            elif triggered:
                value -= points
                deductions.append(Deduction(category=category, points=points, reason=reason))

        value = max(0, min(100, value))
        return Score(value=value, grade=grade_for(value)), tuple(deductions)


def high_restart_count(pod: Mapping[str, Any], threshold: int) -> bool:
    return any(int(cs.get("restartCount") or 0) > threshold for cs in container_statuses(pod))


def scope_counts(pods: Iterable[Mapping[str, Any]], restart_threshold: int) -> ScopeCounts:
    total = healthy = high_restarts = 0
    by_phase: dict[str, int] = {}
    for pod in pods:
        total += 1
        if is_pod_healthy(pod):
            healthy += 1
        if high_restart_count(pod, restart_threshold):
            high_restarts += 1
        phase = pod_phase(pod)
        by_phase[phase] = by_phase.get(phase, 0) + 1
    return ScopeCounts(
        total=total,
        healthy=healthy,
        unhealthy=total - healthy,
        high_restarts=high_restarts,
        by_phase=by_phase,
    )
