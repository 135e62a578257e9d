"""C01 Pod health.

Verdict is Healthy/Unhealthy from phase and container readiness. Findings
walk container statuses in API order, then pod conditions, then container
resource limits.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from kubedoctor.k8s.pods import (
    container_limit,
    container_statuses,
    find_container,
    is_pod_healthy,
    last_terminated_state,
    pod_phase,
    pod_phase_reason,
    pod_spec,
    terminated_state,
    waiting_state,
)
from kubedoctor.models.resources import (
    Classification,
    Finding,
    HealthVerdict,
    ResourceRef,
    Severity,
    parse_conditions,
)
from kubedoctor.rules.base import Classifier, ClassifierContext

_IMAGE_PULL_REASONS: frozenset[str] = frozenset({"ImagePullBackOff", "ErrImagePull"})

CATEGORY_CONTAINER_STATE = "container_state"
CATEGORY_RESTARTS = "restarts"
CATEGORY_SCHEDULING = "scheduling"
CATEGORY_RESOURCES = "resources"


def _crash_loop_finding(
    subject: ResourceRef,
    pod: Mapping[str, Any],
    name: str,
    container_status: Mapping[str, Any],
) -> Finding:
    details: list[str] = []
    action = f"Check application logs for container '{name}'"
    last = last_terminated_state(container_status)
    if last is not None:
        reason = str(last.get("reason") or "Unknown")
        details.append(f"Last termination reason: {reason}")
        details.append(f"Exit code: {last.get('exitCode', 'unknown')}")
        if reason == "OOMKilled":
            details.append("Container was killed due to out-of-memory")
            limit = container_limit(find_container(pod, name), "memory") or "unknown"
            action = f"Increase memory limit for container '{name}' (currently {limit}, OOMKilled)"
    return Finding(
        severity=Severity.CRITICAL,
        subject=subject,
        message=f"Container '{name}' is in CrashLoopBackOff",
        suggested_action=action,
        category=CATEGORY_CONTAINER_STATE,
        details=tuple(details),
    )


class PodHealthClassifier(Classifier):
    classifier_id = "C01_pod_health"
    display_name = "Pod health"
    kinds = ("Pod",)
    priority = 10

    def classify(
        self,
        kind: str,
        resource: Mapping[str, Any],
        context: ClassifierContext,
    ) -> Classification:
        subject = ResourceRef.of(kind, resource)
        findings: list[Finding] = []
        threshold = context.thresholds.restart_threshold

        for cs in container_statuses(resource):
            name = str(cs.get("name") or "")
            waiting = waiting_state(cs)
            if waiting is not None:
                reason = str(waiting.get("reason") or "Unknown")
                if reason == "CrashLoopBackOff":
                    findings.append(_crash_loop_finding(subject, resource, name, cs))
                elif reason in _IMAGE_PULL_REASONS:
                    findings.append(
                        Finding(
                            severity=Severity.CRITICAL,
                            subject=subject,
                            message=f"Container '{name}' cannot pull image: {waiting.get('message') or reason}",
                            suggested_action=f"Check image name and registry credentials for container '{name}'",
                            category=CATEGORY_CONTAINER_STATE,
                        )
                    )
                else:
                    findings.append(
                        Finding(
                            severity=Severity.WARNING,
                            subject=subject,
                            message=f"Container '{name}' is waiting: {reason}",
                            category=CATEGORY_CONTAINER_STATE,
                        )
                    )

            terminated = terminated_state(cs)
            if terminated is not None and int(terminated.get("exitCode") or 0) != 0:
                findings.append(
                    Finding(
                        severity=Severity.WARNING,
                        subject=subject,
                        message=(
                            f"Container '{name}' terminated with exit code {terminated.get('exitCode')} "
                            f"({terminated.get('reason') or ''})"
                        ),
                        category=CATEGORY_CONTAINER_STATE,
                    )
                )

            restarts = int(cs.get("restartCount") or 0)
            if restarts > threshold:
                findings.append(
                    Finding(
                        severity=Severity.WARNING,
                        subject=subject,
                        message=f"Container '{name}' has high restart count: {restarts}",
                        category=CATEGORY_RESTARTS,
                    )
                )

        pending = pod_phase(resource) == "Pending"
        for cond in parse_conditions((resource.get("status") or {}).get("conditions")):
            if cond.type == "PodScheduled" and cond.status == "False":
                findings.append(
                    Finding(
                        severity=Severity.CRITICAL,
                        subject=subject,
                        message=f"Pod not scheduled: {cond.message}",
                        suggested_action="Check cluster capacity and node selectors/tolerations" if pending else None,
                        category=CATEGORY_SCHEDULING,
                    )
                )

        for container in pod_spec(resource).get("containers") or []:
            if not isinstance(container, Mapping):
                continue
            if not container_limit(container, "memory"):
                findings.append(
                    Finding(
                        severity=Severity.INFO,
                        subject=subject,
                        message=f"Container '{container.get('name', '')}' has no memory limit set",
                        category=CATEGORY_RESOURCES,
                    )
                )

        verdict = HealthVerdict.HEALTHY if is_pod_healthy(resource) else HealthVerdict.UNHEALTHY
        return Classification(
            subject=subject,
            verdict=verdict,
            findings=tuple(findings),
            phase=pod_phase_reason(resource),
        )
