"""C04 Pod security checklist.

Every check is evaluated independently and findings accumulate; the full
list is always produced. Init containers are checked before regular
containers. A container without a securityContext gets a single WARNING and
no further container-level checks, since every other check would only
restate the same absence. An empty securityContext (``{}``) counts as absent
at both pod and container level.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from kubedoctor.k8s.pods import has_security_context
from kubedoctor.models.resources import (
    Classification,
    Finding,
    HealthVerdict,
    ResourceRef,
    Severity,
)
from kubedoctor.rules.base import SECURITY, Classifier, ClassifierContext

_DANGEROUS_CAPABILITIES: frozenset[str] = frozenset({"SYS_ADMIN", "NET_ADMIN", "ALL"})

CATEGORY_HOST_NAMESPACE = "host_namespace"
CATEGORY_ROOT = "run_as_root"
CATEGORY_PRIVILEGED = "privileged"
CATEGORY_NO_SECURITY_CONTEXT = "no_security_context"
CATEGORY_PRIVILEGE_ESCALATION = "privilege_escalation"
CATEGORY_SECCOMP = "seccomp"
CATEGORY_READ_ONLY_ROOT = "read_only_root"
CATEGORY_CAPABILITIES = "capabilities"


def _pod_level(subject: ResourceRef, spec: Mapping[str, Any]) -> list[Finding]:
    findings: list[Finding] = []

    if spec.get("hostNetwork"):
        findings.append(
            Finding(
                severity=Severity.CRITICAL,
                subject=subject,
                message="Pod uses hostNetwork - shares node's network namespace",
                suggested_action="Remove hostNetwork unless absolutely required (e.g., CNI plugins)",
                category=CATEGORY_HOST_NAMESPACE,
            )
        )
    if spec.get("hostPID"):
        findings.append(
            Finding(
                severity=Severity.CRITICAL,
                subject=subject,
                message="Pod uses hostPID - can see all processes on the node",
                suggested_action="Remove hostPID to prevent process visibility across the node",
                category=CATEGORY_HOST_NAMESPACE,
            )
        )
    if spec.get("hostIPC"):
        findings.append(
            Finding(
                severity=Severity.WARNING,
                subject=subject,
                message="Pod uses hostIPC - shares node's IPC namespace",
                suggested_action="Remove hostIPC unless inter-process communication with host is required",
                category=CATEGORY_HOST_NAMESPACE,
            )
        )

    pod_sc = spec.get("securityContext")
    if not has_security_context(pod_sc):
        findings.append(
            Finding(
                severity=Severity.INFO,
                subject=subject,
                message="No pod-level SecurityContext defined",
                category=CATEGORY_NO_SECURITY_CONTEXT,
            )
        )
        return findings

    if pod_sc.get("runAsUser") == 0:
        findings.append(
            Finding(
                severity=Severity.CRITICAL,
                subject=subject,
                message="Pod runAsUser is 0 (root)",
                suggested_action="Set runAsUser to a non-zero UID (e.g., 1000)",
                category=CATEGORY_ROOT,
            )
        )
    if pod_sc.get("runAsNonRoot") is False:
        findings.append(
            Finding(
                severity=Severity.WARNING,
                subject=subject,
                message="Pod runAsNonRoot is explicitly set to false",
                category=CATEGORY_ROOT,
            )
        )
    if not pod_sc.get("seccompProfile"):
        findings.append(
            Finding(
                severity=Severity.INFO,
                subject=subject,
                message="No seccomp profile set at pod level",
                category=CATEGORY_SECCOMP,
            )
        )
    return findings


def _container_level(subject: ResourceRef, container: Mapping[str, Any]) -> list[Finding]:
    name = str(container.get("name") or "")
    sc = container.get("securityContext")
    if not has_security_context(sc):
        return [
            Finding(
                severity=Severity.WARNING,
                subject=subject,
                message=f"Container '{name}': no SecurityContext defined",
                suggested_action=f"Add SecurityContext to container '{name}'",
                category=CATEGORY_NO_SECURITY_CONTEXT,
            )
        ]

    findings: list[Finding] = []
    if sc.get("privileged") is True:
        findings.append(
            Finding(
                severity=Severity.CRITICAL,
                subject=subject,
                message=f"Container '{name}' runs in privileged mode",
                suggested_action=f"Remove privileged mode from container '{name}'",
                category=CATEGORY_PRIVILEGED,
            )
        )
    if sc.get("allowPrivilegeEscalation") is not False:
        findings.append(
            Finding(
                severity=Severity.WARNING,
                subject=subject,
                message=f"Container '{name}': allowPrivilegeEscalation is not explicitly disabled",
                category=CATEGORY_PRIVILEGE_ESCALATION,
            )
        )
    if sc.get("runAsUser") == 0:
        findings.append(
            Finding(
                severity=Severity.CRITICAL,
                subject=subject,
                message=f"Container '{name}' runAsUser is 0 (root)",
                category=CATEGORY_ROOT,
            )
        )
    if sc.get("readOnlyRootFilesystem") is not True:
        findings.append(
            Finding(
                severity=Severity.INFO,
                subject=subject,
                message=f"Container '{name}': readOnlyRootFilesystem is not enabled",
                category=CATEGORY_READ_ONLY_ROOT,
            )
        )

    capabilities = sc.get("capabilities")
    if isinstance(capabilities, Mapping):
        added = [str(cap) for cap in capabilities.get("add") or []]
        if added:
            severity = (
                Severity.CRITICAL if any(cap in _DANGEROUS_CAPABILITIES for cap in added) else Severity.WARNING
            )
            findings.append(
                Finding(
                    severity=severity,
                    subject=subject,
                    message=f"Container '{name}' added capabilities: {', '.join(added)}",
                    category=CATEGORY_CAPABILITIES,
                )
            )
    else:
        findings.append(
            Finding(
                severity=Severity.INFO,
                subject=subject,
                message=(
                    f"Container '{name}': no capabilities configuration "
                    "(consider dropping ALL and adding only needed)"
                ),
                category=CATEGORY_CAPABILITIES,
            )
        )
    return findings


class PodSecurityClassifier(Classifier):
    classifier_id = "C04_pod_security"
    display_name = "Pod security"
    kinds = ("Pod",)
    aspect = SECURITY
    priority = 10

    def classify(
        self,
        kind: str,
        resource: Mapping[str, Any],
        context: ClassifierContext,
    ) -> Classification:
        subject = ResourceRef.of(kind, resource)
        spec = resource.get("spec") or {}

        findings = _pod_level(subject, spec)
        containers = [*(spec.get("initContainers") or []), *(spec.get("containers") or [])]
        for container in containers:
            if isinstance(container, Mapping):
                findings.extend(_container_level(subject, container))

        critical = any(f.severity is Severity.CRITICAL for f in findings)
        return Classification(
            subject=subject,
            verdict=HealthVerdict.UNHEALTHY if critical else HealthVerdict.HEALTHY,
            findings=tuple(findings),
        )
