"""C09 RBAC binding review.

Flags grants that hand broad access to broad audiences. Each subject is
checked on its own; findings accumulate per binding.

    cluster-admin bound cluster-wide         -> CRITICAL
    cluster-admin bound in one namespace     -> WARNING
    system:anonymous / system:unauthenticated -> CRITICAL
    system:authenticated                     -> WARNING
    the ``default`` ServiceAccount           -> WARNING
"""

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
from kubedoctor.rules.base import SECURITY, Classifier, ClassifierContext

CATEGORY_CLUSTER_ADMIN = "cluster_admin"
CATEGORY_PUBLIC_SUBJECT = "public_subject"
CATEGORY_DEFAULT_SERVICE_ACCOUNT = "default_service_account"

_UNAUTHENTICATED: frozenset[str] = frozenset({"system:anonymous", "system:unauthenticated"})
_AUTHENTICATED = "system:authenticated"


def role_label(binding: Mapping[str, Any]) -> str:
    ref = binding.get("roleRef") or {}
    return f"{ref.get('kind') or 'Role'}/{ref.get('name') or ''}"


def binding_subjects(binding: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    return [s for s in binding.get("subjects") or [] if isinstance(s, Mapping)]


def _subject_findings(subject: ResourceRef, role: str, entry: Mapping[str, Any]) -> list[Finding]:
    kind = str(entry.get("kind") or "")
    name = str(entry.get("name") or "")

    if kind in ("User", "Group") and name in _UNAUTHENTICATED:
        return [
            Finding(
                severity=Severity.CRITICAL,
                subject=subject,
                message=f"{role} is granted to unauthenticated {kind.lower()} '{name}'",
                suggested_action="Remove the anonymous subject from the binding",
                category=CATEGORY_PUBLIC_SUBJECT,
            )
        ]
    if kind == "Group" and name == _AUTHENTICATED:
        return [
            Finding(
                severity=Severity.WARNING,
                subject=subject,
                message=f"{role} is granted to every authenticated user",
                suggested_action="Bind the role to specific users, groups or ServiceAccounts",
                category=CATEGORY_PUBLIC_SUBJECT,
            )
        ]
    if kind == "ServiceAccount" and name == "default":
        namespace = str(entry.get("namespace") or subject.namespace)
        return [
            Finding(
                severity=Severity.WARNING,
                subject=subject,
                message=f"{role} is granted to the default ServiceAccount in '{namespace}'",
                suggested_action="Create a dedicated ServiceAccount for workloads that need this role",
                category=CATEGORY_DEFAULT_SERVICE_ACCOUNT,
            )
        ]
    return []


class RBACBindingClassifier(Classifier):
    classifier_id = "C09_rbac_binding"
    display_name = "RBAC binding"
    kinds = ("RoleBinding", "ClusterRoleBinding")
    aspect = SECURITY
    priority = 20

    def classify(
        self,
        kind: str,
        resource: Mapping[str, Any],
        context: ClassifierContext,
    ) -> Classification:
        subject = ResourceRef.of(kind, resource)
        role = role_label(resource)
        subjects = binding_subjects(resource)

        findings: list[Finding] = []
        if (resource.get("roleRef") or {}).get("name") == "cluster-admin" and subjects:
            cluster_wide = kind == "ClusterRoleBinding"
            findings.append(
                Finding(
                    severity=Severity.CRITICAL if cluster_wide else Severity.WARNING,
                    subject=subject,
                    message=(
                        f"cluster-admin is bound {'cluster-wide' if cluster_wide else 'in this namespace'} "
                        f"to {len(subjects)} subject(s)"
                    ),
                    suggested_action="Grant a narrower role",
                    category=CATEGORY_CLUSTER_ADMIN,
                )
            )
        for entry in subjects:
            findings.extend(_subject_findings(subject, role, entry))

        critical = any(f.severity is Severity.CRITICAL for f in findings)
        return Classification(
            subject=subject,
            verdict=HealthVerdict.UNHEALTHY if critical else HealthVerdict.HEALTHY,
            findings=tuple(findings),
        )
