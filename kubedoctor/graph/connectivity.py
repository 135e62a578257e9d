"""NetworkPolicy connectivity analysis for a single pod.

Policy selection here uses the podSelector's matchLabels only, and an
empty podSelector selects every pod in the namespace. This differs from
Service matching in ``resolver``, where an empty selector matches nothing.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from kubedoctor.k8s.selectors import format_selector, is_empty_selector, matches
from kubedoctor.models.analysis import ConnectivityReport, PolicyMatch
from kubedoctor.models.resources import Finding, ResourceRef, Severity

INGRESS = "Ingress"
EGRESS = "Egress"
ALL_SOURCES = "All Sources"
ALL_DESTINATIONS = "All Destinations"


def policy_types(policy: Mapping[str, Any]) -> tuple[str, ...]:
    """Declared policyTypes, defaulting to Ingress only."""
    declared = (policy.get("spec") or {}).get("policyTypes")
    return tuple(str(t) for t in declared) if declared else (INGRESS,)


def policy_selects_pod(policy: Mapping[str, Any], pod_labels: Mapping[str, str]) -> bool:
    selector = (policy.get("spec") or {}).get("podSelector") or {}
    if is_empty_selector(selector):
        return True
    return matches(selector.get("matchLabels") or {}, pod_labels)


def describe_peers(rules: Iterable[Mapping[str, Any]], peer_field: str, everything: str) -> list[str]:
    """Render the peers of ingress (``from``) or egress (``to``) rules.

    A rule without peers allows ``everything``. Serialised models may carry
    ``_from`` instead of ``from``.
    """
    described: list[str] = []
    for rule in rules:
        peers = rule.get(peer_field) or rule.get(f"_{peer_field}") or []
        if not peers:
            described.append(everything)
            continue
        for peer in peers:
            pod_selector = (peer.get("podSelector") or {}).get("matchLabels")
            if pod_selector:
                described.append(f"Pods: {format_selector(pod_selector)}")
            ns_selector = (peer.get("namespaceSelector") or {}).get("matchLabels")
            if ns_selector:
                described.append(f"NS: {format_selector(ns_selector)}")
            ip_block = peer.get("ipBlock")
            if ip_block:
                described.append(f"CIDR: {ip_block.get('cidr', '')}")
    return described


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def analyze_connectivity(pod: Mapping[str, Any], policies: Iterable[Mapping[str, Any]]) -> ConnectivityReport:
    """Compute which policies select the pod and the traffic they allow."""
    subject = ResourceRef.of("Pod", pod)
    labels = dict((pod.get("metadata") or {}).get("labels") or {})

    selecting = [p for p in policies if policy_selects_pod(p, labels)]
    if not selecting:
        return ConnectivityReport(
            pod=subject,
            labels=labels,
            findings=(
                Finding(
                    severity=Severity.INFO,
                    subject=subject,
                    message="No network policies select this pod - all traffic is allowed by default",
                    category="network_policy",
                ),
            ),
        )

    policy_matches: list[PolicyMatch] = []
    findings: list[Finding] = []
    ingress_sources: list[str] = []
    egress_destinations: list[str] = []
    ingress_restricted = False
    egress_restricted = False

    for policy in selecting:
        spec = policy.get("spec") or {}
        name = str((policy.get("metadata") or {}).get("name") or "")
        types = policy_types(policy)
        ingress_rules = spec.get("ingress") or []
        egress_rules = spec.get("egress") or []

        ingress_peers = describe_peers(ingress_rules, "from", ALL_SOURCES)
        egress_peers = describe_peers(egress_rules, "to", ALL_DESTINATIONS)
        ingress_sources.extend(ingress_peers)
        egress_destinations.extend(egress_peers)

        if INGRESS in types:
            ingress_restricted = True
            if not ingress_rules:
                findings.append(
                    Finding(
                        severity=Severity.WARNING,
                        subject=subject,
                        message=f"Policy '{name}': Ingress policy with no rules - all ingress DENIED",
                        category="network_policy",
                    )
                )
        if EGRESS in types:
            egress_restricted = True
            if not egress_rules:
                findings.append(
                    Finding(
                        severity=Severity.WARNING,
                        subject=subject,
                        message=f"Policy '{name}': Egress policy with no rules - all egress DENIED",
                        category="network_policy",
                    )
                )

        policy_matches.append(
            PolicyMatch(
                name=name,
                policy_types=types,
                ingress_peers=_dedupe(ingress_peers),
                egress_peers=_dedupe(egress_peers),
            )
        )

    return ConnectivityReport(
        pod=subject,
        labels=labels,
        policies=tuple(policy_matches),
        ingress_restricted=ingress_restricted,
        egress_restricted=egress_restricted,
        ingress_sources=_dedupe(ingress_sources),
        egress_destinations=_dedupe(egress_destinations),
        findings=tuple(findings),
    )
