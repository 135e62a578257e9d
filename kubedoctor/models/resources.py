"""Core value types shared by classifiers, resolvers and the aggregator."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Severity(StrEnum):
    """Finding severity, highest first."""

    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    INFO = "INFO"


SEVERITY_ORDER: tuple[Severity, ...] = (Severity.CRITICAL, Severity.WARNING, Severity.INFO)


class HealthVerdict(StrEnum):
    """Coarse health classification of a single resource.

    Reconciler resources use READY..UNKNOWN; pods and workloads use
    HEALTHY/UNHEALTHY; nodes use READY/NOT_READY/UNKNOWN.
    """

    READY = "Ready"
    RECONCILING = "Reconciling"
    STALLED = "Stalled"
    FAILED = "Failed"
    SUSPENDED = "Suspended"
    UNKNOWN = "Unknown"
    HEALTHY = "Healthy"
    UNHEALTHY = "Unhealthy"
    NOT_READY = "NotReady"


@dataclass(frozen=True)
class ResourceRef:
    """Identity of a cluster object. Cluster-scoped objects use namespace ''."""

    kind: str
    namespace: str
    name: str

    @classmethod
    def of(cls, kind: str, resource: Mapping[str, Any]) -> ResourceRef:
        """Build a ref from a raw resource's metadata."""
        metadata = resource.get("metadata") or {}
        return cls(
            kind=kind,
            namespace=str(metadata.get("namespace") or ""),
            name=str(metadata.get("name") or ""),
        )

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True)
class Condition:
    """One entry of a resource's ``status.conditions`` list."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Condition:
        return cls(
            type=str(raw.get("type") or ""),
            status=str(raw.get("status") or ""),
            reason=str(raw.get("reason") or ""),
            message=str(raw.get("message") or ""),
            last_transition_time=str(raw.get("lastTransitionTime") or ""),
        )


def parse_conditions(raw: Iterable[Any] | None) -> tuple[Condition, ...]:
    """Parse a raw condition list, preserving API order and skipping junk."""
    if not raw:
        return ()
    return tuple(Condition.from_dict(c) for c in raw if isinstance(c, Mapping))


def find_condition(conditions: Iterable[Condition], condition_type: str) -> Condition | None:
    """Return the first condition of the given type, or None."""
    for cond in conditions:
        if cond.type == condition_type:
            return cond
    return None


@dataclass(frozen=True)
class Finding:
    """A single severity-tagged observation about a resource.

    ``category`` names the check that produced the finding; the aggregator
    keys its score deductions on it. ``details`` holds sub-notes such as the
    last termination reason.
    """

    severity: Severity
    subject: ResourceRef
    message: str
    suggested_action: str | None = None
    category: str = ""
    details: tuple[str, ...] = ()


@dataclass(frozen=True)
class Classification:
    """Output of one classifier run over one resource."""

    subject: ResourceRef
    verdict: HealthVerdict
    findings: tuple[Finding, ...] = ()
    phase: str = ""

    @property
    def healthy(self) -> bool:
        """True when the resource was checked and produced no findings."""
        return not self.findings

    @property
    def suggested_actions(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for finding in self.findings:
            if finding.suggested_action:
                seen.setdefault(finding.suggested_action, None)
        return tuple(seen)


@dataclass(frozen=True)
class DependencySet:
    """Resources a workload's pod template references.

    Every tuple is deduplicated and keeps first-seen order.
    """

    owner: ResourceRef
    config_maps: tuple[str, ...] = ()
    secrets: tuple[str, ...] = ()
    pvcs: tuple[str, ...] = ()
    service_account: str = ""
    matching_services: tuple[str, ...] = ()


@dataclass(frozen=True)
class QuotaUsage:
    """Usage of one resource line of a ResourceQuota.

    ``percentage`` is None when ``hard`` is zero or either side cannot be
    parsed as a quantity.
    """

    quota: ResourceRef
    resource: str
    used: str
    hard: str
    percentage: float | None


@dataclass(frozen=True)
class Score:
    """Security score in [0, 100] with its letter grade."""

    value: int
    grade: str


@dataclass(frozen=True)
class ScopeCounts:
    """Pod counts across a namespace or the whole cluster."""

    total: int = 0
    healthy: int = 0
    unhealthy: int = 0
    high_restarts: int = 0
    by_phase: dict[str, int] = field(default_factory=dict)
