"""Classifier base class and kind-indexed classifier registry.

Each resource kind maps to exactly one classifier per aspect ("health" or
"security"). Adding support for a kind means adding a classifier module, not
another branch at the call sites.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

from kubedoctor.models.config import ThresholdConfig
from kubedoctor.models.resources import Classification
from kubedoctor.observability.logging import get_logger
from kubedoctor.observability.metrics import classifier_evaluations_total, findings_total

_logger = get_logger("classifier_registry")

HEALTH = "health"
SECURITY = "security"


@dataclass(frozen=True)
class ClassifierContext:
    """Per-request inputs a classifier may need beyond the resource itself."""

    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)


class Classifier(ABC):
    """Abstract base class for resource classifiers.

    Subclasses MUST define class-level attributes:
        classifier_id -- e.g. "C01_pod_health"
        display_name  -- e.g. "Pod health"
        kinds         -- resource kinds handled: ("Pod",)
        aspect        -- HEALTH or SECURITY
        priority      -- lower wins when two classifiers claim a kind

    ``classify`` MUST be pure: no API calls, no shared state, and no raising
    on well-formed input. Missing optional fields count as zero values.
    """

    classifier_id: ClassVar[str]
    display_name: ClassVar[str]
    kinds: ClassVar[tuple[str, ...]]
    aspect: ClassVar[str] = HEALTH
    priority: ClassVar[int] = 50

    @abstractmethod
    def classify(
        self,
        kind: str,
        resource: Mapping[str, Any],
        context: ClassifierContext,
    ) -> Classification:
        """Produce a verdict and findings for one resource."""


class UnsupportedKindError(LookupError):
    """No classifier is registered for the requested kind and aspect."""

    def __init__(self, kind: str, aspect: str) -> None:
        super().__init__(f"No {aspect} classifier registered for kind {kind!r}")
        self.kind = kind
        self.aspect = aspect


class ClassifierRegistry:
    """Strategy table mapping (aspect, kind) to a classifier instance."""

    def __init__(self, context: ClassifierContext | None = None) -> None:
        self._context = context or ClassifierContext()
        self._classifiers: list[Classifier] = []
        self._table: dict[tuple[str, str], Classifier] = {}

    @property
    def context(self) -> ClassifierContext:
        return self._context

    @property
    def classifiers(self) -> list[Classifier]:
        return list(self._classifiers)

    def register(self, classifier: Classifier) -> None:
        """Add a classifier and rebuild the table.

        Tie-breaker: when two classifiers claim the same (aspect, kind), the
        lower (priority, classifier_id) wins.
        """
        self._classifiers.append(classifier)
        self._classifiers.sort(key=lambda c: (c.priority, c.classifier_id))
        table: dict[tuple[str, str], Classifier] = {}
        for candidate in self._classifiers:
            for kind in candidate.kinds:
                table.setdefault((candidate.aspect, kind), candidate)
        self._table = table

    def supports(self, kind: str, aspect: str = HEALTH) -> bool:
        return (aspect, kind) in self._table

    def kinds(self, aspect: str = HEALTH) -> list[str]:
        return sorted(kind for table_aspect, kind in self._table if table_aspect == aspect)

    def classify(self, kind: str, resource: Mapping[str, Any], aspect: str = HEALTH) -> Classification:
        """Classify one resource with the classifier registered for its kind."""
        classifier = self._table.get((aspect, kind))
        if classifier is None:
            raise UnsupportedKindError(kind, aspect)

        result = classifier.classify(kind, resource, self._context)
        classifier_evaluations_total.labels(classifier_id=classifier.classifier_id).inc()
        for finding in result.findings:
            findings_total.labels(severity=finding.severity.value).inc()
        return result
