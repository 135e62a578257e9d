"""Classifier auto-registration and public API for the classifier registry.

Auto-discovers all Classifier subclasses from the r*.py files in this
package.

Usage::

    from kubedoctor.rules import build_registry

    registry = build_registry(thresholds)
    result = registry.classify("Pod", pod)

Or for manual control::

    from kubedoctor.rules.base import ClassifierRegistry
    from kubedoctor.rules.r01_pod_health import PodHealthClassifier

    registry = ClassifierRegistry()
    registry.register(PodHealthClassifier())
"""

from __future__ import annotations

import importlib
import inspect
import pkgutil
from pathlib import Path

from kubedoctor.models.config import ThresholdConfig
from kubedoctor.observability.logging import get_logger
from kubedoctor.rules.base import (
    HEALTH,
    SECURITY,
    Classifier,
    ClassifierContext,
    ClassifierRegistry,
    UnsupportedKindError,
)

__all__ = [
    "HEALTH",
    "SECURITY",
    "Classifier",
    "ClassifierContext",
    "ClassifierRegistry",
    "UnsupportedKindError",
    "build_registry",
    "discover_classifiers",
]

_logger = get_logger("classifier_registry.discovery")


def discover_classifiers() -> list[type[Classifier]]:
    """Discover all Classifier subclasses from r*.py modules in this package.

    Modules are processed lexicographically by filename; the registry
    re-sorts classifiers by (priority, classifier_id) on registration.
    """
    package_path = Path(__file__).parent
    classes: list[type[Classifier]] = []
    seen: set[str] = set()

    for module_info in sorted(pkgutil.iter_modules([str(package_path)]), key=lambda m: m.name):
        if not module_info.name.startswith("r") or not module_info.name[1:2].isdigit():
            continue
        module_name = f"kubedoctor.rules.{module_info.name}"
        try:
            module = importlib.import_module(module_name)
        except ImportError as exc:
            _logger.error(
                "classifier_module_import_failed",
                module=module_name,
                error=str(exc),
            )
            continue

        for _, obj in inspect.getmembers(module, inspect.isclass):
            if (
                issubclass(obj, Classifier)
                and obj is not Classifier
                and not inspect.isabstract(obj)
                and obj.__module__ == module_name
                and obj.classifier_id not in seen
            ):
                classes.append(obj)
                seen.add(obj.classifier_id)

    _logger.info(
        "classifier_discovery_complete",
        total=len(classes),
        classifier_ids=[cls.classifier_id for cls in classes],
    )
    return classes


def build_registry(thresholds: ThresholdConfig | None = None) -> ClassifierRegistry:
    """Construct a ClassifierRegistry with every discovered classifier registered."""
    registry = ClassifierRegistry(ClassifierContext(thresholds=thresholds or ThresholdConfig()))
    for cls in discover_classifiers():
        registry.register(cls())

    _logger.info(
        "classifier_registry_built",
        health_kinds=registry.kinds(HEALTH),
        security_kinds=registry.kinds(SECURITY),
    )
    return registry
