"""Kubernetes label selector semantics.

``matches`` is the equality-based subset rule used for Service and
NetworkPolicy podSelector matching. ``label_selector_matches`` evaluates a
full ``LabelSelector`` object including ``matchExpressions``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

ALL_NAMESPACES: frozenset[str] = frozenset({"", "all", "*"})


def matches(selector: Mapping[str, str] | None, labels: Mapping[str, str] | None) -> bool:
    """Return True iff every selector pair is present in labels with an equal value.

    An empty selector matches everything, including an empty label set.
    """
    if not selector:
        return True
    if not labels:
        return False
    return all(key in labels and labels[key] == value for key, value in selector.items())


def is_empty_selector(label_selector: Mapping[str, Any] | None) -> bool:
    """True when a LabelSelector has neither matchLabels nor matchExpressions."""
    if not label_selector:
        return True
    return not label_selector.get("matchLabels") and not label_selector.get("matchExpressions")


def _expression_matches(expression: Mapping[str, Any], labels: Mapping[str, str]) -> bool:
    key = str(expression.get("key") or "")
    operator = str(expression.get("operator") or "")
    values = [str(v) for v in expression.get("values") or []]

    if operator == "In":
        return key in labels and labels[key] in values
    if operator == "NotIn":
        return key not in labels or labels[key] not in values
    if operator == "Exists":
        return key in labels
    if operator == "DoesNotExist":
        return key not in labels
    # Unknown operators never match; the API server rejects them anyway.
    return False


def label_selector_matches(label_selector: Mapping[str, Any] | None, labels: Mapping[str, str] | None) -> bool:
    """Evaluate a full LabelSelector (matchLabels AND every matchExpression)."""
    if label_selector is None or is_empty_selector(label_selector):
        return True
    labels = labels or {}
    if not matches(label_selector.get("matchLabels") or {}, labels):
        return False
    return all(
        _expression_matches(expr, labels)
        for expr in label_selector.get("matchExpressions") or []
        if isinstance(expr, Mapping)
    )


def format_selector(selector: Mapping[str, str] | None) -> str:
    """Render a selector as ``k=v,k2=v2`` in insertion order."""
    if not selector:
        return ""
    return ",".join(f"{k}={v}" for k, v in selector.items())


def format_labels(labels: Mapping[str, str] | None) -> str:
    """Render labels for display; ``<none>`` when empty."""
    if not labels:
        return "<none>"
    return ", ".join(f"{k}={v}" for k, v in labels.items())


def namespace_scope(namespace: str | None) -> str | None:
    """Normalise a namespace argument: None means all namespaces."""
    if namespace is None or namespace.strip() in ALL_NAMESPACES:
        return None
    return namespace.strip()
