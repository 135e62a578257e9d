"""Prometheus metrics for KubeDoctor."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# Diagnostic operation metrics
diagnostics_requests_total = Counter(
    "kubedoctor_diagnostics_requests_total",
    "Total diagnostic operations",
    ["operation", "outcome"],
)

diagnostics_duration_seconds = Histogram(
    "kubedoctor_diagnostics_duration_seconds",
    "Diagnostic operation duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# Collector metrics
collector_fetches_total = Counter(
    "kubedoctor_collector_fetches_total",
    "Total cluster fetches issued by collectors",
    ["kind", "outcome"],
)

collector_fetch_duration_seconds = Histogram(
    "kubedoctor_collector_fetch_duration_seconds",
    "Duration of a single cluster fetch in seconds",
    ["kind"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# Classifier metrics
classifier_evaluations_total = Counter(
    "kubedoctor_classifier_evaluations_total",
    "Total classifier evaluations",
    ["classifier_id"],
)

findings_total = Counter(
    "kubedoctor_findings_total",
    "Total findings emitted by classifiers",
    ["severity"],
)
