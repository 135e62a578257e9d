"""Configuration data structures for KubeDoctor."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LogConfig:
    level: str = "info"


@dataclass(frozen=True)
class CollectorConfig:
    """Bounds applied to every cluster fetch."""

    fetch_timeout_seconds: float = 30.0
    max_pods: int = 200
    max_events: int = 50
    event_window: str = "1h"


@dataclass(frozen=True)
class ThresholdConfig:
    """Classifier thresholds.

    ``restart_threshold`` is exclusive: a container is flagged when its
    restart count is strictly greater. Quota percentages are inclusive.
    """

    restart_threshold: int = 5
    quota_warning_percent: int = 80
    quota_critical_percent: int = 90


@dataclass(frozen=True)
class APIConfig:
    port: int = 8080
    enabled: bool = True


@dataclass(frozen=True)
class MCPConfig:
    enabled: bool = True


@dataclass(frozen=True)
class KubeDoctorConfig:
    """Top-level configuration, loaded from KUBEDOCTOR_* environment variables."""

    kube_context: str = ""
    log: LogConfig = field(default_factory=LogConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    api: APIConfig = field(default_factory=APIConfig)
    mcp: MCPConfig = field(default_factory=MCPConfig)
