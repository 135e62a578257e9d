"""Environment-variable configuration loader.

Every setting is read from a ``KUBEDOCTOR_*`` variable. Integer settings are
clamped to their documented bounds instead of rejected; enumerated and
formatted settings (log level, event window) raise ValueError on bad input.
"""

from __future__ import annotations

import os
import re

from kubedoctor.models.config import (
    APIConfig,
    CollectorConfig,
    KubeDoctorConfig,
    LogConfig,
    MCPConfig,
    ThresholdConfig,
)

_PREFIX = "KUBEDOCTOR_"

_VALID_LOG_LEVELS: frozenset[str] = frozenset({"debug", "info", "warning", "error", "critical"})
_TRUTHY: frozenset[str] = frozenset({"1", "true", "yes", "on"})
_WINDOW_RE = re.compile(r"^(\d+)(m|h|d)$")
_WINDOW_SECONDS: dict[str, int] = {"m": 60, "h": 3600, "d": 86400}


def _env(name: str, default: str) -> str:
    return os.environ.get(_PREFIX + name, default).strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.environ.get(_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{_PREFIX}{name} must be an integer, got: {raw!r}") from exc
    return max(minimum, min(maximum, value))


def parse_time_window(value: str) -> int:
    """Convert ``\\d+(m|h|d)`` into seconds.

    Raises ValueError for anything else, including a zero-length window.
    """
    match = _WINDOW_RE.match(value)
    if match is None or int(match.group(1)) == 0:
        raise ValueError(f"Invalid time window format: {value!r} (expected e.g. 30m, 1h, 2d)")
    return int(match.group(1)) * _WINDOW_SECONDS[match.group(2)]


def load_config() -> KubeDoctorConfig:
    """Build a KubeDoctorConfig from the current process environment."""
    log_level = _env("LOG_LEVEL", "info").lower()
    if log_level not in _VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {log_level!r} (expected one of {sorted(_VALID_LOG_LEVELS)})")

    event_window = _env("EVENT_WINDOW", "1h")
    parse_time_window(event_window)

    warning_pct = _env_int("QUOTA_WARNING_PERCENT", 80, 1, 100)
    critical_pct = _env_int("QUOTA_CRITICAL_PERCENT", 90, 1, 100)
    # Critical may never sit below warning or the WARNING band disappears.
    critical_pct = max(critical_pct, warning_pct)

    return KubeDoctorConfig(
        kube_context=_env("KUBE_CONTEXT", ""),
        log=LogConfig(level=log_level),
        collector=CollectorConfig(
            fetch_timeout_seconds=float(_env_int("FETCH_TIMEOUT", 30, 1, 300)),
            max_pods=_env_int("MAX_PODS", 200, 1, 5000),
            max_events=_env_int("MAX_EVENTS", 50, 1, 1000),
            event_window=event_window,
        ),
        thresholds=ThresholdConfig(
            restart_threshold=_env_int("RESTART_THRESHOLD", 5, 0, 1000),
            quota_warning_percent=warning_pct,
            quota_critical_percent=critical_pct,
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, 1024, 65535),
            enabled=_env_bool("REST_ENABLED", True),
        ),
        mcp=MCPConfig(enabled=_env_bool("MCP_ENABLED", True)),
    )
