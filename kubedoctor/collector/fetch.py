"""Bounded fetch wrappers used by the coordinator.

Every cluster read goes through ``fetch_primary`` or ``fetch_optional``.
Both apply the per-fetch timeout and record metrics. A primary fetch
raises on failure; an optional fetch returns ``Unavailable`` for any
KubeDoctorError or timeout so its siblings in the same ``asyncio.gather``
keep running. CancelledError is never caught.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

from kubedoctor.errors import KubeDoctorError, UnavailableError
from kubedoctor.models.outcome import Collected, Outcome, Unavailable
from kubedoctor.observability.logging import get_logger
from kubedoctor.observability.metrics import collector_fetch_duration_seconds, collector_fetches_total

_logger = get_logger("collector")

T = TypeVar("T")


async def fetch_primary(source: str, call: Awaitable[T], timeout: float) -> T:
    """Await ``call`` within ``timeout`` seconds; timeouts become UnavailableError."""
    start = time.monotonic()
    try:
        value = await asyncio.wait_for(call, timeout=timeout)
    except TimeoutError as exc:
        collector_fetches_total.labels(kind=source, outcome="timeout").inc()
        _logger.warning("collector_timeout", source=source, timeout=timeout)
        raise UnavailableError(f"Timed out after {timeout:g}s reading {source}", kind=source) from exc
    except KubeDoctorError:
        collector_fetches_total.labels(kind=source, outcome="error").inc()
        raise
    finally:
        collector_fetch_duration_seconds.labels(kind=source).observe(time.monotonic() - start)

    collector_fetches_total.labels(kind=source, outcome="ok").inc()
    return value


async def fetch_optional(source: str, call: Awaitable[T], timeout: float) -> Outcome[T]:
    """Like ``fetch_primary`` but degrades failures to ``Unavailable``."""
    try:
        value = await fetch_primary(source, call, timeout)
    except KubeDoctorError as exc:
        _logger.info(
            "collector_unavailable",
            source=source,
            error_code=exc.error_code,
            error=str(exc),
        )
        return Unavailable(source=source, reason=str(exc), error_code=exc.error_code)
    return Collected(source=source, value=value)


def value_or(outcome: Outcome[T], default: T) -> T:
    """Unwrap a Collected value, or return ``default`` for Unavailable."""
    if isinstance(outcome, Collected):
        return outcome.value
    return default


def unavailable_of(*outcomes: Outcome[object]) -> tuple[Unavailable, ...]:
    return tuple(o for o in outcomes if isinstance(o, Unavailable))
