"""Warning-event filtering for diagnostic reports."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from kubedoctor.models.analysis import EventSummary
from kubedoctor.models.resources import ResourceRef


def event_timestamp(event: Mapping[str, Any]) -> datetime | None:
    """lastTimestamp, else eventTime, else metadata.creationTimestamp."""
    raw = (
        event.get("lastTimestamp")
        or event.get("eventTime")
        or (event.get("metadata") or {}).get("creationTimestamp")
    )
    if not raw:
        return None
    if isinstance(raw, datetime):
        parsed = raw
    else:
        try:
            parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def summarize_event(event: Mapping[str, Any]) -> EventSummary:
    involved = event.get("involvedObject") or {}
    ts = event_timestamp(event)
    return EventSummary(
        involved=ResourceRef(
            kind=str(involved.get("kind") or ""),
            namespace=str(involved.get("namespace") or ""),
            name=str(involved.get("name") or ""),
        ),
        reason=str(event.get("reason") or ""),
        message=str(event.get("message") or "").strip(),
        count=int(event.get("count") or 1),
        last_seen=ts.isoformat() if ts else "",
    )


def recent_warnings(
    events: Iterable[Mapping[str, Any]],
    window_seconds: int,
    limit: int,
    now: datetime | None = None,
) -> tuple[EventSummary, ...]:
    """Warning events seen inside the window, newest first, capped at ``limit``.

    Events without any timestamp are kept and sort last.
    """
    cutoff = (now or datetime.now(tz=UTC)) - timedelta(seconds=window_seconds)
    selected: list[tuple[datetime | None, Mapping[str, Any]]] = []
    for event in events:
        if event.get("type") != "Warning":
            continue
        ts = event_timestamp(event)
        if ts is not None and ts < cutoff:
            continue
        selected.append((ts, event))

    oldest = datetime.min.replace(tzinfo=UTC)
    selected.sort(key=lambda pair: pair[0] or oldest, reverse=True)
    return tuple(summarize_event(event) for _, event in selected[:limit])
