from __future__ import annotations

from typing import Any

from tiffin.context import get_caused_by, get_correlation_id
from tiffin.core.events import event_bus

published_events: list[dict[str, Any]] = []


def publish(envelope: dict[str, Any]) -> None:
    """Stamp the envelope with request context, keep a copy, and fan it out in-process."""
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    caused_by = get_caused_by()
    if caused_by is not None and caused_by != envelope.get("event_type"):
        existing_meta = envelope.get("meta")
        meta: dict[str, Any] = existing_meta.copy() if isinstance(existing_meta, dict) else {}
        meta.setdefault("caused_by", caused_by)
        envelope["meta"] = meta

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        event_bus.publish(event_type, envelope)
