from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from tiffin.context import get_correlation_id
from tiffin.models.audit import LedgerAuditEntry

_PLAIN_TYPES = (str, int, float, bool, type(None))


def _jsonable(snapshot: dict[str, Any] | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    return {key: (value if isinstance(value, _PLAIN_TYPES) else str(value)) for key, value in snapshot.items()}


def record(
    session: Session,
    actor_id: str,
    entity_type: str,
    entity_id: object,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    *,
    reason: str | None = None,
    correlation_id: str | None = None,
) -> LedgerAuditEntry:
    """Stage an audit row in the caller's unit of work; it commits or rolls back with it."""
    entry = LedgerAuditEntry(
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        reason=reason,
        before_json=_jsonable(before),
        after_json=_jsonable(after),
        correlation_id=correlation_id or get_correlation_id(),
    )
    session.add(entry)
    return entry


def list_entries(session: Session, entity_type: str, entity_id: object) -> list[LedgerAuditEntry]:
    stmt = (
        select(LedgerAuditEntry)
        .where(LedgerAuditEntry.entity_type == entity_type, LedgerAuditEntry.entity_id == str(entity_id))
        .order_by(LedgerAuditEntry.occurred_at.asc())
    )
    return list(session.scalars(stmt).all())
