# Overview: Append-only audit trail for return processing events.

from __future__ import annotations

import json
from typing import Any, Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditEvent
"""
Audit Trail Invariants (authoritative)

- Append-only: no updates or deletes of existing events.
- Events are written inside the same DB transaction as the domain change
  they record, so a rolled-back return leaves no audit row behind.
- occurred_at is business time; created_at is system time (DB default).
"""

EVENT_RETURN_PROCESSED = "RETURN_PROCESSED"
EVENT_APPROVAL_GRANTED = "RETURN_APPROVAL_GRANTED"
EVENT_APPROVAL_DENIED = "RETURN_APPROVAL_DENIED"


def append_audit_event(
    *,
    store_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    """Append an audit event and flush (no commit)."""
    ev = AuditEvent(
        store_id=store_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=note[:255] if note else None,
        payload=json.dumps(payload, sort_keys=True) if payload is not None else None,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def get_events(store_id: int, *, entity_type: str | None = None, entity_id: int | None = None) -> list[AuditEvent]:
    q = db.session.query(AuditEvent).filter_by(store_id=store_id)
    if entity_type is not None:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == entity_id)
    return q.order_by(AuditEvent.id.asc()).all()
