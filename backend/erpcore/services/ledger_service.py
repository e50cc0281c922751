# Overview: Append-only audit events recorded alongside domain state changes.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow
"""
Audit Log Invariants (authoritative)

- Append-only log for cross-cutting domain events.
- No domain/business logic in the log itself.
- Events are written inside the same DB transaction as the domain event they
  record; the caller commits.
- Failed PAC calls are logged in their own transaction because the domain
  state they refer to did not change.
"""


def append_event(
    *,
    company_id: str,
    event_type: str,
    entity_type: str,
    entity_id: str,
    actor_user_id: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    """
    Append an audit event to the current session (flush, no commit).

    - No deletes/updates of existing events.
    - occurred_at defaults to now.
    """
    ev = AuditEvent(
        company_id=company_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
        note=note[:255] if note else None,
        payload=json.dumps(payload, sort_keys=True, default=str) if payload else None,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_events(
    company_id: str,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = 200,
) -> list[AuditEvent]:
    q = db.session.query(AuditEvent).filter(AuditEvent.company_id == company_id)
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditEvent.entity_id == entity_id)
    return q.order_by(AuditEvent.id.asc()).limit(limit).all()
