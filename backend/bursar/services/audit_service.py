# Overview: Append-only finance audit trail.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import FinanceEvent
"""
Finance Event Invariants (authoritative)

- Append-only audit log for money movements and state transitions.
- No domain/business logic in the event log itself.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back operation leaves no event behind.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_finance_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    amount_cents: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[str] = None,
) -> FinanceEvent:
    ev = FinanceEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        amount_cents=amount_cents,
        occurred_at=occurred_at,  # if None, db default applies
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_category: str | None = None,
    limit: int = 100,
) -> list[FinanceEvent]:
    query = db.session.query(FinanceEvent)
    if entity_type:
        query = query.filter(FinanceEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(FinanceEvent.entity_id == entity_id)
    if event_category:
        query = query.filter(FinanceEvent.event_category == event_category)
    return query.order_by(FinanceEvent.id.asc()).limit(max(1, min(limit, 500))).all()
