# Overview: Append-only operational events for reconciliation tooling.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import LedgerEvent
from storefront.time_utils import utcnow

"""
Ledger invariants

- Append-only: no updates or deletes of existing events.
- Domain events are written inside the transaction they record.
- Failure events are written in their own transaction, after the failed
  step has been rolled back.
"""


def append_ledger_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> LedgerEvent:
    ev = LedgerEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        occurred_at=occurred_at or utcnow(),
        note=note[:255] if note else None,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def record_failure_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int | None,
    note: str,
    payload: Optional[dict] = None,
) -> LedgerEvent:
    """Write a failure event in a fresh transaction and commit it."""
    db.session.rollback()
    ev = append_ledger_event(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        note=note,
        payload=payload,
    )
    db.session.commit()
    return ev


def list_events(*, event_type: str | None = None, limit: int = 100) -> list[dict]:
    query = db.session.query(LedgerEvent)
    if event_type:
        query = query.filter(LedgerEvent.event_type == event_type)
    limit = max(1, min(limit, 500))
    return [ev.to_dict() for ev in query.order_by(LedgerEvent.id.desc()).limit(limit).all()]
