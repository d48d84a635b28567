# Overview: Audit sink for reconciliation state transitions.

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import AuditEvent
from ..time_utils import utcnow

"""
Audit invariants

- Append-only: no deletes/updates of existing events.
- One event per state transition: reading.recorded, reading.split_corrected,
  shift.started, shift.ended, shift.cancelled, handover.opened,
  handover.confirmed, handover.disputed, handover.resolved, settlement.closed.
- Events are written after the primary transaction commits. A failed audit
  write is logged and never rolls back the financial record.
- occurred_at is business time; created_at is system time (DB default).
"""

logger = logging.getLogger(__name__)


class AuditSink:
    """Destination for state-transition records."""

    def record(
        self,
        event_type: str,
        actor_id: int | None,
        before_state: Optional[dict],
        after_state: Optional[dict],
        **refs: Any,
    ) -> None:
        raise NotImplementedError


class LedgerAuditSink(AuditSink):
    """Writes audit_events rows in their own transaction."""

    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        event_type: str,
        actor_id: int | None,
        before_state: Optional[dict],
        after_state: Optional[dict],
        *,
        entity_type: str,
        entity_id: int,
        station_id: int | None = None,
        shift_id: int | None = None,
        handover_id: int | None = None,
        reading_id: int | None = None,
        settlement_id: int | None = None,
        occurred_at: Optional[datetime] = None,
        note: Optional[str] = None,
    ) -> None:
        event = AuditEvent(
            station_id=station_id,
            event_type=event_type,
            event_category=event_type.split(".", 1)[0],
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=actor_id,
            shift_id=shift_id,
            handover_id=handover_id,
            reading_id=reading_id,
            settlement_id=settlement_id,
            before_state=_dumps(before_state),
            after_state=_dumps(after_state),
            note=note[:255] if note else None,
            occurred_at=occurred_at or utcnow(),
        )
        try:
            self.session.add(event)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Failed to write audit event %s for %s %s", event_type, entity_type, entity_id)


def _dumps(state: Optional[dict]) -> Optional[str]:
    if state is None:
        return None
    return json.dumps(state, sort_keys=True, default=str)


def list_audit_events(
    session: Session,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    station_id: int | None = None,
    shift_id: int | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    query = session.query(AuditEvent)
    if entity_type:
        query = query.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditEvent.entity_id == entity_id)
    if station_id is not None:
        query = query.filter(AuditEvent.station_id == station_id)
    if shift_id is not None:
        query = query.filter(AuditEvent.shift_id == shift_id)
    return query.order_by(AuditEvent.occurred_at.asc(), AuditEvent.id.asc()).limit(limit).all()
