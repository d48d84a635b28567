from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Append-only audit trail of reconciliation state transitions.

    before_state / after_state are JSON snapshots (the entity's to_dict()).
    Rows are written after the primary transaction commits, so an audit
    failure never undoes a financial record.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_events_station_occurred", "station_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., shift.ended, handover.confirmed
    event_category = db.Column(db.String(32), nullable=False, index=True)  # reading, shift, handover, settlement

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, nullable=True, index=True)

    # Cross-module references
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    handover_id = db.Column(db.Integer, db.ForeignKey("cash_handovers.id"), nullable=True, index=True)
    reading_id = db.Column(db.Integer, db.ForeignKey("readings.id"), nullable=True)
    settlement_id = db.Column(db.Integer, db.ForeignKey("settlements.id"), nullable=True)

    before_state = db.Column(db.Text, nullable=True)
    after_state = db.Column(db.Text, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    # Business vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "shift_id": self.shift_id,
            "handover_id": self.handover_id,
            "reading_id": self.reading_id,
            "settlement_id": self.settlement_id,
            "before_state": self.before_state,
            "after_state": self.after_state,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
