from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z

# Custody chain, in order. A handover's type is always the immediate
# successor of its parent's type.
HANDOVER_SHIFT_COLLECTION = "SHIFT_COLLECTION"
HANDOVER_STAFF_TO_MANAGER = "STAFF_TO_MANAGER"
HANDOVER_MANAGER_TO_OWNER = "MANAGER_TO_OWNER"
HANDOVER_DEPOSIT_TO_BANK = "DEPOSIT_TO_BANK"

HANDOVER_CHAIN = (
    HANDOVER_SHIFT_COLLECTION,
    HANDOVER_STAFF_TO_MANAGER,
    HANDOVER_MANAGER_TO_OWNER,
    HANDOVER_DEPOSIT_TO_BANK,
)

HANDOVER_STATUS_PENDING = "PENDING"
HANDOVER_STATUS_CONFIRMED = "CONFIRMED"
HANDOVER_STATUS_DISPUTED = "DISPUTED"
HANDOVER_STATUS_RESOLVED = "RESOLVED"

HANDOVER_STATUSES = (
    HANDOVER_STATUS_PENDING,
    HANDOVER_STATUS_CONFIRMED,
    HANDOVER_STATUS_DISPUTED,
    HANDOVER_STATUS_RESOLVED,
)

# Actual/discrepancy are frozen in these states
HANDOVER_FINALIZED_STATUSES = (
    HANDOVER_STATUS_CONFIRMED,
    HANDOVER_STATUS_DISPUTED,
    HANDOVER_STATUS_RESOLVED,
)
# The chain may progress past these states
HANDOVER_TERMINAL_STATUSES = (HANDOVER_STATUS_CONFIRMED, HANDOVER_STATUS_RESOLVED)


def next_handover_type(handover_type: str) -> str | None:
    """Successor in the custody chain, or None after the bank deposit."""
    position = HANDOVER_CHAIN.index(handover_type)
    if position + 1 >= len(HANDOVER_CHAIN):
        return None
    return HANDOVER_CHAIN[position + 1]


class CashHandover(db.Model):
    """
    One custody-transfer step for the cash collected in a shift.

    LIFECYCLE:
    - PENDING: waiting for the receiving party to count and confirm
    - CONFIRMED: counted amount within tolerance; next step opened
    - DISPUTED: counted amount outside tolerance; chain blocked
    - RESOLVED: dispute closed with notes; next step opened

    CHAIN: SHIFT_COLLECTION -> STAFF_TO_MANAGER -> MANAGER_TO_OWNER ->
    DEPOSIT_TO_BANK. expected_amount_cents of each step is the previous
    step's actual_amount_cents.

    IMMUTABLE: once CONFIRMED or RESOLVED nothing changes. The unique
    parent_handover_id means a step can have at most one successor, even
    under concurrent confirmations.
    """
    __tablename__ = "cash_handovers"
    __table_args__ = (
        db.UniqueConstraint("shift_id", "handover_type", name="uq_cash_handovers_shift_type"),
        db.UniqueConstraint("parent_handover_id", name="uq_cash_handovers_parent"),
        db.Index("ix_cash_handovers_station_date", "station_id", "handover_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    parent_handover_id = db.Column(db.Integer, db.ForeignKey("cash_handovers.id"), nullable=True)

    handover_type = db.Column(db.String(24), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)  # 1-based position in HANDOVER_CHAIN
    handover_date = db.Column(db.Date, nullable=False)

    # Custody parties (NULL to_user for the bank)
    from_user_id = db.Column(db.Integer, nullable=True, index=True)
    to_user_id = db.Column(db.Integer, nullable=True, index=True)

    expected_amount_cents = db.Column(db.BigInteger, nullable=False)
    actual_amount_cents = db.Column(db.BigInteger, nullable=True)
    discrepancy_cents = db.Column(db.BigInteger, nullable=True)  # expected - actual
    severity = db.Column(db.String(16), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=HANDOVER_STATUS_PENDING, index=True)

    confirmed_by_user_id = db.Column(db.Integer, nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by_user_id = db.Column(db.Integer, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    dispute_notes = db.Column(db.Text, nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)

    # DEPOSIT_TO_BANK only
    bank_name = db.Column(db.String(100), nullable=True)
    deposit_reference = db.Column(db.String(50), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "shift_id": self.shift_id,
            "parent_handover_id": self.parent_handover_id,
            "handover_type": self.handover_type,
            "sequence": self.sequence,
            "handover_date": to_iso_date(self.handover_date),
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "expected_amount_cents": self.expected_amount_cents,
            "actual_amount_cents": self.actual_amount_cents,
            "discrepancy_cents": self.discrepancy_cents,
            "severity": self.severity,
            "status": self.status,
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "resolved_by_user_id": self.resolved_by_user_id,
            "resolved_at": to_utc_z(self.resolved_at),
            "notes": self.notes,
            "dispute_notes": self.dispute_notes,
            "resolution_notes": self.resolution_notes,
            "bank_name": self.bank_name,
            "deposit_reference": self.deposit_reference,
            "version_id": self.version_id,
        }
