from __future__ import annotations

from ..extensions import db
from ..money_utils import format_litres
from ..time_utils import to_iso_date, to_utc_z


class Settlement(db.Model):
    """
    Immutable closing record for a station business day.

    Written once by the settlement finalizer after every shift of the day is
    terminal and every handover chain has reached the bank. Never updated;
    the unique (station_id, business_date) constraint makes a second close
    of the same period impossible.
    """
    __tablename__ = "settlements"
    __table_args__ = (
        db.UniqueConstraint("station_id", "business_date", name="uq_settlements_station_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    business_date = db.Column(db.Date, nullable=False, index=True)

    # Sales, from the ended shifts' frozen counters
    total_sales_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_litres_ml = db.Column(db.BigInteger, nullable=False, default=0)
    expected_cash_cents = db.Column(db.BigInteger, nullable=False, default=0)
    expected_online_cents = db.Column(db.BigInteger, nullable=False, default=0)
    expected_credit_cents = db.Column(db.BigInteger, nullable=False, default=0)

    # Reported and deposited
    actual_cash_cents = db.Column(db.BigInteger, nullable=False, default=0)
    actual_online_cents = db.Column(db.BigInteger, nullable=False, default=0)
    deposited_cash_cents = db.Column(db.BigInteger, nullable=False, default=0)

    # Variances (expected - actual)
    shift_variance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    online_variance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    resolved_discrepancy_cents = db.Column(db.BigInteger, nullable=False, default=0)
    final_variance_cents = db.Column(db.BigInteger, nullable=False, default=0)

    shift_count = db.Column(db.Integer, nullable=False, default=0)
    cancelled_shift_count = db.Column(db.Integer, nullable=False, default=0)
    handover_count = db.Column(db.Integer, nullable=False, default=0)

    prepared_by_user_id = db.Column(db.Integer, nullable=False)
    approved_by_user_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    closed_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "business_date": to_iso_date(self.business_date),
            "total_sales_cents": self.total_sales_cents,
            "total_litres": format_litres(self.total_litres_ml),
            "expected_cash_cents": self.expected_cash_cents,
            "expected_online_cents": self.expected_online_cents,
            "expected_credit_cents": self.expected_credit_cents,
            "actual_cash_cents": self.actual_cash_cents,
            "actual_online_cents": self.actual_online_cents,
            "deposited_cash_cents": self.deposited_cash_cents,
            "shift_variance_cents": self.shift_variance_cents,
            "online_variance_cents": self.online_variance_cents,
            "resolved_discrepancy_cents": self.resolved_discrepancy_cents,
            "final_variance_cents": self.final_variance_cents,
            "shift_count": self.shift_count,
            "cancelled_shift_count": self.cancelled_shift_count,
            "handover_count": self.handover_count,
            "prepared_by_user_id": self.prepared_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "notes": self.notes,
            "closed_at": to_utc_z(self.closed_at),
        }
