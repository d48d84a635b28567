from __future__ import annotations

from ..extensions import db
from ..money_utils import format_litres
from ..time_utils import to_iso_date, to_utc_z

SHIFT_STATUS_ACTIVE = "ACTIVE"
SHIFT_STATUS_ENDED = "ENDED"
SHIFT_STATUS_CANCELLED = "CANCELLED"

SHIFT_TYPES = ("MORNING", "EVENING", "NIGHT", "FULL_DAY", "CUSTOM")


class Shift(db.Model):
    """
    Work period for one employee at one station.

    WHY: Cash accountability. Readings recorded during the shift accumulate
    into expected cash/online/credit; at shift end the counted cash is
    compared and the first custody handover is opened.

    LIFECYCLE:
    - ACTIVE: readings can be attached
    - ENDED: actuals recorded, variance frozen, handover chain started
    - CANCELLED: totals discarded, no handover

    Both ENDED and CANCELLED are terminal. Rows are never deleted.

    ONE ACTIVE SHIFT: the partial unique index uq_shifts_one_active rejects a
    second ACTIVE row for the same (employee, station), so concurrent starts
    cannot both succeed.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_one_active",
            "employee_id",
            "station_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
        db.Index("ix_shifts_station_business_date", "station_id", "business_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, nullable=False, index=True)

    business_date = db.Column(db.Date, nullable=False)
    shift_type = db.Column(db.String(16), nullable=False, default="CUSTOM")
    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_ACTIVE, index=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Running totals, incremented atomically with each reading insert
    expected_cash_cents = db.Column(db.BigInteger, nullable=False, default=0)
    expected_online_cents = db.Column(db.BigInteger, nullable=False, default=0)
    expected_credit_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_sales_cents = db.Column(db.BigInteger, nullable=False, default=0)
    litres_sold_ml = db.Column(db.BigInteger, nullable=False, default=0)
    reading_count = db.Column(db.Integer, nullable=False, default=0)

    # Reported at shift end
    actual_cash_cents = db.Column(db.BigInteger, nullable=True)
    actual_online_cents = db.Column(db.BigInteger, nullable=True)

    # expected - actual (positive = shortage)
    variance_cents = db.Column(db.BigInteger, nullable=True)
    online_variance_cents = db.Column(db.BigInteger, nullable=True)
    variance_severity = db.Column(db.String(16), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    started_by_user_id = db.Column(db.Integer, nullable=True)
    ended_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == SHIFT_STATUS_ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "employee_id": self.employee_id,
            "business_date": to_iso_date(self.business_date),
            "shift_type": self.shift_type,
            "status": self.status,
            "started_at": to_utc_z(self.started_at),
            "ended_at": to_utc_z(self.ended_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "expected_cash_cents": self.expected_cash_cents,
            "expected_online_cents": self.expected_online_cents,
            "expected_credit_cents": self.expected_credit_cents,
            "total_sales_cents": self.total_sales_cents,
            "litres_sold": format_litres(self.litres_sold_ml),
            "reading_count": self.reading_count,
            "actual_cash_cents": self.actual_cash_cents,
            "actual_online_cents": self.actual_online_cents,
            "variance_cents": self.variance_cents,
            "online_variance_cents": self.online_variance_cents,
            "variance_severity": self.variance_severity,
            "notes": self.notes,
            "cancel_reason": self.cancel_reason,
            "started_by_user_id": self.started_by_user_id,
            "ended_by_user_id": self.ended_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "version_id": self.version_id,
        }
