from __future__ import annotations

from ..extensions import db
from ..money_utils import format_litres
from ..schemas import PaymentSplit, SplitAdjustment
from ..time_utils import to_utc_z

READING_KIND_METER = "METER"
READING_KIND_SPLIT_CORRECTION = "SPLIT_CORRECTION"


class Reading(db.Model):
    """
    One meter observation and the payment split of the sale it records.

    APPEND-ONLY: rows are never updated or deleted. A supervisor fixing a
    wrong split adds a SPLIT_CORRECTION row (signed deltas that sum to zero)
    pointing at the original via corrects_reading_id.

    The check constraints keep the conservation rule in the database too:
    cash + online + credit equals total_amount within one cent, and meter
    portions are never negative.
    """
    __tablename__ = "readings"
    __table_args__ = (
        db.CheckConstraint("current_volume_ml >= previous_volume_ml", name="ck_readings_volume_order"),
        db.CheckConstraint(
            "abs(cash_cents + online_cents + credit_cents - total_amount_cents) <= 1",
            name="ck_readings_split_conserves_total",
        ),
        db.CheckConstraint(
            "kind != 'METER' OR (cash_cents >= 0 AND online_cents >= 0 AND credit_cents >= 0)",
            name="ck_readings_meter_split_non_negative",
        ),
        db.Index("ix_readings_nozzle_recorded", "nozzle_id", "recorded_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    nozzle_id = db.Column(db.Integer, db.ForeignKey("nozzles.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)

    kind = db.Column(db.String(24), nullable=False, default=READING_KIND_METER, index=True)
    corrects_reading_id = db.Column(db.Integer, db.ForeignKey("readings.id"), nullable=True, index=True)

    # Meter (millilitres)
    previous_volume_ml = db.Column(db.BigInteger, nullable=False)
    current_volume_ml = db.Column(db.BigInteger, nullable=False)
    litres_sold_ml = db.Column(db.BigInteger, nullable=False)

    # Money (cents); price is per litre, NULL when nothing was sold
    price_cents = db.Column(db.Integer, nullable=True)
    total_amount_cents = db.Column(db.BigInteger, nullable=False)
    cash_cents = db.Column(db.BigInteger, nullable=False, default=0)
    online_cents = db.Column(db.BigInteger, nullable=False, default=0)
    credit_cents = db.Column(db.BigInteger, nullable=False, default=0)
    payment_split_version = db.Column(db.Integer, nullable=False, default=1)

    low_fuel_warning = db.Column(db.Boolean, nullable=False, default=False)
    reason = db.Column(db.String(255), nullable=True)

    recorded_by_user_id = db.Column(db.Integer, nullable=False, index=True)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def payment_split(self) -> PaymentSplit | SplitAdjustment:
        if self.kind == READING_KIND_METER:
            return PaymentSplit(
                cash_cents=self.cash_cents,
                online_cents=self.online_cents,
                credit_cents=self.credit_cents,
                version=self.payment_split_version,
            )
        return SplitAdjustment(
            cash_cents=self.cash_cents,
            online_cents=self.online_cents,
            credit_cents=self.credit_cents,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "nozzle_id": self.nozzle_id,
            "shift_id": self.shift_id,
            "kind": self.kind,
            "corrects_reading_id": self.corrects_reading_id,
            "previous_volume": format_litres(self.previous_volume_ml),
            "current_volume": format_litres(self.current_volume_ml),
            "litres_sold": format_litres(self.litres_sold_ml),
            "litres_sold_ml": self.litres_sold_ml,
            "price_cents": self.price_cents,
            "total_amount_cents": self.total_amount_cents,
            "payment_split": {
                "version": self.payment_split_version,
                "cash_cents": self.cash_cents,
                "online_cents": self.online_cents,
                "credit_cents": self.credit_cents,
            },
            "low_fuel_warning": self.low_fuel_warning,
            "reason": self.reason,
            "recorded_by_user_id": self.recorded_by_user_id,
            "recorded_at": to_utc_z(self.recorded_at),
        }
