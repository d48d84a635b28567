from __future__ import annotations

from ..extensions import db
from ..money_utils import format_litres
from ..time_utils import to_utc_z


class Station(db.Model):
    """
    Fuel station master record.

    WHY: Every reconciliation chain is scoped to one station. The engine only
    reads stations; station CRUD belongs to the master-data layer.

    manager_user_id / owner_user_id name the custody parties a handover is
    routed to. User identities live with the external auth provider, so they
    are plain integers here, not foreign keys.
    """
    __tablename__ = "stations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    manager_user_id = db.Column(db.Integer, nullable=True, index=True)
    owner_user_id = db.Column(db.Integer, nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Station id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "manager_user_id": self.manager_user_id,
            "owner_user_id": self.owner_user_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Nozzle(db.Model):
    """
    Dispensing nozzle with a cumulative meter.

    current_volume_ml is the meter position after the latest reading (the
    initial reading until one is recorded). The reading ledger advances it
    with a conditional UPDATE on the previous position, so two concurrent
    readings can never both start from the same meter value.
    """
    __tablename__ = "nozzles"
    __table_args__ = (
        db.UniqueConstraint("station_id", "nozzle_number", name="uq_nozzles_station_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    nozzle_number = db.Column(db.String(32), nullable=False)
    fuel_type = db.Column(db.String(16), nullable=False)  # PETROL, DIESEL, CNG, ...

    initial_volume_ml = db.Column(db.BigInteger, nullable=False, default=0)
    current_volume_ml = db.Column(db.BigInteger, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "nozzle_number": self.nozzle_number,
            "fuel_type": self.fuel_type,
            "initial_volume": format_litres(self.initial_volume_ml),
            "current_volume": format_litres(self.current_volume_ml),
            "is_active": self.is_active,
        }


class FuelPrice(db.Model):
    """
    Per-litre price for a fuel type at a station from effective_from onward.

    Append-only: a price change is a new row, so a reading can always be
    priced at the value in force when it was taken.
    """
    __tablename__ = "fuel_prices"
    __table_args__ = (
        db.Index("ix_fuel_prices_lookup", "station_id", "fuel_type", "effective_from"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False)
    fuel_type = db.Column(db.String(16), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)  # per litre
    effective_from = db.Column(db.DateTime(timezone=True), nullable=False)
    set_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "fuel_type": self.fuel_type,
            "price_cents": self.price_cents,
            "effective_from": to_utc_z(self.effective_from),
            "set_by_user_id": self.set_by_user_id,
        }


class Tank(db.Model):
    """
    Storage tank level, consulted read-only for the low-fuel advisory.
    """
    __tablename__ = "tanks"
    __table_args__ = (
        db.UniqueConstraint("station_id", "fuel_type", name="uq_tanks_station_fuel"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    fuel_type = db.Column(db.String(16), nullable=False)
    capacity_ml = db.Column(db.BigInteger, nullable=False)
    current_level_ml = db.Column(db.BigInteger, nullable=False, default=0)
    low_level_percent = db.Column(db.Integer, nullable=False, default=15)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def is_low(self) -> bool:
        if not self.capacity_ml:
            return False
        return self.current_level_ml * 100 < self.capacity_ml * self.low_level_percent

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "fuel_type": self.fuel_type,
            "capacity": format_litres(self.capacity_ml),
            "current_level": format_litres(self.current_level_ml),
            "low_level_percent": self.low_level_percent,
            "is_low": self.is_low(),
            "updated_at": to_utc_z(self.updated_at),
        }
