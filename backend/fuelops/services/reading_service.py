# Overview: Append-only meter readings and their payment splits.

"""
Reading Ledger

WHY: Meter readings are the source of every expected amount downstream.
A reading turns a meter movement into litres sold, prices them, and records
how the customer paid (cash / online / credit).

DESIGN PRINCIPLES:
- Append-only: readings are never edited or deleted
- A wrong split is fixed with a SPLIT_CORRECTION row (signed deltas, net 0)
- The shift's running totals move in the same transaction as the insert,
  through a conditional UPDATE that only matches an ACTIVE shift
- The nozzle meter advances through a conditional UPDATE on its previous
  position, so two readings can never both start from the same value
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from ..config import ReconciliationSettings
from ..errors import (
    ConcurrencyConflict,
    InvalidVolumeOrder,
    NotFound,
    PaymentSplitMismatch,
    ShiftNotActive,
    ValidationError,
)
from ..models import Nozzle, Reading, Shift
from ..models.readings import READING_KIND_METER, READING_KIND_SPLIT_CORRECTION
from ..models.shifts import SHIFT_STATUS_ACTIVE
from ..money_utils import MAX_VOLUME_ML, amount_for_volume
from ..schemas import PaymentSplit, SplitAdjustment
from ..time_utils import utcnow
from .audit_service import AuditSink
from .base import BaseService
from .discrepancy_service import DiscrepancyDetector
from .price_service import DatabasePriceLookup, PriceLookup
from .tank_service import DatabaseTankStatus, TankStatus

logger = logging.getLogger(__name__)


@dataclass
class ReadingResult:
    reading: Reading
    advisories: list[dict] = field(default_factory=list)


class ReadingService(BaseService):
    def __init__(
        self,
        session: Session,
        *,
        settings: ReconciliationSettings | None = None,
        audit_sink: AuditSink | None = None,
        detector: DiscrepancyDetector | None = None,
        price_lookup: PriceLookup | None = None,
        tank_status: TankStatus | None = None,
    ):
        super().__init__(session, settings=settings, audit_sink=audit_sink, detector=detector)
        self.price_lookup = price_lookup or DatabasePriceLookup(session)
        self.tank_status = tank_status or DatabaseTankStatus(session)

    # =========================================================================
    # RECORDING
    # =========================================================================

    def record_reading(
        self,
        *,
        nozzle_id: int,
        shift_id: int,
        current_volume_ml: int,
        payment_split: PaymentSplit,
        user_id: int,
        recorded_at: datetime | None = None,
    ) -> ReadingResult:
        """
        Record one meter reading against an ACTIVE shift.

        Raises:
            NotFound: unknown shift or nozzle
            ShiftNotActive: shift is ENDED or CANCELLED
            ValidationError: nozzle belongs to another station or is inactive
            InvalidVolumeOrder: meter went backwards
            PriceUnavailable: litres were sold but no price is in force
            PaymentSplitMismatch: split does not add up to the sale total
        """
        if current_volume_ml < 0 or current_volume_ml > MAX_VOLUME_ML:
            raise ValidationError("current_volume is out of range")
        at = recorded_at or utcnow()

        def work() -> ReadingResult:
            shift = self.session.get(Shift, shift_id)
            if not shift:
                raise NotFound(f"Shift {shift_id} not found")
            if shift.status != SHIFT_STATUS_ACTIVE:
                raise ShiftNotActive(f"Shift {shift_id} is {shift.status}", shift_id=shift_id)

            nozzle = self.session.get(Nozzle, nozzle_id)
            if not nozzle:
                raise NotFound(f"Nozzle {nozzle_id} not found")
            if nozzle.station_id != shift.station_id:
                raise ValidationError(
                    f"Nozzle {nozzle_id} does not belong to station {shift.station_id}",
                    nozzle_id=nozzle_id,
                    station_id=shift.station_id,
                )
            if not nozzle.is_active:
                raise ValidationError(f"Nozzle {nozzle_id} is inactive")

            previous_ml = nozzle.current_volume_ml
            if current_volume_ml < previous_ml:
                raise InvalidVolumeOrder(
                    "Current volume is below the previous meter reading",
                    previous_volume_ml=previous_ml,
                    current_volume_ml=current_volume_ml,
                )
            litres_ml = current_volume_ml - previous_ml

            # Nothing sold, nothing to price
            price_cents = self.price_lookup.get_effective_price(nozzle_id, at) if litres_ml else None
            total_cents = amount_for_volume(litres_ml, price_cents) if price_cents is not None else 0
            payment_split.require_conserves(total_cents)

            low_fuel = self.tank_status.is_low(nozzle.station_id, nozzle.fuel_type)

            advanced = (
                self.session.query(Nozzle)
                .filter(Nozzle.id == nozzle_id, Nozzle.current_volume_ml == previous_ml)
                .update({Nozzle.current_volume_ml: current_volume_ml}, synchronize_session=False)
            )
            if advanced != 1:
                raise ConcurrencyConflict(
                    f"Nozzle {nozzle_id} meter moved while recording",
                    nozzle_id=nozzle_id,
                )

            self._apply_to_shift(
                shift_id,
                SplitAdjustment(
                    cash_cents=payment_split.cash_cents,
                    online_cents=payment_split.online_cents,
                    credit_cents=payment_split.credit_cents,
                ),
                sales_cents=total_cents,
                litres_ml=litres_ml,
                readings=1,
            )
            self.session.expire(nozzle)

            reading = Reading(
                station_id=shift.station_id,
                nozzle_id=nozzle_id,
                shift_id=shift_id,
                kind=READING_KIND_METER,
                previous_volume_ml=previous_ml,
                current_volume_ml=current_volume_ml,
                litres_sold_ml=litres_ml,
                price_cents=price_cents,
                total_amount_cents=total_cents,
                cash_cents=payment_split.cash_cents,
                online_cents=payment_split.online_cents,
                credit_cents=payment_split.credit_cents,
                payment_split_version=payment_split.version,
                low_fuel_warning=low_fuel,
                recorded_by_user_id=user_id,
                recorded_at=at,
            )
            self.session.add(reading)
            self.session.flush()

            self._audit(
                "reading.recorded",
                user_id,
                None,
                reading,
                entity_type="reading",
                station_id=shift.station_id,
                shift_id=shift_id,
                reading_id=reading.id,
                occurred_at=at,
            )

            advisories = []
            if low_fuel:
                advisories.append({
                    "kind": "low_fuel",
                    "station_id": nozzle.station_id,
                    "fuel_type": nozzle.fuel_type,
                })
            return ReadingResult(reading=reading, advisories=advisories)

        result = self._transaction(work)
        logger.info(
            "Recorded reading %s on nozzle %s for shift %s (%s ml)",
            result.reading.id, nozzle_id, shift_id, result.reading.litres_sold_ml,
        )
        return result

    def correct_reading_split(
        self,
        *,
        reading_id: int,
        payment_split: PaymentSplit,
        supervisor_id: int,
        reason: str,
    ) -> Reading:
        """
        Re-divide a reading's sale between cash, online and credit.

        Appends a SPLIT_CORRECTION row holding the signed change per portion.
        The sale total does not move, so the deltas always net to zero.
        Only allowed while the owning shift is ACTIVE: once a shift has ended
        its expected totals are frozen.
        """
        if not reason or not reason.strip():
            raise ValidationError("reason required for a split correction")

        def work() -> Reading:
            original = self.session.get(Reading, reading_id)
            if not original:
                raise NotFound(f"Reading {reading_id} not found")
            if original.kind != READING_KIND_METER:
                raise ValidationError("Only meter readings can be corrected")

            shift = self.session.get(Shift, original.shift_id) if original.shift_id else None
            if not shift or shift.status != SHIFT_STATUS_ACTIVE:
                raise ShiftNotActive(
                    f"Reading {reading_id} belongs to a shift that is no longer active",
                    shift_id=original.shift_id,
                )

            current = self.effective_split(original)
            if payment_split.total_cents != current.total_cents:
                raise PaymentSplitMismatch(
                    "A correction may only move money between portions",
                    split_total_cents=payment_split.total_cents,
                    current_total_cents=current.total_cents,
                )
            adjustment = payment_split.adjustment_from(current)
            if adjustment.is_zero:
                raise ValidationError("Correction does not change the payment split")

            self._apply_to_shift(original.shift_id, adjustment)

            correction = Reading(
                station_id=original.station_id,
                nozzle_id=original.nozzle_id,
                shift_id=original.shift_id,
                kind=READING_KIND_SPLIT_CORRECTION,
                corrects_reading_id=original.id,
                previous_volume_ml=original.current_volume_ml,
                current_volume_ml=original.current_volume_ml,
                litres_sold_ml=0,
                price_cents=None,
                total_amount_cents=0,
                cash_cents=adjustment.cash_cents,
                online_cents=adjustment.online_cents,
                credit_cents=adjustment.credit_cents,
                payment_split_version=payment_split.version,
                reason=reason.strip()[:255],
                recorded_by_user_id=supervisor_id,
                recorded_at=utcnow(),
            )
            self.session.add(correction)
            self.session.flush()

            self._audit(
                "reading.split_corrected",
                supervisor_id,
                current.to_dict(),
                correction,
                entity_type="reading",
                station_id=original.station_id,
                shift_id=original.shift_id,
                reading_id=original.id,
                note=reason,
            )
            return correction

        return self._transaction(work)

    def _apply_to_shift(
        self,
        shift_id: int,
        split: SplitAdjustment,
        *,
        sales_cents: int = 0,
        litres_ml: int = 0,
        readings: int = 0,
    ) -> None:
        """
        Add to the shift's running totals in one conditional UPDATE.

        Matches only an ACTIVE shift; zero rows means the shift ended or was
        cancelled after we read it.
        """
        updated = (
            self.session.query(Shift)
            .filter(Shift.id == shift_id, Shift.status == SHIFT_STATUS_ACTIVE)
            .update(
                {
                    Shift.expected_cash_cents: Shift.expected_cash_cents + split.cash_cents,
                    Shift.expected_online_cents: Shift.expected_online_cents + split.online_cents,
                    Shift.expected_credit_cents: Shift.expected_credit_cents + split.credit_cents,
                    Shift.total_sales_cents: Shift.total_sales_cents + sales_cents,
                    Shift.litres_sold_ml: Shift.litres_sold_ml + litres_ml,
                    Shift.reading_count: Shift.reading_count + readings,
                    Shift.version_id: Shift.version_id + 1,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ShiftNotActive(f"Shift {shift_id} is no longer active", shift_id=shift_id)
        shift = self.session.get(Shift, shift_id)
        if shift is not None:
            self.session.expire(shift)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_reading(self, reading_id: int) -> Reading:
        reading = self.session.get(Reading, reading_id)
        if not reading:
            raise NotFound(f"Reading {reading_id} not found")
        return reading

    def list_shift_readings(self, shift_id: int, *, include_corrections: bool = True) -> list[Reading]:
        query = self.session.query(Reading).filter(Reading.shift_id == shift_id)
        if not include_corrections:
            query = query.filter(Reading.kind == READING_KIND_METER)
        return query.order_by(Reading.recorded_at.asc(), Reading.id.asc()).all()

    def get_previous_volume(self, nozzle_id: int) -> int:
        """Current meter position of the nozzle, in millilitres."""
        nozzle = self.session.get(Nozzle, nozzle_id)
        if not nozzle:
            raise NotFound(f"Nozzle {nozzle_id} not found")
        return nozzle.current_volume_ml

    def effective_split(self, reading: Reading) -> PaymentSplit:
        """The reading's split with all of its corrections applied."""
        net = SplitAdjustment(
            cash_cents=reading.cash_cents,
            online_cents=reading.online_cents,
            credit_cents=reading.credit_cents,
        )
        corrections = (
            self.session.query(Reading)
            .filter(
                Reading.corrects_reading_id == reading.id,
                Reading.kind == READING_KIND_SPLIT_CORRECTION,
            )
            .order_by(Reading.id.asc())
            .all()
        )
        for correction in corrections:
            net = net + correction.payment_split
        return PaymentSplit(
            cash_cents=net.cash_cents,
            online_cents=net.online_cents,
            credit_cents=net.credit_cents,
            version=reading.payment_split_version,
        )
