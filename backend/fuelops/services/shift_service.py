# Overview: Shift lifecycle and per-shift expected collections.

"""
Shift Aggregator

WHY: Cash accountability is per shift. Readings feed the running expected
totals; at shift end the counted cash is compared against them and the
money enters the custody chain.

LIFECYCLE:
    ACTIVE -> ENDED       actuals recorded, variance frozen, collection opened
    ACTIVE -> CANCELLED   totals discarded (kept in the audit before-state)

DESIGN PRINCIPLES:
- One ACTIVE shift per (employee, station); the partial unique index is the
  real guard, the pre-check only gives a friendlier error
- Shift end and the first handover commit together or not at all
- Expected totals are never recomputed from readings after the shift ends
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import ReconciliationSettings
from ..errors import DuplicateActiveShift, NotFound, ShiftNotActive, ValidationError
from ..models import Shift, Station
from ..models.handovers import HANDOVER_SHIFT_COLLECTION
from ..models.shifts import (
    SHIFT_STATUS_ACTIVE,
    SHIFT_STATUS_CANCELLED,
    SHIFT_STATUS_ENDED,
    SHIFT_TYPES,
)
from ..time_utils import utcnow
from .audit_service import AuditSink
from .base import BaseService
from .concurrency import lock_for_update
from .discrepancy_service import Classification, DiscrepancyDetector
from .handover_service import open_handover

logger = logging.getLogger(__name__)

DEFAULT_DISCREPANCY_THRESHOLD_CENTS = 10_000


class ShiftService(BaseService):
    def __init__(
        self,
        session: Session,
        *,
        settings: ReconciliationSettings | None = None,
        audit_sink: AuditSink | None = None,
        detector: DiscrepancyDetector | None = None,
    ):
        super().__init__(session, settings=settings, audit_sink=audit_sink, detector=detector)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start_shift(
        self,
        *,
        employee_id: int,
        station_id: int,
        user_id: int | None = None,
        shift_type: str = "CUSTOM",
        business_date: date | None = None,
        notes: str | None = None,
    ) -> Shift:
        """
        Open a shift for an employee at a station.

        Raises:
            NotFound: unknown station
            ValidationError: unknown shift type or inactive station
            DuplicateActiveShift: the employee already has an ACTIVE shift here
        """
        shift_type = (shift_type or "CUSTOM").upper()
        if shift_type not in SHIFT_TYPES:
            raise ValidationError(f"shift_type must be one of {', '.join(SHIFT_TYPES)}")

        def work() -> Shift:
            station = self.session.get(Station, station_id)
            if not station:
                raise NotFound(f"Station {station_id} not found")
            if not station.is_active:
                raise ValidationError(f"Station {station_id} is inactive")

            existing = self.get_active_shift(employee_id, station_id)
            if existing:
                raise DuplicateActiveShift(
                    f"Employee {employee_id} already has active shift {existing.id}",
                    shift_id=existing.id,
                )

            now = utcnow()
            shift = Shift(
                station_id=station_id,
                employee_id=employee_id,
                business_date=business_date or now.date(),
                shift_type=shift_type,
                status=SHIFT_STATUS_ACTIVE,
                started_at=now,
                notes=notes,
                started_by_user_id=user_id if user_id is not None else employee_id,
            )
            self.session.add(shift)
            try:
                self.session.flush()
            except IntegrityError as exc:
                # Lost the race to a concurrent start for the same pair
                raise DuplicateActiveShift(
                    f"Employee {employee_id} already has an active shift at station {station_id}"
                ) from exc

            self._audit(
                "shift.started",
                shift.started_by_user_id,
                None,
                shift,
                entity_type="shift",
                station_id=station_id,
                shift_id=shift.id,
                occurred_at=now,
            )
            return shift

        shift = self._transaction(work)
        logger.info("Shift %s started for employee %s at station %s", shift.id, employee_id, station_id)
        return shift

    def end_shift(
        self,
        shift_id: int,
        *,
        actual_cash_cents: int,
        actual_online_cents: int = 0,
        user_id: int | None = None,
        notes: str | None = None,
    ) -> tuple[Shift, Classification]:
        """
        Close an ACTIVE shift against the counted cash.

        variance = expected_cash - actual_cash (positive = shortage). The
        variance is classified but never blocks: a CRITICAL shortage still
        ends the shift, and the alert goes out after commit. The
        SHIFT_COLLECTION handover is created in the same transaction with
        expected = actual cash; if that insert fails the shift stays ACTIVE.
        """
        if actual_cash_cents < 0 or actual_online_cents < 0:
            raise ValidationError("Counted amounts cannot be negative")

        def work() -> tuple[Shift, Classification]:
            shift = lock_for_update(self.session.query(Shift).filter(Shift.id == shift_id)).first()
            if not shift:
                raise NotFound(f"Shift {shift_id} not found")
            if shift.status != SHIFT_STATUS_ACTIVE:
                raise ShiftNotActive(f"Shift {shift_id} is {shift.status}", shift_id=shift_id)

            before = shift.to_dict()
            classification = self.detector.classify(shift.expected_cash_cents, actual_cash_cents)

            now = utcnow()
            shift.status = SHIFT_STATUS_ENDED
            shift.ended_at = now
            shift.ended_by_user_id = user_id if user_id is not None else shift.employee_id
            shift.actual_cash_cents = actual_cash_cents
            shift.actual_online_cents = actual_online_cents
            shift.variance_cents = classification.discrepancy_cents
            shift.online_variance_cents = shift.expected_online_cents - actual_online_cents
            shift.variance_severity = classification.severity
            if notes:
                shift.notes = f"{shift.notes}\n{notes}" if shift.notes else notes
            self.session.flush()

            collection = open_handover(
                self.session,
                shift=shift,
                handover_type=HANDOVER_SHIFT_COLLECTION,
                expected_amount_cents=actual_cash_cents,
            )

            self._audit(
                "shift.ended",
                shift.ended_by_user_id,
                before,
                shift,
                entity_type="shift",
                station_id=shift.station_id,
                shift_id=shift.id,
                occurred_at=now,
                note=notes,
            )
            self._audit(
                "handover.opened",
                shift.ended_by_user_id,
                None,
                collection,
                entity_type="cash_handover",
                station_id=shift.station_id,
                shift_id=shift.id,
                handover_id=collection.id,
                occurred_at=now,
            )
            self._alert(
                classification,
                f"Shift {shift.id} cash count",
                {"shift_id": shift.id, "station_id": shift.station_id, "employee_id": shift.employee_id},
            )
            return shift, classification

        shift, classification = self._transaction(work)
        logger.info(
            "Shift %s ended: expected %s, counted %s, variance %s (%s)",
            shift.id, shift.expected_cash_cents, actual_cash_cents,
            shift.variance_cents, classification.severity,
        )
        return shift, classification

    def cancel_shift(self, shift_id: int, *, user_id: int | None = None, reason: str | None = None) -> Shift:
        """
        Abandon an ACTIVE shift.

        Accumulated totals are zeroed; the audit before-state keeps them.
        No handover is created.
        """
        def work() -> Shift:
            shift = lock_for_update(self.session.query(Shift).filter(Shift.id == shift_id)).first()
            if not shift:
                raise NotFound(f"Shift {shift_id} not found")
            if shift.status != SHIFT_STATUS_ACTIVE:
                raise ShiftNotActive(f"Shift {shift_id} is {shift.status}", shift_id=shift_id)

            before = shift.to_dict()
            now = utcnow()
            shift.status = SHIFT_STATUS_CANCELLED
            shift.cancelled_at = now
            shift.cancelled_by_user_id = user_id if user_id is not None else shift.employee_id
            shift.cancel_reason = reason[:255] if reason else None
            shift.expected_cash_cents = 0
            shift.expected_online_cents = 0
            shift.expected_credit_cents = 0
            shift.total_sales_cents = 0
            shift.litres_sold_ml = 0
            self.session.flush()

            self._audit(
                "shift.cancelled",
                shift.cancelled_by_user_id,
                before,
                shift,
                entity_type="shift",
                station_id=shift.station_id,
                shift_id=shift.id,
                occurred_at=now,
                note=reason,
            )
            return shift

        shift = self._transaction(work)
        logger.info("Shift %s cancelled", shift.id)
        return shift

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_shift(self, shift_id: int) -> Shift:
        shift = self.session.get(Shift, shift_id)
        if not shift:
            raise NotFound(f"Shift {shift_id} not found")
        return shift

    def get_active_shift(self, employee_id: int, station_id: int) -> Shift | None:
        return (
            self.session.query(Shift)
            .filter_by(employee_id=employee_id, station_id=station_id, status=SHIFT_STATUS_ACTIVE)
            .first()
        )

    def list_shifts(
        self,
        *,
        station_id: int | None = None,
        business_date: date | None = None,
        status: str | None = None,
        employee_id: int | None = None,
        limit: int = 100,
    ) -> list[Shift]:
        query = self.session.query(Shift)
        if station_id is not None:
            query = query.filter(Shift.station_id == station_id)
        if business_date is not None:
            query = query.filter(Shift.business_date == business_date)
        if status:
            query = query.filter(Shift.status == status.upper())
        if employee_id is not None:
            query = query.filter(Shift.employee_id == employee_id)
        return query.order_by(Shift.started_at.desc(), Shift.id.desc()).limit(limit).all()

    def list_discrepancies(
        self,
        station_id: int,
        *,
        threshold_cents: int = DEFAULT_DISCREPANCY_THRESHOLD_CENTS,
        limit: int = 50,
    ) -> list[Shift]:
        """Ended shifts whose |cash variance| is at least threshold_cents, largest first."""
        return (
            self.session.query(Shift)
            .filter(
                Shift.station_id == station_id,
                Shift.status == SHIFT_STATUS_ENDED,
                func.abs(Shift.variance_cents) >= threshold_cents,
            )
            .order_by(func.abs(Shift.variance_cents).desc(), Shift.id.desc())
            .limit(limit)
            .all()
        )

    def employee_shortfalls(
        self, station_id: int, start: date | None = None, end: date | None = None
    ) -> list[dict]:
        """
        Per-employee totals over ended shifts, worst shortage first.

        total_variance_cents is positive when the employee handed over less
        than the readings say they collected.
        """
        query = self.session.query(
            Shift.employee_id,
            func.count(Shift.id),
            func.coalesce(func.sum(Shift.litres_sold_ml), 0),
            func.coalesce(func.sum(Shift.total_sales_cents), 0),
            func.coalesce(func.sum(Shift.actual_cash_cents), 0),
            func.coalesce(func.sum(Shift.variance_cents), 0),
            func.sum(case((Shift.variance_cents > 0, 1), else_=0)),
        ).filter(Shift.station_id == station_id, Shift.status == SHIFT_STATUS_ENDED)
        if start is not None:
            query = query.filter(Shift.business_date >= start)
        if end is not None:
            query = query.filter(Shift.business_date <= end)
        rows = query.group_by(Shift.employee_id).all()

        result = [
            {
                "employee_id": employee_id,
                "shift_count": int(count),
                "litres_sold_ml": int(litres),
                "total_sales_cents": int(sales),
                "cash_collected_cents": int(cash),
                "total_variance_cents": int(variance),
                "short_shift_count": int(short or 0),
            }
            for employee_id, count, litres, sales, cash, variance, short in rows
        ]
        result.sort(key=lambda row: row["total_variance_cents"], reverse=True)
        return result
