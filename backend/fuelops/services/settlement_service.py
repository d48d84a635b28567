# Overview: Station-day closure once every shift's cash has reached the bank.

"""
Settlement Finalizer

WHY: A business day is only closed when nothing about it can still move:
every shift is terminal and every ended shift's cash has been deposited.
The settlement is the immutable record of that day.

READINESS (all must hold, else PeriodNotReady with the blocking ids):
- at least one shift on the station/date
- no ACTIVE shift
- no PENDING or DISPUTED handover
- every ENDED shift has a CONFIRMED or RESOLVED DEPOSIT_TO_BANK

VARIANCE:
- shift_variance: sum of cash variances at shift end
- resolved_discrepancy: sum of discrepancies on RESOLVED handovers
- final_variance: sum of discrepancies on CONFIRMED handovers with a
  non-zero discrepancy (accepted within the auto-confirm tolerance)
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import ReconciliationSettings
from ..errors import NotFound, PeriodAlreadyClosed, PeriodNotReady
from ..models import CashHandover, Settlement, Shift, Station
from ..models.handovers import (
    HANDOVER_DEPOSIT_TO_BANK,
    HANDOVER_STATUS_CONFIRMED,
    HANDOVER_STATUS_RESOLVED,
    HANDOVER_TERMINAL_STATUSES,
)
from ..models.shifts import SHIFT_STATUS_ACTIVE, SHIFT_STATUS_CANCELLED, SHIFT_STATUS_ENDED
from ..time_utils import to_iso_date, utcnow
from .audit_service import AuditSink
from .base import BaseService
from .discrepancy_service import DiscrepancyDetector

logger = logging.getLogger(__name__)


class SettlementService(BaseService):
    def __init__(
        self,
        session: Session,
        *,
        settings: ReconciliationSettings | None = None,
        audit_sink: AuditSink | None = None,
        detector: DiscrepancyDetector | None = None,
    ):
        super().__init__(session, settings=settings, audit_sink=audit_sink, detector=detector)

    def close_period(
        self,
        station_id: int,
        business_date: date,
        *,
        prepared_by: int,
        approved_by: int | None = None,
        notes: str | None = None,
    ) -> Settlement:
        def work() -> Settlement:
            if not self.session.get(Station, station_id):
                raise NotFound(f"Station {station_id} not found")

            existing = self._find(station_id, business_date)
            if existing:
                raise PeriodAlreadyClosed(
                    f"Station {station_id} is already settled for {to_iso_date(business_date)}",
                    settlement_id=existing.id,
                )

            shifts = (
                self.session.query(Shift)
                .filter(Shift.station_id == station_id, Shift.business_date == business_date)
                .order_by(Shift.id.asc())
                .all()
            )
            handovers = (
                self.session.query(CashHandover)
                .filter(CashHandover.shift_id.in_([s.id for s in shifts]))
                .order_by(CashHandover.shift_id.asc(), CashHandover.sequence.asc())
                .all()
            ) if shifts else []

            self._require_ready(station_id, business_date, shifts, handovers)

            ended = [s for s in shifts if s.status == SHIFT_STATUS_ENDED]
            deposits = [h for h in handovers if h.handover_type == HANDOVER_DEPOSIT_TO_BANK]

            settlement = Settlement(
                station_id=station_id,
                business_date=business_date,
                total_sales_cents=sum(s.total_sales_cents for s in ended),
                total_litres_ml=sum(s.litres_sold_ml for s in ended),
                expected_cash_cents=sum(s.expected_cash_cents for s in ended),
                expected_online_cents=sum(s.expected_online_cents for s in ended),
                expected_credit_cents=sum(s.expected_credit_cents for s in ended),
                actual_cash_cents=sum(s.actual_cash_cents or 0 for s in ended),
                actual_online_cents=sum(s.actual_online_cents or 0 for s in ended),
                deposited_cash_cents=sum(h.actual_amount_cents or 0 for h in deposits),
                shift_variance_cents=sum(s.variance_cents or 0 for s in ended),
                online_variance_cents=sum(s.online_variance_cents or 0 for s in ended),
                resolved_discrepancy_cents=sum(
                    h.discrepancy_cents or 0 for h in handovers if h.status == HANDOVER_STATUS_RESOLVED
                ),
                final_variance_cents=sum(
                    h.discrepancy_cents
                    for h in handovers
                    if h.status == HANDOVER_STATUS_CONFIRMED and h.discrepancy_cents
                ),
                shift_count=len(ended),
                cancelled_shift_count=sum(1 for s in shifts if s.status == SHIFT_STATUS_CANCELLED),
                handover_count=len(handovers),
                prepared_by_user_id=prepared_by,
                approved_by_user_id=approved_by,
                notes=notes,
                closed_at=utcnow(),
            )
            self.session.add(settlement)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise PeriodAlreadyClosed(
                    f"Station {station_id} is already settled for {to_iso_date(business_date)}"
                ) from exc

            self._audit(
                "settlement.closed",
                prepared_by,
                None,
                settlement,
                entity_type="settlement",
                station_id=station_id,
                settlement_id=settlement.id,
                occurred_at=settlement.closed_at,
                note=notes,
            )
            return settlement

        settlement = self._transaction(work)
        logger.info(
            "Settled station %s for %s: sales %s, deposited %s, final variance %s",
            station_id, to_iso_date(business_date), settlement.total_sales_cents,
            settlement.deposited_cash_cents, settlement.final_variance_cents,
        )
        return settlement

    def _require_ready(self, station_id, business_date, shifts, handovers) -> None:
        day = to_iso_date(business_date)
        if not shifts:
            raise PeriodNotReady(f"No shifts for station {station_id} on {day}")

        active = [s.id for s in shifts if s.status == SHIFT_STATUS_ACTIVE]
        open_steps = [h.id for h in handovers if h.status not in HANDOVER_TERMINAL_STATUSES]
        deposited = {
            h.shift_id
            for h in handovers
            if h.handover_type == HANDOVER_DEPOSIT_TO_BANK and h.status in HANDOVER_TERMINAL_STATUSES
        }
        undeposited = [s.id for s in shifts if s.status == SHIFT_STATUS_ENDED and s.id not in deposited]

        if active or open_steps or undeposited:
            raise PeriodNotReady(
                f"Station {station_id} cannot be settled for {day}",
                active_shift_ids=active,
                open_handover_ids=open_steps,
                undeposited_shift_ids=undeposited,
            )

    def _find(self, station_id: int, business_date: date) -> Settlement | None:
        return (
            self.session.query(Settlement)
            .filter_by(station_id=station_id, business_date=business_date)
            .first()
        )

    def get_settlement(self, settlement_id: int) -> Settlement:
        settlement = self.session.get(Settlement, settlement_id)
        if not settlement:
            raise NotFound(f"Settlement {settlement_id} not found")
        return settlement

    def list_settlements(
        self, station_id: int, start: date | None = None, end: date | None = None
    ) -> list[Settlement]:
        query = self.session.query(Settlement).filter(Settlement.station_id == station_id)
        if start is not None:
            query = query.filter(Settlement.business_date >= start)
        if end is not None:
            query = query.filter(Settlement.business_date <= end)
        return query.order_by(Settlement.business_date.desc()).all()
