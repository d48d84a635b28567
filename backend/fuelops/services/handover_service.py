# Overview: Cash custody chain from shift collection to bank deposit.

"""
Handover Chain

WHY: Cash counted at shift end changes hands several times before it
reaches the bank. Every hop is a custody transfer where money can go
missing, so each one is counted and compared against the previous hop.

CHAIN:
    SHIFT_COLLECTION -> STAFF_TO_MANAGER -> MANAGER_TO_OWNER -> DEPOSIT_TO_BANK

LIFECYCLE (per step):
    PENDING -> CONFIRMED          counted amount within tolerance
    PENDING -> DISPUTED           counted amount outside tolerance, or CRITICAL
    DISPUTED -> RESOLVED          supervisor closes the dispute with notes

DESIGN PRINCIPLES:
- expected_amount of a step is the actual_amount of its parent
- A step gets at most one successor (unique parent_handover_id)
- CONFIRMED and RESOLVED steps are immutable
- Repeating a confirm with the same amount is a no-op replay
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import ReconciliationSettings
from ..errors import (
    ConcurrencyConflict,
    HandoverAlreadyFinalized,
    HandoverNotDisputed,
    NotFound,
    ValidationError,
)
from ..models import CashHandover, Shift, Station
from ..models.handovers import (
    HANDOVER_CHAIN,
    HANDOVER_DEPOSIT_TO_BANK,
    HANDOVER_FINALIZED_STATUSES,
    HANDOVER_MANAGER_TO_OWNER,
    HANDOVER_SHIFT_COLLECTION,
    HANDOVER_STAFF_TO_MANAGER,
    HANDOVER_STATUS_CONFIRMED,
    HANDOVER_STATUS_DISPUTED,
    HANDOVER_STATUS_PENDING,
    HANDOVER_STATUS_RESOLVED,
    HANDOVER_STATUSES,
    next_handover_type,
)
from ..time_utils import utcnow
from .audit_service import AuditSink
from .base import BaseService
from .concurrency import lock_for_update
from .discrepancy_service import Classification, DiscrepancyDetector

logger = logging.getLogger(__name__)


@dataclass
class HandoverOutcome:
    handover: CashHandover
    next_handover: CashHandover | None = None
    classification: Classification | None = None
    replayed: bool = False


# =============================================================================
# CHAIN CONSTRUCTION
# =============================================================================

def custody_parties(
    handover_type: str, station: Station | None, shift: Shift
) -> tuple[int | None, int | None]:
    """(from_user_id, to_user_id) for a step; the bank has no user id."""
    manager_id = station.manager_user_id if station else None
    owner_id = station.owner_user_id if station else None
    if handover_type in (HANDOVER_SHIFT_COLLECTION, HANDOVER_STAFF_TO_MANAGER):
        return shift.employee_id, manager_id
    if handover_type == HANDOVER_MANAGER_TO_OWNER:
        return manager_id, owner_id
    return owner_id, None


def open_handover(
    session: Session,
    *,
    shift: Shift,
    handover_type: str,
    expected_amount_cents: int,
    parent: CashHandover | None = None,
) -> CashHandover:
    """
    Add a PENDING step to the session (flushed, not committed).

    The caller owns the transaction: shift end and handover confirmation
    both create the next step in the same commit as their own change.
    """
    station = session.get(Station, shift.station_id)
    from_user_id, to_user_id = custody_parties(handover_type, station, shift)
    handover = CashHandover(
        station_id=shift.station_id,
        shift_id=shift.id,
        parent_handover_id=parent.id if parent else None,
        handover_type=handover_type,
        sequence=HANDOVER_CHAIN.index(handover_type) + 1,
        handover_date=shift.business_date,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        expected_amount_cents=expected_amount_cents,
        status=HANDOVER_STATUS_PENDING,
    )
    session.add(handover)
    session.flush()
    return handover


class HandoverService(BaseService):
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
    # TRANSITIONS
    # =========================================================================

    def confirm(
        self,
        handover_id: int,
        *,
        actual_amount_cents: int,
        confirming_user_id: int,
        notes: str | None = None,
        bank_name: str | None = None,
        deposit_reference: str | None = None,
    ) -> HandoverOutcome:
        """
        Record the counted amount for a PENDING step.

        Within tolerance and not CRITICAL: CONFIRMED, and the next step is
        opened in the same transaction (except after the bank deposit).
        Otherwise: DISPUTED, no successor, alert after commit.

        Replays: a finalized step confirmed again with the same amount comes
        back unchanged with replayed=True; a different amount raises
        HandoverAlreadyFinalized.
        """
        if actual_amount_cents < 0:
            raise ValidationError("actual_amount_cents cannot be negative")

        def work() -> HandoverOutcome:
            handover = lock_for_update(
                self.session.query(CashHandover).filter(CashHandover.id == handover_id)
            ).first()
            if not handover:
                raise NotFound(f"Handover {handover_id} not found")

            if handover.status in HANDOVER_FINALIZED_STATUSES:
                if handover.actual_amount_cents == actual_amount_cents:
                    return HandoverOutcome(
                        handover=handover,
                        next_handover=self._successor(handover),
                        replayed=True,
                    )
                raise HandoverAlreadyFinalized(
                    f"Handover {handover_id} is already {handover.status}",
                    handover_id=handover_id,
                    status=handover.status,
                    actual_amount_cents=handover.actual_amount_cents,
                )

            before = handover.to_dict()
            classification = self.detector.classify(handover.expected_amount_cents, actual_amount_cents)
            within_tolerance = (
                abs(classification.discrepancy_cents) <= self.settings.handover_auto_confirm_tolerance_cents
                and not classification.is_critical
            )

            now = utcnow()
            handover.actual_amount_cents = actual_amount_cents
            handover.discrepancy_cents = classification.discrepancy_cents
            handover.severity = classification.severity
            handover.confirmed_by_user_id = confirming_user_id
            handover.confirmed_at = now
            if notes:
                handover.notes = notes
            if handover.handover_type == HANDOVER_DEPOSIT_TO_BANK:
                handover.bank_name = bank_name or handover.bank_name
                handover.deposit_reference = deposit_reference or handover.deposit_reference

            successor = None
            if within_tolerance:
                handover.status = HANDOVER_STATUS_CONFIRMED
                successor = self._open_successor(handover)
            else:
                handover.status = HANDOVER_STATUS_DISPUTED
                handover.dispute_notes = notes or (
                    f"Counted {actual_amount_cents} against expected {handover.expected_amount_cents}"
                )
            self.session.flush()

            event = "handover.confirmed" if within_tolerance else "handover.disputed"
            self._audit(
                event,
                confirming_user_id,
                before,
                handover,
                entity_type="cash_handover",
                station_id=handover.station_id,
                shift_id=handover.shift_id,
                handover_id=handover.id,
                occurred_at=now,
                note=notes,
            )
            if successor is not None:
                self._audit(
                    "handover.opened",
                    confirming_user_id,
                    None,
                    successor,
                    entity_type="cash_handover",
                    station_id=successor.station_id,
                    shift_id=successor.shift_id,
                    handover_id=successor.id,
                    occurred_at=now,
                )
            self._alert(
                classification,
                f"Handover {handover.id} ({handover.handover_type})",
                {
                    "handover_id": handover.id,
                    "shift_id": handover.shift_id,
                    "station_id": handover.station_id,
                    "handover_type": handover.handover_type,
                },
                force=not within_tolerance,
            )
            return HandoverOutcome(handover=handover, next_handover=successor, classification=classification)

        outcome = self._transaction(work)
        if not outcome.replayed:
            logger.info(
                "Handover %s %s by user %s (discrepancy %s)",
                outcome.handover.id, outcome.handover.status, confirming_user_id,
                outcome.handover.discrepancy_cents,
            )
        return outcome

    def resolve(self, handover_id: int, *, resolution_notes: str, resolving_user_id: int) -> HandoverOutcome:
        """
        Close a DISPUTED step and open the next one.

        The successor's expected amount is the disputed step's counted amount;
        the discrepancy stays on the resolved step.
        """
        if not resolution_notes or not resolution_notes.strip():
            raise ValidationError("resolution_notes cannot be blank")

        def work() -> HandoverOutcome:
            handover = lock_for_update(
                self.session.query(CashHandover).filter(CashHandover.id == handover_id)
            ).first()
            if not handover:
                raise NotFound(f"Handover {handover_id} not found")

            if handover.status == HANDOVER_STATUS_RESOLVED:
                return HandoverOutcome(handover=handover, next_handover=self._successor(handover), replayed=True)
            if handover.status != HANDOVER_STATUS_DISPUTED:
                raise HandoverNotDisputed(
                    f"Handover {handover_id} is {handover.status}, not DISPUTED",
                    handover_id=handover_id,
                    status=handover.status,
                )

            before = handover.to_dict()
            now = utcnow()
            handover.status = HANDOVER_STATUS_RESOLVED
            handover.resolution_notes = resolution_notes.strip()
            handover.resolved_by_user_id = resolving_user_id
            handover.resolved_at = now
            successor = self._open_successor(handover)
            self.session.flush()

            self._audit(
                "handover.resolved",
                resolving_user_id,
                before,
                handover,
                entity_type="cash_handover",
                station_id=handover.station_id,
                shift_id=handover.shift_id,
                handover_id=handover.id,
                occurred_at=now,
                note=resolution_notes,
            )
            if successor is not None:
                self._audit(
                    "handover.opened",
                    resolving_user_id,
                    None,
                    successor,
                    entity_type="cash_handover",
                    station_id=successor.station_id,
                    shift_id=successor.shift_id,
                    handover_id=successor.id,
                    occurred_at=now,
                )
            return HandoverOutcome(handover=handover, next_handover=successor)

        outcome = self._transaction(work)
        if not outcome.replayed:
            logger.info("Handover %s resolved by user %s", handover_id, resolving_user_id)
        return outcome

    def _open_successor(self, handover: CashHandover) -> CashHandover | None:
        successor_type = next_handover_type(handover.handover_type)
        if successor_type is None:
            return None
        shift = self.session.get(Shift, handover.shift_id)
        try:
            return open_handover(
                self.session,
                shift=shift,
                handover_type=successor_type,
                expected_amount_cents=handover.actual_amount_cents,
                parent=handover,
            )
        except IntegrityError as exc:
            # Another request already opened the successor
            raise ConcurrencyConflict(
                f"Handover {handover.id} already has a successor",
                handover_id=handover.id,
            ) from exc

    def _successor(self, handover: CashHandover) -> CashHandover | None:
        return (
            self.session.query(CashHandover)
            .filter(CashHandover.parent_handover_id == handover.id)
            .first()
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_handover(self, handover_id: int) -> CashHandover:
        handover = self.session.get(CashHandover, handover_id)
        if not handover:
            raise NotFound(f"Handover {handover_id} not found")
        return handover

    def get_chain(self, shift_id: int) -> list[CashHandover]:
        """All steps for a shift, in chain order."""
        if not self.session.get(Shift, shift_id):
            raise NotFound(f"Shift {shift_id} not found")
        return (
            self.session.query(CashHandover)
            .filter(CashHandover.shift_id == shift_id)
            .order_by(CashHandover.sequence.asc())
            .all()
        )

    def next_handover(self, handover: CashHandover) -> CashHandover | None:
        return self._successor(handover)

    def pending_for_user(self, user_id: int, station_id: int | None = None) -> list[CashHandover]:
        """PENDING steps waiting on this user to count and confirm."""
        query = self.session.query(CashHandover).filter(
            CashHandover.to_user_id == user_id,
            CashHandover.status == HANDOVER_STATUS_PENDING,
        )
        if station_id is not None:
            query = query.filter(CashHandover.station_id == station_id)
        return query.order_by(CashHandover.handover_date.asc(), CashHandover.id.asc()).all()

    def list_station_handovers(
        self,
        station_id: int,
        start: date | None = None,
        end: date | None = None,
        *,
        handover_type: str | None = None,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[CashHandover]:
        """Every step at a station, newest first, optionally narrowed by type and status."""
        query = self._in_period(station_id, start, end)
        if handover_type:
            handover_type = handover_type.upper()
            if handover_type not in HANDOVER_CHAIN:
                raise ValidationError(
                    f"Invalid handover_type. Must be one of: {', '.join(HANDOVER_CHAIN)}"
                )
            query = query.filter(CashHandover.handover_type == handover_type)
        if status:
            status = status.upper()
            if status not in HANDOVER_STATUSES:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(HANDOVER_STATUSES)}")
            query = query.filter(CashHandover.status == status)
        return (
            query.order_by(CashHandover.handover_date.desc(), CashHandover.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def unconfirmed(
        self, station_id: int, start: date | None = None, end: date | None = None
    ) -> list[CashHandover]:
        """PENDING and DISPUTED steps, i.e. everything blocking a settlement."""
        query = self._in_period(station_id, start, end).filter(
            CashHandover.status.in_((HANDOVER_STATUS_PENDING, HANDOVER_STATUS_DISPUTED))
        )
        return query.order_by(CashHandover.handover_date.asc(), CashHandover.sequence.asc()).all()

    def bank_deposits(
        self, station_id: int, start: date | None = None, end: date | None = None
    ) -> list[CashHandover]:
        query = self._in_period(station_id, start, end).filter(
            CashHandover.handover_type == HANDOVER_DEPOSIT_TO_BANK,
            CashHandover.status.in_((HANDOVER_STATUS_CONFIRMED, HANDOVER_STATUS_RESOLVED)),
        )
        return query.order_by(CashHandover.handover_date.asc(), CashHandover.id.asc()).all()

    def cash_flow_summary(self, station_id: int, start: date | None = None, end: date | None = None) -> dict:
        """
        Per-step totals for a station and date range.

        For each handover type: step count, expected, counted and discrepancy
        totals, and how many steps sit in each status.
        """
        rows = (
            self._in_period(station_id, start, end)
            .with_entities(
                CashHandover.handover_type,
                CashHandover.status,
                func.count(CashHandover.id),
                func.coalesce(func.sum(CashHandover.expected_amount_cents), 0),
                func.coalesce(func.sum(CashHandover.actual_amount_cents), 0),
                func.coalesce(func.sum(CashHandover.discrepancy_cents), 0),
            )
            .group_by(CashHandover.handover_type, CashHandover.status)
            .all()
        )

        steps = {
            handover_type: {
                "handover_type": handover_type,
                "count": 0,
                "expected_cents": 0,
                "actual_cents": 0,
                "discrepancy_cents": 0,
                "by_status": {},
            }
            for handover_type in HANDOVER_CHAIN
        }
        for handover_type, status, count, expected, actual, discrepancy in rows:
            step = steps[handover_type]
            step["count"] += int(count)
            step["expected_cents"] += int(expected)
            step["actual_cents"] += int(actual)
            step["discrepancy_cents"] += int(discrepancy)
            step["by_status"][status] = int(count)

        collected = steps[HANDOVER_SHIFT_COLLECTION]["actual_cents"]
        deposited = sum(h.actual_amount_cents or 0 for h in self.bank_deposits(station_id, start, end))
        return {
            "station_id": station_id,
            "start": start.isoformat() if start else None,
            "end": end.isoformat() if end else None,
            "steps": [steps[t] for t in HANDOVER_CHAIN],
            "collected_cents": collected,
            "deposited_cents": deposited,
            "in_transit_cents": collected - deposited,
        }

    def _in_period(self, station_id: int, start: date | None, end: date | None):
        query = self.session.query(CashHandover).filter(CashHandover.station_id == station_id)
        if start is not None:
            query = query.filter(CashHandover.handover_date >= start)
        if end is not None:
            query = query.filter(CashHandover.handover_date <= end)
        return query
