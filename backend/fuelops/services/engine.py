# Overview: Wires the reconciliation services and their collaborators together.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.orm import Session

from ..config import ReconciliationSettings
from .audit_service import AuditSink, LedgerAuditSink
from .discrepancy_service import DiscrepancyDetector
from .handover_service import HandoverService
from .notification_service import LoggingNotifier, Notifier
from .price_service import DatabasePriceLookup, LastKnownPrices, PriceLookup
from .reading_service import ReadingService
from .settlement_service import SettlementService
from .shift_service import ShiftService
from .tank_service import DatabaseTankStatus, TankStatus


@dataclass
class ReconciliationEngine:
    readings: ReadingService
    shifts: ShiftService
    handovers: HandoverService
    settlements: SettlementService
    detector: DiscrepancyDetector


def build_engine(
    session: Session,
    settings: ReconciliationSettings | None = None,
    *,
    notifier: Notifier | None = None,
    audit_sink: AuditSink | None = None,
    price_lookup: PriceLookup | None = None,
    price_cache: LastKnownPrices | None = None,
    tank_status: TankStatus | None = None,
) -> ReconciliationEngine:
    """All four services sharing one session, settings and set of collaborators."""
    settings = settings or ReconciliationSettings()
    detector = DiscrepancyDetector(
        epsilon_cents=settings.discrepancy_epsilon_cents,
        warning_band_bps=settings.discrepancy_warning_band_bps,
        notifier=notifier or LoggingNotifier(),
    )
    audit_sink = audit_sink or LedgerAuditSink(session)
    common = {"settings": settings, "audit_sink": audit_sink, "detector": detector}
    return ReconciliationEngine(
        readings=ReadingService(
            session,
            price_lookup=price_lookup or DatabasePriceLookup(session, price_cache),
            tank_status=tank_status or DatabaseTankStatus(session),
            **common,
        ),
        shifts=ShiftService(session, **common),
        handovers=HandoverService(session, **common),
        settlements=SettlementService(session, **common),
        detector=detector,
    )


def get_engine() -> ReconciliationEngine:
    """Engine bound to db.session and the app's shared collaborators."""
    from ..extensions import db

    return build_engine(
        db.session,
        ReconciliationSettings.from_config(current_app.config),
        notifier=current_app.extensions.get("fuelops.notifier"),
        price_cache=current_app.extensions.get("fuelops.price_cache"),
    )
