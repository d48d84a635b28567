"""
Station-day settlement tests: readiness checks, totals and uniqueness.
"""

from datetime import date

import pytest

from fuelops.config import ReconciliationSettings
from fuelops.errors import NotFound, PeriodAlreadyClosed, PeriodNotReady
from fuelops.models import AuditEvent, CashHandover, Settlement
from fuelops.services.engine import build_engine

from conftest import MANAGER_ID, OWNER_ID, sell

DAY = date(2024, 5, 1)


def run_shift(engine, station, nozzle, employee_id, litres, counted):
    shift = engine.shifts.start_shift(employee_id=employee_id, station_id=station.id, business_date=DAY)
    sell(engine, shift, nozzle, litres)
    engine.shifts.end_shift(shift.id, actual_cash_cents=counted)
    return shift


def deposit(engine, db_session, shift, amounts):
    """Confirm each step of the shift's chain with the given counted amounts."""
    step = db_session.query(CashHandover).filter_by(shift_id=shift.id, parent_handover_id=None).one()
    for amount in amounts:
        outcome = engine.handovers.confirm(
            step.id,
            actual_amount_cents=amount,
            confirming_user_id=MANAGER_ID,
            bank_name="First National",
            deposit_reference=f"DEP-{shift.id}",
        )
        step = outcome.next_handover
    return step


def test_close_before_deposit_is_not_ready(engine, db_session, station, nozzle, price):
    shift = run_shift(engine, station, nozzle, 1, 10, 100_000)
    deposit(engine, db_session, shift, [100_000, 100_000, 100_000])

    with pytest.raises(PeriodNotReady) as exc_info:
        engine.settlements.close_period(station.id, DAY, prepared_by=OWNER_ID)

    details = exc_info.value.details
    assert details["undeposited_shift_ids"] == [shift.id]
    assert len(details["open_handover_ids"]) == 1
    assert db_session.query(Settlement).count() == 0


def test_active_shift_blocks_close(engine, station):
    shift = engine.shifts.start_shift(employee_id=1, station_id=station.id, business_date=DAY)
    with pytest.raises(PeriodNotReady) as exc_info:
        engine.settlements.close_period(station.id, DAY, prepared_by=OWNER_ID)
    assert exc_info.value.details["active_shift_ids"] == [shift.id]


def test_disputed_step_blocks_close(engine, db_session, station, nozzle, price):
    shift = run_shift(engine, station, nozzle, 1, 10, 100_000)
    deposit(engine, db_session, shift, [90_000])
    with pytest.raises(PeriodNotReady):
        engine.settlements.close_period(station.id, DAY, prepared_by=OWNER_ID)


def test_empty_day_is_not_ready(engine, station):
    with pytest.raises(PeriodNotReady):
        engine.settlements.close_period(station.id, DAY, prepared_by=OWNER_ID)


def test_unknown_station(engine):
    with pytest.raises(NotFound):
        engine.settlements.close_period(777, DAY, prepared_by=OWNER_ID)


def test_close_aggregates_the_day(engine, db_session, station, nozzle, price):
    first = run_shift(engine, station, nozzle, 1, 10, 95_000)
    second = run_shift(engine, station, nozzle, 2, 5, 50_000)
    deposit(engine, db_session, first, [95_000] * 4)
    deposit(engine, db_session, second, [50_000] * 4)

    cancelled = engine.shifts.start_shift(employee_id=3, station_id=station.id, business_date=DAY)
    engine.shifts.cancel_shift(cancelled.id, reason="No-show")

    settlement = engine.settlements.close_period(station.id, DAY, prepared_by=OWNER_ID, notes="All banked")

    assert settlement.total_sales_cents == 150_000
    assert settlement.total_litres_ml == 15_000
    assert settlement.expected_cash_cents == 150_000
    assert settlement.actual_cash_cents == 145_000
    assert settlement.deposited_cash_cents == 145_000
    assert settlement.shift_variance_cents == 5_000
    assert settlement.final_variance_cents == 0
    assert settlement.resolved_discrepancy_cents == 0
    assert settlement.shift_count == 2
    assert settlement.cancelled_shift_count == 1
    assert settlement.handover_count == 8

    assert db_session.query(AuditEvent).filter_by(event_type="settlement.closed").count() == 1
    assert engine.settlements.get_settlement(settlement.id).id == settlement.id
    assert [s.id for s in engine.settlements.list_settlements(station.id)] == [settlement.id]


def test_resolved_and_tolerated_discrepancies_are_reported_separately(db_session, notifier, station, nozzle, price):
    engine = build_engine(
        db_session,
        ReconciliationSettings(handover_auto_confirm_tolerance_cents=100),
        notifier=notifier,
    )
    shift = run_shift(engine, station, nozzle, 1, 10, 100_000)

    collection = db_session.query(CashHandover).filter_by(shift_id=shift.id).one()
    # 50 short, accepted within tolerance
    step = engine.handovers.confirm(
        collection.id, actual_amount_cents=99_950, confirming_user_id=MANAGER_ID
    ).next_handover
    # 950 short, disputed then resolved
    engine.handovers.confirm(step.id, actual_amount_cents=99_000, confirming_user_id=MANAGER_ID)
    step = engine.handovers.resolve(
        step.id, resolution_notes="float not returned", resolving_user_id=OWNER_ID
    ).next_handover
    step = engine.handovers.confirm(step.id, actual_amount_cents=99_000, confirming_user_id=OWNER_ID).next_handover
    engine.handovers.confirm(step.id, actual_amount_cents=99_000, confirming_user_id=OWNER_ID)

    settlement = engine.settlements.close_period(station.id, DAY, prepared_by=OWNER_ID)
    assert settlement.final_variance_cents == 50
    assert settlement.resolved_discrepancy_cents == 950
    assert settlement.deposited_cash_cents == 99_000


def test_second_close_is_rejected(engine, db_session, station, nozzle, price):
    shift = run_shift(engine, station, nozzle, 1, 1, 10_000)
    deposit(engine, db_session, shift, [10_000] * 4)

    settlement = engine.settlements.close_period(station.id, DAY, prepared_by=OWNER_ID)
    with pytest.raises(PeriodAlreadyClosed) as exc_info:
        engine.settlements.close_period(station.id, DAY, prepared_by=OWNER_ID)

    assert exc_info.value.details["settlement_id"] == settlement.id
    assert db_session.query(Settlement).count() == 1
