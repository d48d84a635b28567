"""
Reading ledger tests: pricing, split conservation, meter ordering and
the running shift totals.
"""

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from fuelops.errors import (
    InvalidVolumeOrder,
    NotFound,
    PaymentSplitMismatch,
    PriceUnavailable,
    ShiftNotActive,
    ValidationError,
)
from fuelops.extensions import db
from fuelops.models import AuditEvent, Nozzle, Reading, Shift, Station, Tank
from fuelops.models.readings import READING_KIND_SPLIT_CORRECTION
from fuelops.money_utils import amount_for_volume
from fuelops.schemas import PaymentSplit
from fuelops.services.price_service import DatabasePriceLookup, LastKnownPrices
from fuelops.time_utils import utcnow

from conftest import EMPLOYEE_ID, PRICE_CENTS, sell


def test_ten_litres_at_one_hundred_accepts_conserving_split(engine, nozzle, price, active_shift):
    result = engine.readings.record_reading(
        nozzle_id=nozzle.id,
        shift_id=active_shift.id,
        current_volume_ml=1_010_000,
        payment_split=PaymentSplit(cash_cents=90_000, online_cents=10_000),
        user_id=EMPLOYEE_ID,
    )
    reading = result.reading
    assert reading.litres_sold_ml == 10_000
    assert reading.price_cents == PRICE_CENTS
    assert reading.total_amount_cents == 100_000
    assert reading.previous_volume_ml == 1_000_000
    assert reading.cash_cents + reading.online_cents + reading.credit_cents == reading.total_amount_cents
    assert result.advisories == []


def test_split_short_of_total_is_rejected_and_nothing_persisted(engine, db_session, nozzle, price, active_shift):
    with pytest.raises(PaymentSplitMismatch) as exc_info:
        engine.readings.record_reading(
            nozzle_id=nozzle.id,
            shift_id=active_shift.id,
            current_volume_ml=1_010_000,
            payment_split=PaymentSplit(cash_cents=80_000, online_cents=10_000),
            user_id=EMPLOYEE_ID,
        )
    assert exc_info.value.details["difference_cents"] == -10_000
    assert db_session.query(Reading).count() == 0
    assert db_session.get(Nozzle, nozzle.id).current_volume_ml == 1_000_000
    assert db_session.get(Shift, active_shift.id).expected_cash_cents == 0


def test_one_cent_rounding_slack_is_accepted(engine, nozzle, price, active_shift):
    # 1.005 L at 100.00 = 100.50
    result = engine.readings.record_reading(
        nozzle_id=nozzle.id,
        shift_id=active_shift.id,
        current_volume_ml=1_001_005,
        payment_split=PaymentSplit(cash_cents=10_049),
        user_id=EMPLOYEE_ID,
    )
    assert result.reading.total_amount_cents == 10_050


def test_amount_rounds_half_up():
    # 0.125 L at 1.01 = 0.12625 -> 0.13
    assert amount_for_volume(125, 101) == 13
    # 0.005 L at 1.00 = 0.005 -> 0.01
    assert amount_for_volume(5, 100) == 1
    assert amount_for_volume(4, 100) == 0


def test_meter_going_backwards_is_rejected(engine, db_session, nozzle, price, active_shift):
    with pytest.raises(InvalidVolumeOrder):
        engine.readings.record_reading(
            nozzle_id=nozzle.id,
            shift_id=active_shift.id,
            current_volume_ml=999_999,
            payment_split=PaymentSplit(),
            user_id=EMPLOYEE_ID,
        )
    assert db_session.query(Reading).count() == 0


def test_zero_litre_reading_skips_pricing(engine, nozzle, active_shift):
    # No price fixture: a zero-volume reading must not need one
    result = engine.readings.record_reading(
        nozzle_id=nozzle.id,
        shift_id=active_shift.id,
        current_volume_ml=1_000_000,
        payment_split=PaymentSplit(),
        user_id=EMPLOYEE_ID,
    )
    assert result.reading.litres_sold_ml == 0
    assert result.reading.price_cents is None
    assert result.reading.total_amount_cents == 0


def test_missing_price_is_reported(engine, nozzle, active_shift):
    with pytest.raises(PriceUnavailable):
        sell(engine, active_shift, nozzle, 5)


def test_readings_accumulate_into_shift_totals(engine, db_session, nozzle, price, active_shift):
    sell(engine, active_shift, nozzle, 5, cash=40_000, online=10_000)
    sell(engine, active_shift, nozzle, 3, cash=10_000, online=5_000, credit=15_000)
    sell(engine, active_shift, nozzle, 2)

    shift = db_session.get(Shift, active_shift.id)
    assert shift.expected_cash_cents == 70_000
    assert shift.expected_online_cents == 15_000
    assert shift.expected_credit_cents == 15_000
    assert shift.total_sales_cents == 100_000
    assert shift.litres_sold_ml == 10_000
    assert shift.reading_count == 3
    assert db_session.get(Nozzle, nozzle.id).current_volume_ml == 1_010_000


def test_each_reading_starts_where_the_last_one_stopped(engine, nozzle, price, active_shift):
    first = sell(engine, active_shift, nozzle, 4).reading
    second = sell(engine, active_shift, nozzle, 6).reading
    assert second.previous_volume_ml == first.current_volume_ml
    assert engine.readings.get_previous_volume(nozzle.id) == second.current_volume_ml


def test_reading_on_ended_shift_is_rejected(engine, nozzle, price, active_shift):
    engine.shifts.end_shift(active_shift.id, actual_cash_cents=0)
    with pytest.raises(ShiftNotActive):
        sell(engine, active_shift, nozzle, 1)


def test_unknown_shift_and_nozzle(engine, nozzle, active_shift):
    with pytest.raises(NotFound):
        engine.readings.record_reading(
            nozzle_id=nozzle.id, shift_id=9999, current_volume_ml=1_000_000,
            payment_split=PaymentSplit(), user_id=EMPLOYEE_ID,
        )
    with pytest.raises(NotFound):
        engine.readings.record_reading(
            nozzle_id=9999, shift_id=active_shift.id, current_volume_ml=1_000_000,
            payment_split=PaymentSplit(), user_id=EMPLOYEE_ID,
        )


def test_nozzle_from_another_station_is_rejected(engine, db_session, price, active_shift):
    other = Station(name="Other", code="OT")
    db_session.add(other)
    db_session.flush()
    foreign = Nozzle(station_id=other.id, nozzle_number="X1", fuel_type="PETROL")
    db_session.add(foreign)
    db_session.commit()

    with pytest.raises(ValidationError):
        engine.readings.record_reading(
            nozzle_id=foreign.id, shift_id=active_shift.id, current_volume_ml=0,
            payment_split=PaymentSplit(), user_id=EMPLOYEE_ID,
        )


def test_negative_split_portion_is_rejected():
    with pytest.raises(ValidationError):
        PaymentSplit(cash_cents=-1)


def test_low_tank_adds_advisory_without_blocking(engine, db_session, station, nozzle, price, active_shift):
    db_session.add(Tank(station_id=station.id, fuel_type="PETROL", capacity_ml=20_000_000, current_level_ml=1_000_000))
    db_session.commit()

    result = sell(engine, active_shift, nozzle, 2)
    assert result.reading.low_fuel_warning is True
    assert result.advisories == [{"kind": "low_fuel", "station_id": station.id, "fuel_type": "PETROL"}]


def test_reading_is_audited(engine, db_session, nozzle, price, active_shift):
    reading = sell(engine, active_shift, nozzle, 1).reading
    event = db_session.query(AuditEvent).filter_by(event_type="reading.recorded").one()
    assert event.reading_id == reading.id
    assert event.shift_id == active_shift.id
    assert event.actor_user_id == EMPLOYEE_ID


# =============================================================================
# SPLIT CORRECTIONS
# =============================================================================

def test_split_correction_moves_money_between_portions(engine, db_session, nozzle, price, active_shift):
    reading = sell(engine, active_shift, nozzle, 10, cash=100_000).reading

    correction = engine.readings.correct_reading_split(
        reading_id=reading.id,
        payment_split=PaymentSplit(cash_cents=70_000, online_cents=30_000),
        supervisor_id=2,
        reason="Card payment keyed as cash",
    )

    assert correction.kind == READING_KIND_SPLIT_CORRECTION
    assert correction.corrects_reading_id == reading.id
    assert (correction.cash_cents, correction.online_cents, correction.credit_cents) == (-30_000, 30_000, 0)
    assert correction.total_amount_cents == 0

    # Original row untouched
    original = db_session.get(Reading, reading.id)
    assert original.cash_cents == 100_000

    effective = engine.readings.effective_split(original)
    assert (effective.cash_cents, effective.online_cents) == (70_000, 30_000)

    shift = db_session.get(Shift, active_shift.id)
    assert shift.expected_cash_cents == 70_000
    assert shift.expected_online_cents == 30_000
    assert shift.total_sales_cents == 100_000


def test_split_correction_must_keep_the_total(engine, nozzle, price, active_shift):
    reading = sell(engine, active_shift, nozzle, 10).reading
    with pytest.raises(PaymentSplitMismatch):
        engine.readings.correct_reading_split(
            reading_id=reading.id,
            payment_split=PaymentSplit(cash_cents=90_000),
            supervisor_id=2,
            reason="typo",
        )


def test_split_correction_after_shift_end_is_rejected(engine, nozzle, price, active_shift):
    reading = sell(engine, active_shift, nozzle, 10).reading
    engine.shifts.end_shift(active_shift.id, actual_cash_cents=100_000)
    with pytest.raises(ShiftNotActive):
        engine.readings.correct_reading_split(
            reading_id=reading.id,
            payment_split=PaymentSplit(cash_cents=50_000, online_cents=50_000),
            supervisor_id=2,
            reason="too late",
        )


def test_split_correction_requires_reason_and_change(engine, nozzle, price, active_shift):
    reading = sell(engine, active_shift, nozzle, 1).reading
    with pytest.raises(ValidationError):
        engine.readings.correct_reading_split(
            reading_id=reading.id, payment_split=PaymentSplit(cash_cents=10_000),
            supervisor_id=2, reason="  ",
        )
    with pytest.raises(ValidationError):
        engine.readings.correct_reading_split(
            reading_id=reading.id, payment_split=PaymentSplit(cash_cents=10_000),
            supervisor_id=2, reason="no-op",
        )


# =============================================================================
# PRICE LOOKUP
# =============================================================================

def test_price_lookup_falls_back_to_last_known_price(db_session, nozzle, price, monkeypatch):
    cache = LastKnownPrices()
    lookup = DatabasePriceLookup(db_session, cache)
    assert lookup.get_effective_price(nozzle.id, utcnow()) == PRICE_CENTS

    def broken_get(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection lost"))

    monkeypatch.setattr(db_session, "get", broken_get)
    assert lookup.get_effective_price(nozzle.id, utcnow()) == PRICE_CENTS


def test_failed_price_query_keeps_the_reading_transaction(engine, db_session, nozzle, price, active_shift):
    # First sale caches the price for this nozzle
    sell(engine, active_shift, nozzle, 1)
    statements = []

    def fail_price_select(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)
        if "FROM fuel_prices" in statement:
            raise OperationalError(statement, parameters, Exception("statement timeout"))

    event.listen(db.engine, "before_cursor_execute", fail_price_select)
    try:
        result = sell(engine, active_shift, nozzle, 2)
    finally:
        event.remove(db.engine, "before_cursor_execute", fail_price_select)

    assert result.reading.price_cents == PRICE_CENTS
    assert any(s.startswith("SAVEPOINT") for s in statements)
    assert any(s.startswith("ROLLBACK TO SAVEPOINT") for s in statements)
    assert db_session.query(Reading).filter_by(shift_id=active_shift.id).count() == 2
    assert db_session.get(Shift, active_shift.id).expected_cash_cents == 30_000
