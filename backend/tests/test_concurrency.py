"""
Race tests against a file-backed database, one session per thread.

The in-memory database used elsewhere shares a single connection, so it
cannot show two writers colliding.
"""

import threading
from datetime import timedelta

import pytest

from fuelops import create_app
from fuelops.errors import ConcurrencyConflict, DuplicateActiveShift
from fuelops.extensions import db
from fuelops.models import CashHandover, FuelPrice, Nozzle, Shift, Station
from fuelops.models.shifts import SHIFT_STATUS_ACTIVE
from fuelops.services.engine import build_engine
from fuelops.time_utils import utcnow

from conftest import EMPLOYEE_ID, MANAGER_ID, OWNER_ID, PRICE_CENTS, RecordingNotifier, sell

THREADS = 4


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'LOG_LEVEL': 'WARNING',
    })
    with app.app_context():
        db.create_all()
        station = Station(name="Race", code="RC", manager_user_id=MANAGER_ID, owner_user_id=OWNER_ID)
        db.session.add(station)
        db.session.flush()
        db.session.add(Nozzle(
            station_id=station.id, nozzle_number="N1", fuel_type="PETROL",
            initial_volume_ml=0, current_volume_ml=0,
        ))
        db.session.add(FuelPrice(
            station_id=station.id, fuel_type="PETROL", price_cents=PRICE_CENTS,
            effective_from=utcnow() - timedelta(days=1),
        ))
        db.session.commit()

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def race(app, operation):
    """Run operation(engine) in THREADS threads at once; collect results and errors."""
    barrier = threading.Barrier(THREADS)
    results, errors = [], []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            engine = build_engine(db.session, notifier=RecordingNotifier())
            barrier.wait()
            try:
                outcome = operation(engine)
            except (DuplicateActiveShift, ConcurrencyConflict) as exc:
                with lock:
                    errors.append(exc)
            else:
                with lock:
                    results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(THREADS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results, errors


def test_concurrent_starts_leave_one_active_shift(file_app):
    with file_app.app_context():
        station_id = db.session.query(Station).one().id

    results, errors = race(
        file_app,
        lambda engine: engine.shifts.start_shift(employee_id=EMPLOYEE_ID, station_id=station_id).id,
    )

    assert len(results) == 1
    assert len(errors) == THREADS - 1
    with file_app.app_context():
        active = db.session.query(Shift).filter_by(status=SHIFT_STATUS_ACTIVE).all()
        assert [s.id for s in active] == results


def test_concurrent_confirms_open_a_single_successor(file_app):
    with file_app.app_context():
        engine = build_engine(db.session, notifier=RecordingNotifier())
        station_id = db.session.query(Station).one().id
        nozzle = db.session.query(Nozzle).one()
        shift = engine.shifts.start_shift(employee_id=EMPLOYEE_ID, station_id=station_id)
        sell(engine, shift, nozzle, 5)
        engine.shifts.end_shift(shift.id, actual_cash_cents=50_000)
        handover_id = db.session.query(CashHandover).one().id

    results, errors = race(
        file_app,
        lambda engine: engine.handovers.confirm(
            handover_id, actual_amount_cents=50_000, confirming_user_id=MANAGER_ID
        ).next_handover.id,
    )

    assert len(results) + len(errors) == THREADS
    assert all(isinstance(exc, ConcurrencyConflict) for exc in errors)
    # Winners and replays all point at the same successor
    assert len(set(results)) == 1
    with file_app.app_context():
        successors = db.session.query(CashHandover).filter_by(parent_handover_id=handover_id).all()
        assert len(successors) == 1
        assert successors[0].id in results


def test_concurrent_readings_on_one_shift_lose_no_totals(file_app):
    with file_app.app_context():
        engine = build_engine(db.session, notifier=RecordingNotifier())
        station_id = db.session.query(Station).one().id
        for number in range(2, THREADS + 1):
            db.session.add(Nozzle(
                station_id=station_id, nozzle_number=f"N{number}", fuel_type="PETROL",
                initial_volume_ml=0, current_volume_ml=0,
            ))
        db.session.commit()
        shift = engine.shifts.start_shift(employee_id=EMPLOYEE_ID, station_id=station_id)
        shift_id = shift.id
        nozzle_ids = [n.id for n in db.session.query(Nozzle).all()]

    # One nozzle per thread, all against the same shift row
    free_nozzles = list(nozzle_ids)
    lock = threading.Lock()

    def record(engine):
        with lock:
            nozzle_id = free_nozzles.pop()
        nozzle = db.session.get(Nozzle, nozzle_id)
        shift = db.session.get(Shift, shift_id)
        return sell(engine, shift, nozzle, 1).reading.id

    results, errors = race(file_app, record)

    assert results
    assert len(results) + len(errors) == THREADS
    assert all(isinstance(exc, ConcurrencyConflict) for exc in errors)
    with file_app.app_context():
        shift = db.session.get(Shift, shift_id)
        assert shift.reading_count == len(results)
        assert shift.expected_cash_cents == PRICE_CENTS * len(results)
        assert shift.total_sales_cents == PRICE_CENTS * len(results)
