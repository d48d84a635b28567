"""
Pytest fixtures for fuelops backend tests.

Provides the application, a clean database per test, master data
(station, nozzle, price) and a reconciliation engine wired to a recording
notifier.
"""

from datetime import timedelta

import pytest

from fuelops import create_app
from fuelops.config import ReconciliationSettings
from fuelops.extensions import db
from fuelops.models import FuelPrice, Nozzle, Station
from fuelops.schemas import PaymentSplit
from fuelops.services.engine import build_engine
from fuelops.services.notification_service import Notifier
from fuelops.time_utils import utcnow

OWNER_ID = 1
MANAGER_ID = 2
EMPLOYEE_ID = 7

# 100.00 per litre
PRICE_CENTS = 10_000


class RecordingNotifier(Notifier):
    """Collects alerts instead of delivering them."""

    def __init__(self):
        self.alerts = []

    def notify(self, severity, message, context):
        self.alerts.append({"severity": severity, "message": message, "context": context})
        return True


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifier(app):
    """Recording notifier, also installed as the app-wide notifier for route tests."""
    recorder = RecordingNotifier()
    previous = app.extensions.get("fuelops.notifier")
    app.extensions["fuelops.notifier"] = recorder
    yield recorder
    app.extensions["fuelops.notifier"] = previous


@pytest.fixture(scope='function')
def settings():
    return ReconciliationSettings()


@pytest.fixture(scope='function')
def engine(db_session, notifier, settings):
    return build_engine(db_session, settings, notifier=notifier)


@pytest.fixture(scope='function')
def station(db_session):
    station = Station(name="Highway 5", code="HW5", manager_user_id=MANAGER_ID, owner_user_id=OWNER_ID)
    db_session.add(station)
    db_session.commit()
    return station


@pytest.fixture(scope='function')
def nozzle(db_session, station):
    """PETROL nozzle whose meter starts at 1000.000 L."""
    nozzle = Nozzle(
        station_id=station.id,
        nozzle_number="N1",
        fuel_type="PETROL",
        initial_volume_ml=1_000_000,
        current_volume_ml=1_000_000,
    )
    db_session.add(nozzle)
    db_session.commit()
    return nozzle


@pytest.fixture(scope='function')
def price(db_session, station):
    price = FuelPrice(
        station_id=station.id,
        fuel_type="PETROL",
        price_cents=PRICE_CENTS,
        effective_from=utcnow() - timedelta(days=1),
    )
    db_session.add(price)
    db_session.commit()
    return price


@pytest.fixture(scope='function')
def active_shift(engine, station):
    return engine.shifts.start_shift(employee_id=EMPLOYEE_ID, station_id=station.id)


def sell(engine, shift, nozzle, litres, cash=None, online=0, credit=0):
    """Record a reading selling `litres` whole litres from the nozzle's current position."""
    litres_ml = litres * 1000
    total = litres * PRICE_CENTS
    split = PaymentSplit(
        cash_cents=total - online - credit if cash is None else cash,
        online_cents=online,
        credit_cents=credit,
    )
    current = engine.readings.get_previous_volume(nozzle.id) + litres_ml
    return engine.readings.record_reading(
        nozzle_id=nozzle.id,
        shift_id=shift.id,
        current_volume_ml=current,
        payment_split=split,
        user_id=shift.employee_id,
    )
