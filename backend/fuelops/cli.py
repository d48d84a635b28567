# Overview: Flask CLI command groups for bootstrap, master data, and inspection.

# backend/fuelops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to fuelops (PowerShell: $env:FLASK_APP="fuelops").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Master data (normally owned by the back office; here for local setup):
# - python -m flask stations create --name "Highway 5" --code HW5 --manager-id 2 --owner-id 1
# - python -m flask stations list
# - python -m flask nozzles create --station-id 1 --number N1 --fuel-type PETROL --initial-volume 10000.000
# - python -m flask prices set --station-id 1 --fuel-type PETROL --price-cents 10250
# - python -m flask tanks set --station-id 1 --fuel-type PETROL --capacity 20000 --level 6000
#
# Reconciliation inspection:
# - python -m flask shifts list --station-id 1 --status ACTIVE --limit 20
# - python -m flask settlements close --station-id 1 --date 2024-05-01 --prepared-by 1

import click
from flask import current_app
from flask.cli import with_appcontext

from .config import ReconciliationSettings
from .errors import FuelOpsError
from .extensions import db
from .models import FuelPrice, Nozzle, Shift, Station, Tank
from .money_utils import format_cents, format_litres, litres_to_ml
from .services.engine import build_engine
from .time_utils import parse_iso_date, parse_iso_datetime, utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('stations')
def stations_group():
    """Station master data."""


@stations_group.command('create')
@click.option('--name', required=True, help='Station name (unique)')
@click.option('--code', help='Short code (unique)')
@click.option('--manager-id', type=int, help='User id receiving shift collections')
@click.option('--owner-id', type=int, help='User id receiving manager handovers')
@with_appcontext
def create_station_cli(name, code, manager_id, owner_id):
    if db.session.query(Station).filter_by(name=name).first():
        raise click.ClickException(f"Station '{name}' already exists")
    station = Station(name=name, code=code, manager_user_id=manager_id, owner_user_id=owner_id)
    db.session.add(station)
    db.session.commit()
    click.echo(f"PASS Created station {station.id} ({station.name})")


@stations_group.command('list')
@with_appcontext
def list_stations_cli():
    stations = db.session.query(Station).order_by(Station.id).all()

    if not stations:
        click.echo("No stations found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<25} {'Code':<10} {'Manager':<10} {'Owner':<10} {'Active'}")
    click.echo("="*80)

    for station in stations:
        active_str = "Yes" if station.is_active else "No"
        click.echo(
            f"{station.id:<5} {station.name:<25} {station.code or '-':<10} "
            f"{str(station.manager_user_id or '-'):<10} {str(station.owner_user_id or '-'):<10} {active_str}"
        )

    click.echo("="*80 + "\n")


@click.group('nozzles')
def nozzles_group():
    """Nozzle master data."""


@nozzles_group.command('create')
@click.option('--station-id', type=int, required=True)
@click.option('--number', required=True, help='Nozzle number, unique per station')
@click.option('--fuel-type', required=True, help='PETROL, DIESEL, CNG, ...')
@click.option('--initial-volume', default='0', help='Meter reading in litres when installed')
@with_appcontext
def create_nozzle_cli(station_id, number, fuel_type, initial_volume):
    if not db.session.get(Station, station_id):
        raise click.ClickException(f"Station {station_id} not found")
    try:
        initial_ml = litres_to_ml(initial_volume, "initial_volume")
    except FuelOpsError as e:
        raise click.ClickException(e.message)
    nozzle = Nozzle(
        station_id=station_id,
        nozzle_number=number,
        fuel_type=fuel_type.upper(),
        initial_volume_ml=initial_ml,
        current_volume_ml=initial_ml,
    )
    db.session.add(nozzle)
    db.session.commit()
    click.echo(f"PASS Created nozzle {nozzle.id} ({nozzle.fuel_type}) at {format_litres(initial_ml)} L")


@click.group('prices')
def prices_group():
    """Fuel prices."""


@prices_group.command('set')
@click.option('--station-id', type=int, required=True)
@click.option('--fuel-type', required=True)
@click.option('--price-cents', type=int, required=True, help='Price per litre in cents')
@click.option('--effective-from', help='ISO-8601 datetime (default: now)')
@with_appcontext
def set_price_cli(station_id, fuel_type, price_cents, effective_from):
    if price_cents <= 0:
        raise click.ClickException("price-cents must be positive")
    try:
        effective = parse_iso_datetime(effective_from) or utcnow()
    except ValueError:
        raise click.ClickException("effective-from must be an ISO-8601 datetime")
    price = FuelPrice(
        station_id=station_id,
        fuel_type=fuel_type.upper(),
        price_cents=price_cents,
        effective_from=effective,
    )
    db.session.add(price)
    db.session.commit()
    click.echo(f"PASS {price.fuel_type} at station {station_id}: {format_cents(price_cents)} per litre")


@click.group('tanks')
def tanks_group():
    """Tank levels (low-fuel advisory only)."""


@tanks_group.command('set')
@click.option('--station-id', type=int, required=True)
@click.option('--fuel-type', required=True)
@click.option('--capacity', required=True, help='Capacity in litres')
@click.option('--level', required=True, help='Current level in litres')
@click.option('--low-percent', type=int, default=15, show_default=True)
@with_appcontext
def set_tank_cli(station_id, fuel_type, capacity, level, low_percent):
    try:
        capacity_ml = litres_to_ml(capacity, "capacity")
        level_ml = litres_to_ml(level, "level")
    except FuelOpsError as e:
        raise click.ClickException(e.message)
    tank = db.session.query(Tank).filter_by(station_id=station_id, fuel_type=fuel_type.upper()).first()
    if tank is None:
        tank = Tank(station_id=station_id, fuel_type=fuel_type.upper())
        db.session.add(tank)
    tank.capacity_ml = capacity_ml
    tank.current_level_ml = level_ml
    tank.low_level_percent = low_percent
    db.session.commit()
    status = "LOW" if tank.is_low() else "OK"
    click.echo(f"PASS Tank {tank.fuel_type} at station {station_id}: {format_litres(level_ml)} L ({status})")


@click.group('shifts')
def shifts_group():
    """Shift inspection."""


@shifts_group.command('list')
@click.option('--station-id', type=int, help='Filter by station ID')
@click.option('--status', type=click.Choice(['ACTIVE', 'ENDED', 'CANCELLED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max shifts to show')
@with_appcontext
def list_shifts_cli(station_id, status, limit):
    """
    List shifts.

    Example:
        flask shifts list
        flask shifts list --station-id 1 --status ENDED
    """
    query = db.session.query(Shift)

    if station_id:
        query = query.filter_by(station_id=station_id)

    if status:
        query = query.filter_by(status=status)

    shifts = query.order_by(Shift.started_at.desc()).limit(limit).all()

    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<5} {'Station':<8} {'Employee':<9} {'Date':<11} {'Status':<10} {'Expected':<12} {'Counted':<12} {'Variance'}")
    click.echo("="*110)

    for shift in shifts:
        counted = format_cents(shift.actual_cash_cents) or "-"
        variance = "-"
        if shift.variance_cents is not None:
            variance = f"{format_cents(shift.variance_cents)} ({shift.variance_severity})"
        click.echo(
            f"{shift.id:<5} {shift.station_id:<8} {shift.employee_id:<9} {str(shift.business_date):<11} "
            f"{shift.status:<10} {format_cents(shift.expected_cash_cents):<12} {counted:<12} {variance}"
        )

    click.echo("="*110 + "\n")


@click.group('settlements')
def settlements_group():
    """Station-day settlement."""


@settlements_group.command('close')
@click.option('--station-id', type=int, required=True)
@click.option('--date', 'business_date', required=True, help='Business date (YYYY-MM-DD)')
@click.option('--prepared-by', type=int, required=True, help='User id closing the period')
@click.option('--approved-by', type=int)
@click.option('--notes')
@with_appcontext
def close_settlement_cli(station_id, business_date, prepared_by, approved_by, notes):
    try:
        day = parse_iso_date(business_date)
    except ValueError:
        raise click.ClickException("date must be YYYY-MM-DD")
    engine = build_engine(
        db.session,
        ReconciliationSettings.from_config(current_app.config),
        notifier=current_app.extensions.get("fuelops.notifier"),
    )
    try:
        settlement = engine.settlements.close_period(
            station_id, day, prepared_by=prepared_by, approved_by=approved_by, notes=notes
        )
    except FuelOpsError as e:
        details = f" {e.details}" if e.details else ""
        raise click.ClickException(f"{e.kind}: {e.message}{details}")

    click.echo(f"PASS Settlement {settlement.id} for station {station_id} on {business_date}")
    click.echo(f"   Sales:          {format_cents(settlement.total_sales_cents)}")
    click.echo(f"   Deposited:      {format_cents(settlement.deposited_cash_cents)}")
    click.echo(f"   Shift variance: {format_cents(settlement.shift_variance_cents)}")
    click.echo(f"   Final variance: {format_cents(settlement.final_variance_cents)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stations_group)
    app.cli.add_command(nozzles_group)
    app.cli.add_command(prices_group)
    app.cli.add_command(tanks_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(settlements_group)
