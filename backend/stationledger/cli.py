# Overview: Flask CLI command groups for bootstrap, inspection, and integrity checks.

# backend/stationledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create the demo station, fuel products and tanks (idempotent).
#
# Inspection:
# - python -m flask tanks list [--station-id 1] [--all]
#   List tanks with stock, fill level and status.
# - python -m flask ledger verify [--station-id 1]
#   Check tank stock against movement history and balances against open documents.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Station, Tank
from .permissions import ROLE_ADMIN
from .services import catalog_service
from .services.access_service import CallerContext
from .services.ledger_service import verify_ledgers
from .units import fill_percent, format_quantity, to_quantity


DEMO_STATION_CODE = "FF-001"

# CLI actions run as a system administrator (user_id 0)
SYSTEM_CALLER = CallerContext(user_id=0, station_id=None, role=ROLE_ADMIN)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for demo data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Seed a demo station.

    Creates:
    - Station "FuelFlow Station 1" (code FF-001)
    - Products: Petrol (290.00/litre), Diesel (280.00/litre)
    - Tanks: 20,000 L each; Petrol at 12,000 L, Diesel at 4,000 L (low)

    Opening stock is booked as `in` movements, so the movement history
    explains the tank levels from the start.
    """
    click.echo("START Seeding demo data...")

    station = db.session.query(Station).filter_by(code=DEMO_STATION_CODE).first()
    if station:
        click.echo(f"PASS Demo station already exists: {station.name} (ID: {station.id})")
        return

    station = catalog_service.create_station(
        {
            "name": "FuelFlow Station 1",
            "code": DEMO_STATION_CODE,
            "address": "123 Main Street, Demo City",
            "license_number": "LIC123456",
            "contact_phone": "+1-234-567-8900",
            "contact_email": "station@fuelflow.com",
            "default_currency": "PKR",
        },
        SYSTEM_CALLER,
    )
    click.echo(f"PASS Created station: {station.name} (ID: {station.id})")

    products = {}
    for name, price_cents, hsn_code in (("Petrol", 29000, "27101990"), ("Diesel", 28000, "27101110")):
        product = db.session.query(Product).filter_by(name=name).first()
        if not product:
            product = catalog_service.create_product(
                {
                    "name": name,
                    "category": "fuel",
                    "unit": "litre",
                    "current_price_cents": price_cents,
                    "hsn_code": hsn_code,
                },
                SYSTEM_CALLER,
            )
        products[name] = product
    click.echo(f"PASS Products ready: {', '.join(products)}")

    for tank_name, product_name, opening in (
        ("Tank 1 - Petrol", "Petrol", "12000"),
        ("Tank 2 - Diesel", "Diesel", "4000"),
    ):
        tank = catalog_service.create_tank(
            {
                "station_id": station.id,
                "product_id": products[product_name].id,
                "name": tank_name,
                "capacity": to_quantity("20000"),
                "current_stock": to_quantity(opening),
                "minimum_level": to_quantity("3000"),
            },
            SYSTEM_CALLER,
        )
        click.echo(f"PASS Created tank: {tank.name} ({format_quantity(tank.current_stock)} L, {tank.status})")

    click.echo("PASS Demo data seeding complete.")


@click.group('tanks')
def tanks_group():
    """Tank inspection commands."""


@tanks_group.command('list')
@click.option('--station-id', type=int, help='Filter by station ID')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive tanks too')
@with_appcontext
def list_tanks_cli(station_id, show_all):
    """
    List tanks.

    Example:
        flask tanks list
        flask tanks list --station-id 1 --all
    """
    query = db.session.query(Tank)
    if station_id:
        query = query.filter_by(station_id=station_id)
    if not show_all:
        query = query.filter_by(is_active=True)

    tanks = query.order_by(Tank.station_id, Tank.name).all()
    if not tanks:
        click.echo("No tanks found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Station':<8} {'Name':<25} {'Stock':>12} {'Capacity':>12} {'Fill %':>8} {'Status':<10} {'Active'}")
    click.echo("="*100)

    for tank in tanks:
        fill = fill_percent(to_quantity(tank.current_stock), to_quantity(tank.capacity))
        click.echo(
            f"{tank.id:<5} {tank.station_id:<8} {tank.name:<25} "
            f"{format_quantity(tank.current_stock):>12} {format_quantity(tank.capacity):>12} "
            f"{fill:>8.1f} {tank.status:<10} {'Yes' if tank.is_active else 'No'}"
        )

    click.echo("="*100)
    click.echo(f"Total: {len(tanks)} tanks\n")


@click.group('ledger')
def ledger_group():
    """Ledger integrity commands."""


@ledger_group.command('verify')
@click.option('--station-id', type=int, help='Limit the check to one station')
@with_appcontext
def verify_ledger_cli(station_id):
    """
    Verify ledger consistency (read-only).

    Exits with status 1 when any problem is found.
    """
    problems = verify_ledgers(station_id)
    if not problems:
        click.echo("PASS Ledgers are consistent.")
        return

    for problem in problems:
        details = ", ".join(f"{k}={v}" for k, v in problem.items() if k != "kind")
        click.echo(f"FAIL {problem['kind']}: {details}")
    raise click.exceptions.Exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tanks_group)
    app.cli.add_command(ledger_group)
