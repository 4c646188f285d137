# Overview: Flask CLI command groups for bootstrap, reference data, and ledger inspection.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use "flask db upgrade" for migration-managed databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Reference data:
# - python -m flask catalog add-product --sku WIDGET-1 --name "Widget"
# - python -m flask catalog add-location --code A-01-01 --name "Aisle A, bay 1"
#
# Ledger inspection:
# - python -m flask ledger balances [--product-id 1] [--location-id 1] [--available-only]
#   List balance rows with on-hand / allocated / available.
# - python -m flask ledger verify [--product-id 1]
#   Rebuild balances from the movement log and report mismatches (exit code 1 if any).
#
# Stock takes:
# - python -m flask stocktake list [--status InProgress]

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import Product, WarehouseLocation
from .services import ledger_store, movement_log, stock_take_service
from .services.errors import LedgerError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all ledger tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the movement log!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('catalog')
def catalog_group():
    """Minimal reference rows the ledger needs (products, locations)."""


@catalog_group.command('add-product')
@click.option('--sku', required=True, help='Unique SKU')
@click.option('--name', required=True, help='Product name')
@with_appcontext
def add_product(sku, name):
    """
    Create a product.

    Example:
        flask catalog add-product --sku WIDGET-1 --name "Widget"
    """
    product = Product(sku=sku.strip(), name=name.strip(), is_active=True)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"SKU {sku} already exists")

    click.echo(f"PASS Created product: {product.sku} - {product.name} (ID: {product.id})")


@catalog_group.command('add-location')
@click.option('--code', required=True, help='Unique location code')
@click.option('--name', help='Location description')
@with_appcontext
def add_location(code, name):
    """
    Create a warehouse location.

    Example:
        flask catalog add-location --code A-01-01 --name "Aisle A, bay 1"
    """
    location = WarehouseLocation(code=code.strip(), name=name.strip() if name else None, is_active=True)
    db.session.add(location)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"Location code {code} already exists")

    click.echo(f"PASS Created location: {location.code} (ID: {location.id})")


@click.group('ledger')
def ledger_group():
    """Inventory ledger inspection commands."""


@ledger_group.command('balances')
@click.option('--product-id', type=int, help='Filter by product ID')
@click.option('--location-id', type=int, help='Filter by location ID')
@click.option('--available-only', is_flag=True, help='Only rows with unallocated stock')
@with_appcontext
def list_balances_cli(product_id, location_id, available_only):
    """List balance rows."""
    total, rows = ledger_store.list_balances(
        product_id=product_id,
        location_id=location_id,
        only_available=available_only,
    )

    if not rows:
        click.echo("No inventory balances found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<6} {'Product':<9} {'Lot':<16} {'Location':<10} {'On hand':>9} {'Allocated':>10} {'Available':>10}")
    click.echo("="*90)

    for row in rows:
        lot = row.lot.lot_number if row.lot else "-"
        click.echo(
            f"{row.id:<6} {row.product_id:<9} {lot:<16} {row.location_id:<10} "
            f"{row.quantity_on_hand:>9} {row.quantity_allocated:>10} {row.quantity_available:>10}"
        )

    click.echo("="*90)
    click.echo(f"{total} row(s)\n")


@ledger_group.command('verify')
@click.option('--product-id', type=int, help='Limit the check to one product')
@with_appcontext
def verify_ledger_cli(product_id):
    """Rebuild every balance from the movement log and report mismatches."""
    problems = movement_log.verify_ledger(product_id=product_id)

    if not problems:
        click.echo("PASS Every balance matches its movement history.")
        return

    for p in problems:
        click.echo(
            f"FAIL balance {p['balance_id']} (product {p['product_id']}, lot {p['lot_id']}, "
            f"location {p['location_id']}): on hand {p['quantity_on_hand']}, "
            f"movements say {p['reconstructed_on_hand']}"
        )
    raise click.exceptions.Exit(1)


@click.group('stocktake')
def stocktake_group():
    """Stock take inspection commands."""


@stocktake_group.command('list')
@click.option('--status', help='Planning, InProgress, Completed, Verified or Cancelled')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_stock_takes_cli(status, limit):
    """List recent stock takes."""
    try:
        total, rows = stock_take_service.list_stock_takes(status, limit=limit)
    except LedgerError as e:
        raise click.ClickException(e.message)

    if not rows:
        click.echo("No stock takes found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Number':<12} {'Status':<12} {'Items':>6}  {'Created'}")
    click.echo("="*80)

    for take in rows:
        created = take.created_at.strftime("%Y-%m-%d %H:%M") if take.created_at else "-"
        click.echo(f"{take.id:<6} {take.stock_take_number:<12} {take.status:<12} {len(take.items):>6}  {created}")

    click.echo("="*80)
    click.echo(f"{len(rows)} of {total} stock take(s)\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(stocktake_group)
