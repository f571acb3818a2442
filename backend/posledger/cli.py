# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent; prefer `flask db upgrade` in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask products list [--all]
#   List products with stock and derived status.
# - python -m flask products add --name "Cola 330ml" --price-cents 150 --cost-cents 90 --stock 24 --barcode 4801234567890
#   Create a product; opening stock is logged as a manual movement.
# - python -m flask products adjust 3 -- -2 --reason "broken bottles"
#   Manual stock correction.
#
# Ledger:
# - python -m flask ledger verify
#   Report orphan voids and stock projection drift; exits 1 when anything is wrong.
#
# Reports:
# - python -m flask reports summary [--period monthly] [--start 2026-01-01 --end 2026-01-31] [--granularity weekly]
#   Print the reconciliation summary as JSON.

import json
import sys

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .services import products_service, reporting_service
from .services.errors import LedgerError
from .services.stock_service import default_threshold
from .validation import ValidationError, ConflictError


def _money(cents) -> str:
    if cents is None:
        return "-"
    return f"{cents / 100:,.2f}"


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

    This will DELETE ALL DATA, including the ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('products')
def products_group():
    """Product catalog commands."""


@products_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Show deleted products too')
@with_appcontext
def list_products_cli(show_all):
    """
    List products.

    Example:
        flask products list
        flask products list --all
    """
    query = db.session.query(Product)
    if not show_all:
        query = query.filter(Product.is_active.is_(True))
    products = query.order_by(Product.name.asc(), Product.id.asc()).all()

    if not products:
        click.echo("No products found.")
        return

    threshold = default_threshold()
    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Name':<30} {'Barcode':<16} {'Price':>10} {'Cost':>10} {'Stock':>7}  {'Status'}")
    click.echo("="*100)
    for p in products:
        status = p.status(threshold) if p.is_active else "deleted"
        click.echo(
            f"{p.id:<5} {p.name[:30]:<30} {(p.barcode or '-'):<16} "
            f"{_money(p.price_cents):>10} {_money(p.unit_cost_cents):>10} {p.stock_on_hand:>7}  {status}"
        )
    click.echo("="*100)
    click.echo(f"Total: {len(products)} product(s)\n")


@products_group.command('add')
@click.option('--name', required=True, help='Product name')
@click.option('--price-cents', type=int, required=True, help='Unit selling price in cents')
@click.option('--cost-cents', type=int, default=None, help='Unit cost in cents')
@click.option('--stock', type=int, default=0, show_default=True, help='Opening stock')
@click.option('--barcode', default=None, help='Barcode (unique among active products)')
@click.option('--threshold', type=int, default=None, help='Low stock threshold override')
@with_appcontext
def add_product_cli(name, price_cents, cost_cents, stock, barcode, threshold):
    """Create a product."""
    payload = {"name": name, "price_cents": price_cents, "stock_on_hand": stock}
    if cost_cents is not None:
        payload["unit_cost_cents"] = cost_cents
    if barcode:
        payload["barcode"] = barcode
    if threshold is not None:
        payload["low_stock_threshold"] = threshold

    try:
        patch = products_service.validate_product_payload(
            payload, policy=products_service.PRODUCT_CREATE_POLICY, partial=False
        )
        p = products_service.create_product(patch=patch)
    except (ValidationError, ConflictError, LedgerError) as e:
        click.echo(f"FAIL {e}")
        sys.exit(1)

    click.echo(f"PASS Created product {p.name} (ID: {p.id}, stock: {p.stock_on_hand})")


@products_group.command('adjust')
@click.argument('product_id', type=int)
@click.argument('delta', type=int)
@click.option('--reason', default=None, help='Why the count changed')
@with_appcontext
def adjust_stock_cli(product_id, delta, reason):
    """Apply a manual stock correction (DELTA may be negative)."""
    try:
        change = products_service.adjust_stock(product_id, delta, reason=reason)
    except LedgerError as e:
        click.echo(f"FAIL {e}")
        sys.exit(1)
    click.echo(f"PASS Product {product_id}: {change.before} -> {change.after} ({change.status_after})")


@click.group('ledger')
def ledger_group():
    """Ledger inspection commands."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger_cli():
    """
    Check the ledger against itself and the stock table.

    Never repairs anything: integrity problems need an operator.
    """
    report = reporting_service.integrity_report()

    for orphan in report["orphan_voids"]:
        click.echo(f"FAIL Orphan void {orphan['ref_id']} has no matching checkout")
    for row in report["stock_drift"]:
        click.echo(
            f"FAIL Product {row['product_id']} ({row['name']}): stock_on_hand={row['stock_on_hand']} "
            f"movements={row['movement_total']} ledger={row['ledger_projection']}"
        )

    if report["ok"]:
        click.echo("PASS Ledger is consistent.")
        return
    sys.exit(1)


@click.group('reports')
def reports_group():
    """Reporting commands."""


@reports_group.command('summary')
@click.option('--period', type=click.Choice(['daily', 'weekly', 'monthly', 'all']), default='all')
@click.option('--start', default=None, help='ISO-8601 start (overrides --period)')
@click.option('--end', default=None, help='ISO-8601 end (overrides --period)')
@click.option('--granularity', type=click.Choice(list(reporting_service.GRANULARITIES)), default='daily')
@with_appcontext
def summary_cli(period, start, end, granularity):
    """Print the reconciliation summary as JSON."""
    try:
        if start or end:
            result = reporting_service.summarize(start, end, granularity)
        else:
            result = reporting_service.summary_for_period(period, granularity)
    except reporting_service.ReportError as e:
        click.echo(f"FAIL {e}")
        sys.exit(1)
    click.echo(json.dumps(result, indent=2))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(products_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(reports_group)
