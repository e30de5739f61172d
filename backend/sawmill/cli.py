# Overview: Flask CLI command groups for bootstrap, demo data and cash reconciliation.

# backend/sawmill/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema (Flask-Migrate):
# - python -m flask db upgrade
#   Apply migrations.
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables without migrations (dev convenience).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a demo site with products and lots.
#
# Cash drawer:
# - python -m flask cash shifts --site-id 1 --limit 20
#   List recent shifts with variance.
# - python -m flask cash reconcile --site-id 1
#   Retry cash postings left pending by deferred posting.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Site, StockLocation
from .services import cash_shift_service, sales_service, stock_ledger_service
from .time_utils import to_utc_z, utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@click.option('--name', default='Aserradero Demo', help='Site name')
@click.option('--principal-id', type=int, default=1, help='Principal recorded on the seed movements')
@with_appcontext
def seed_demo(name, principal_id):
    """
    Idempotent demo bootstrap: one site, three products, a few lots.

    Example:
        flask system seed-demo
        flask system seed-demo --name "Aserradero Norte"
    """
    site = db.session.query(Site).filter_by(name=name).first()
    if site:
        click.echo(f"SKIP Site '{name}' already exists (id={site.id})")
        return

    site = Site(name=name, code=name.upper().replace(" ", "-")[:32])
    db.session.add(site)
    db.session.flush()

    catalog = [
        ("TAB-1X12", "Tabla 1x12x8'"),
        ("VIG-4X4", "Viga 4x4x10'"),
        ("TRIPLAY-16", "Triplay 16mm"),
    ]
    products = []
    for sku, product_name in catalog:
        product = Product(site_id=site.id, sku=sku, name=product_name)
        db.session.add(product)
        products.append(product)
    db.session.commit()
    click.echo(f"PASS Created site '{name}' (id={site.id}) with {len(products)} products")

    today = utcnow().date()
    stock_ledger_service.register_production(
        site_id=site.id,
        principal_id=principal_id,
        ingress_at=today - timedelta(days=7),
        items=[
            {"product_id": products[0].id, "pieces": 120, "location": StockLocation.DRYING.value},
            {"product_id": products[1].id, "pieces": 40, "location": StockLocation.WAREHOUSE.value},
        ],
        origin_order_id=1,
    )
    stock_ledger_service.register_production(
        site_id=site.id,
        principal_id=principal_id,
        ingress_at=today,
        items=[{"product_id": products[0].id, "pieces": 80}],
        origin_order_id=2,
    )
    stock_ledger_service.receive_commercial_goods(
        site_id=site.id,
        principal_id=principal_id,
        product_id=products[2].id,
        quantity=60,
        location=StockLocation.SHELF.value,
    )
    click.echo("PASS Demo lots registered")


@click.group('cash')
def cash_group():
    """Cash drawer inspection and reconciliation."""


@cash_group.command('shifts')
@click.option('--site-id', type=int, required=True, help='Site ID')
@click.option('--limit', type=int, default=20, help='Max shifts to show')
@with_appcontext
def list_shifts_cli(site_id, limit):
    """
    List cash shifts of a site, newest first.

    Example:
        flask cash shifts --site-id 1
    """
    shifts = cash_shift_service.list_shifts(site_id, limit=limit)

    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Status':<8} {'Opened':<22} {'Closed':<22} {'Float':>12} {'Variance':>12}")
    click.echo("="*100)

    for shift in shifts:
        variance = f"{shift.variance_cents / 100:,.2f}" if shift.variance_cents is not None else "-"
        click.echo(
            f"{shift.id:<5} {shift.status:<8} {to_utc_z(shift.opened_at):<22} "
            f"{(to_utc_z(shift.closed_at) or '-'):<22} {shift.opening_float_cents / 100:>12,.2f} {variance:>12}"
        )

    click.echo("="*100 + "\n")


@cash_group.command('reconcile')
@click.option('--site-id', type=int, required=True, help='Site ID')
@with_appcontext
def reconcile_cli(site_id):
    """
    Retry pending cash postings of a site (deferred posting mode).

    Example:
        flask cash reconcile --site-id 1
    """
    result = sales_service.reconcile_pending_cash_postings(site_id)
    click.echo(f"PASS Posted: {len(result['posted'])}")
    if result["failed"]:
        click.echo(f"WARN Still pending: {', '.join(str(i) for i in result['failed'])}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(cash_group)
