# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shopcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog seed-demo
#   Create a handful of demo products with opening stock (idempotent by SKU).
# - python -m flask catalog add-product --sku SKU-1 --name "Widget" --price-cents 19900 --stock 25
#   Create one product; opening stock is booked as a purchase ledger entry.
#
# Inventory:
# - python -m flask inventory reconcile [--product-id 1]
#   Compare stock_qty with the sum of ledger entries; exits 1 on drift.
# - python -m flask inventory low-stock [--threshold 10]
#   List active products at or below the threshold.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import ShopError
from .extensions import db
from .models import Product
from .services import catalog_service, inventory_service


DEMO_PRODUCTS = [
    ("DEMO-LAPTOP", "Laptop 14\"", 1899900, 12),
    ("DEMO-MOUSE", "Wireless Mouse", 39900, 80),
    ("DEMO-KEYBOARD", "Mechanical Keyboard", 129900, 30),
    ("DEMO-MONITOR", "27\" Monitor", 549900, 6),
    ("DEMO-CABLE", "USB-C Cable", 14900, 0),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed-demo' for sample data.")


@click.group('catalog')
def catalog_group():
    """Product catalog commands."""


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo products with opening stock. Existing SKUs are skipped."""
    created = 0
    for sku, name, price_cents, stock in DEMO_PRODUCTS:
        if db.session.query(Product.id).filter_by(sku=sku).first():
            click.echo(f"WARN  {sku} already exists, skipping...")
            continue
        product = catalog_service.create_product(
            sku=sku, name=name, price_cents=price_cents, initial_stock=stock,
        )
        created += 1
        click.echo(f"PASS Created {product.sku} (ID: {product.id}, stock: {product.stock_qty})")

    click.echo(f"DONE {created} demo product(s) created")


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True)
@click.option('--stock', type=int, default=0, show_default=True, help='Opening stock')
@click.option('--description', default=None)
@click.option('--inactive', is_flag=True, help='Create the product deactivated')
@with_appcontext
def add_product(sku, name, price_cents, stock, description, inactive):
    """Create a product."""
    try:
        product = catalog_service.create_product(
            sku=sku,
            name=name,
            price_cents=price_cents,
            initial_stock=stock,
            description=description,
            is_active=not inactive,
        )
    except ShopError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created product {product.sku} (ID: {product.id}, stock: {product.stock_qty})")


@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('reconcile')
@click.option('--product-id', type=int, default=None, help='Only check one product')
@with_appcontext
def reconcile(product_id):
    """Compare stock_qty with the sum of ledger entries."""
    result = inventory_service.reconcile_inventory(product_id)

    click.echo(f"Checked {result['checked']} product(s)")
    if result["is_consistent"]:
        click.echo("PASS Ledger and stock counters agree")
        return

    for row in result["drift"]:
        click.echo(
            f"FAIL {row['sku']} (ID: {row['product_id']}): stock_qty={row['stock_qty']} "
            f"ledger={row['ledger_qty']} difference={row['difference']:+d}"
        )
    raise SystemExit(1)


@inventory_group.command('low-stock')
@click.option('--threshold', type=int, default=None, help='Defaults to LOW_STOCK_THRESHOLD')
@with_appcontext
def low_stock(threshold):
    """List active products at or below the low-stock threshold."""
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)

    products = inventory_service.get_low_stock_products(threshold)
    out_of_stock = inventory_service.get_out_of_stock_products()

    if not products and not out_of_stock:
        click.echo(f"PASS No products at or below {threshold}")
        return

    for p in out_of_stock:
        click.echo(f"OUT   {p['sku']:<20} {p['name']}")
    for p in products:
        click.echo(f"LOW   {p['sku']:<20} {p['name']} ({p['current_stock']} left)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(inventory_group)
