# Overview: Flask CLI command groups for bootstrap, catalog seeding, and cart maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog add-product --name "Linen Shirt" --price-cents 2500 --stock 10
#   Create a product with a single default variant.
# - python -m flask catalog list [--category shirts]
#   List products with variant prices and stock.
#
# Carts (schedule these on a timer in production):
# - python -m flask carts sweep-abandoned [--hours 24]
#   Mark stale checkout-funnel records as ABANDONED.
# - python -m flask carts purge-guests [--days 30]
#   Delete guest carts idle longer than the retention window.
#
# Promotions:
# - python -m flask promo create --code SAVE10 --type PERCENTAGE --value 1000 --valid-until 2030-01-01T00:00:00Z
#   Create a promo code (PERCENTAGE values are basis points).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import abandonment_service, cart_service, catalog_service, promotions_service
from .validation import ConflictError, ValidationError


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

    click.echo("PASS Database reset complete.")


# =============================================================================
# CATALOG COMMANDS
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Catalog seeding and inspection commands."""


@catalog_group.command('add-product')
@click.option('--name', required=True, help='Product name')
@click.option('--price-cents', type=int, required=True, help='Regular price in cents')
@click.option('--sale-price-cents', type=int, default=0, show_default=True, help='Sale price in cents (0 = no sale)')
@click.option('--stock', type=int, default=0, show_default=True, help='Units on hand')
@click.option('--sku', help='Variant SKU')
@click.option('--category', help='Category')
@with_appcontext
def add_product_cli(name, price_cents, sale_price_cents, stock, sku, category):
    """Create a product with a single default variant."""
    try:
        product = catalog_service.create_product({
            "name": name,
            "category": category,
            "sku": sku,
            "regular_price_cents": price_cents,
            "sale_price_cents": sale_price_cents,
            "stock": stock,
        })
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        for err in e.errors:
            click.echo(f"  - {err}")
        return

    variant = product.variants[0]
    click.echo(f"PASS Created product: {product.name} (ID: {product.id}, variant ID: {variant.id})")


@catalog_group.command('list')
@click.option('--category', help='Filter by category')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive products')
@with_appcontext
def list_products_cli(category, include_inactive):
    """List products with variant prices and stock."""
    products = catalog_service.list_products(category=category, active_only=not include_inactive)

    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Var':<5} {'Name':<30} {'SKU':<15} {'Price':>10} {'Stock':>8} {'Active'}")
    click.echo("="*90)

    for product in products:
        for variant in product.variants:
            active_str = "Yes" if product.is_active else "No"
            click.echo(
                f"{product.id:<5} {variant.id:<5} {product.name[:30]:<30} {variant.sku or '-':<15} "
                f"{variant.effective_price_cents / 100:>10.2f} {variant.stock:>8} {active_str}"
            )

    click.echo("="*90 + "\n")


# =============================================================================
# CART MAINTENANCE COMMANDS
# =============================================================================

@click.group('carts')
def carts_group():
    """Cart maintenance commands (abandonment sweep, guest cart expiry)."""


@carts_group.command('sweep-abandoned')
@click.option('--hours', type=float, default=None, help='Staleness threshold (default: ABANDONED_CART_THRESHOLD_HOURS)')
@with_appcontext
def sweep_abandoned_cli(hours):
    """Mark stale checkout-funnel records as ABANDONED."""
    count = abandonment_service.sweep_abandoned(threshold_hours=hours)
    click.echo(f"PASS Marked {count} carts as abandoned.")


@carts_group.command('purge-guests')
@click.option('--days', type=int, default=None, help='Retention window (default: GUEST_CART_RETENTION_DAYS)')
@with_appcontext
def purge_guests_cli(days):
    """Delete guest carts idle longer than the retention window."""
    count = cart_service.purge_stale_guest_carts(retention_days=days)
    click.echo(f"PASS Purged {count} guest carts.")


# =============================================================================
# PROMOTION COMMANDS
# =============================================================================

@click.group('promo')
def promo_group():
    """Promo code management commands."""


@promo_group.command('create')
@click.option('--code', required=True, help='Promo code (stored uppercase)')
@click.option('--type', 'discount_type', type=click.Choice(['PERCENTAGE', 'FIXED'], case_sensitive=False),
              default='PERCENTAGE', show_default=True)
@click.option('--value', type=int, required=True, help='Basis points for PERCENTAGE, cents for FIXED')
@click.option('--valid-until', required=True, help='ISO-8601 expiry')
@click.option('--min-order-cents', type=int, default=0, show_default=True)
@click.option('--max-discount-cents', type=int, default=None)
@click.option('--usage-limit', type=int, default=None)
@with_appcontext
def create_promo_cli(code, discount_type, value, valid_until, min_order_cents, max_discount_cents, usage_limit):
    """Create a promo code."""
    try:
        promo = promotions_service.create_promo({
            "code": code,
            "discount_type": discount_type,
            "discount_value": value,
            "valid_until": valid_until,
            "min_order_amount_cents": min_order_cents,
            "max_discount_cents": max_discount_cents,
            "usage_limit": usage_limit,
        }, created_by="cli")
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        for err in getattr(e, "errors", []):
            click.echo(f"  - {err}")
        return

    click.echo(f"PASS Created promo code: {promo.code} (ID: {promo.id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(carts_group)
    app.cli.add_command(promo_group)
