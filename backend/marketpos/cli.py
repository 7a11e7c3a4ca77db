# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/marketpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, the default admin and the sample catalog.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --name "Jane" --email jane@shop.local --role cashier
#   Prompts for the password.
#
# Catalog:
# - python -m flask products low-stock
#   Products at or below their minimum stock level.
#
# Sales:
# - python -m flask sales summary [--date 2026-01-31]
#   Daily summary for a business date (default today).

from decimal import Decimal

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Product, ROLES
from .money import format_cents, to_cents
from .services import products_service, summary_service
from .services.auth_service import create_user, PasswordValidationError
from .validation import ValidationError, ConflictError
from .time_utils import business_date, parse_iso_date

DEFAULT_ADMIN_NAME = "System Admin"
DEFAULT_ADMIN_EMAIL = "admin@supermarket.com"
DEFAULT_ADMIN_PASSWORD = "Admin123!"

# name, barcode, category, price, stock, min_stock, expiry, supplier, description
SAMPLE_PRODUCTS = [
    ("Coca Cola 500ml", "1234567890123", "Beverages", "1.50", 100, 20, "2025-12-31", "Coca Cola Company", "Refreshing soft drink"),
    ("White Bread", "2345678901234", "Bakery", "2.00", 50, 10, "2025-02-15", "Local Bakery", "Fresh white bread loaf"),
    ("Milk 1L", "3456789012345", "Dairy", "3.50", 30, 5, "2025-02-10", "Dairy Farm", "Fresh whole milk"),
    ("Rice 5kg", "4567890123456", "Pantry", "15.00", 25, 5, "2026-01-01", "Rice Mills", "Premium long grain rice"),
    ("Chicken Breast 1kg", "5678901234567", "Meat", "12.00", 20, 3, "2025-01-25", "Poultry Farm", "Fresh chicken breast"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--with-samples/--no-samples', default=True, help='Insert the sample catalog')
@with_appcontext
def init_system(with_samples):
    """
    Create tables, the default admin account and (optionally) sample products.

    Safe to run repeatedly. SECURITY: change the admin password immediately.
    """
    click.echo("START Initializing MarketPOS...")
    db.create_all()

    admin = db.session.query(User).filter_by(email=DEFAULT_ADMIN_EMAIL).first()
    if admin:
        click.echo(f"PASS Using existing admin: {admin.email}")
    else:
        admin = create_user(
            name=DEFAULT_ADMIN_NAME,
            email=DEFAULT_ADMIN_EMAIL,
            password=DEFAULT_ADMIN_PASSWORD,
            role="admin",
        )
        click.echo(f"PASS Created admin: {admin.email} / {DEFAULT_ADMIN_PASSWORD}")

    if with_samples:
        created = 0
        for name, barcode, category, price, stock, min_stock, expiry, supplier, description in SAMPLE_PRODUCTS:
            if products_service.get_product_by_barcode(barcode):
                continue
            db.session.add(Product(
                name=name,
                barcode=barcode,
                category=category,
                price_cents=to_cents(Decimal(price)),
                stock=stock,
                min_stock=min_stock,
                expiry_date=parse_iso_date(expiry),
                supplier=supplier,
                description=description,
            ))
            created += 1
        db.session.commit()
        click.echo(f"PASS Sample catalog: {created} product(s) created")

    click.echo("DONE")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('list')
@with_appcontext
def list_users_cli():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.email:<32} {user.role:<8} {status:<8} {user.name}")


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address (login)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, role):
    """
    Create a new user.

    Password must have 8+ characters with uppercase, lowercase and a digit.
    """
    try:
        user = create_user(name=name, email=email, password=password, role=role)
    except PasswordValidationError as e:
        raise click.ClickException(f"Password validation failed: {e}")
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user: {user.email} with role '{user.role}' (ID: {user.id})")


@click.group('products')
def products_group():
    """Catalog inspection."""


@products_group.command('low-stock')
@with_appcontext
def low_stock_cli():
    products = products_service.list_low_stock()
    if not products:
        click.echo("No products at or below minimum stock.")
        return
    for p in products:
        click.echo(f"{p.id:>4}  {p.barcode:<14} stock={p.stock:<5} min={p.min_stock:<5} {p.name}")


@click.group('sales')
def sales_group():
    """Sales inspection."""


@sales_group.command('summary')
@click.option('--date', 'day', default=None, help='Business date YYYY-MM-DD (default today)')
@with_appcontext
def summary_cli(day):
    try:
        target = parse_iso_date(day) or business_date()
    except ValueError:
        raise click.BadParameter("date must be YYYY-MM-DD", param_hint="--date")

    view = summary_service.get_daily_summary(target)
    click.echo(f"Date:          {view.date.isoformat()}")
    click.echo(f"Transactions:  {view.total_transactions}")
    click.echo(f"Total:         {format_cents(view.total_sales_cents)}")
    for method, cents in view.by_payment_method.items():
        click.echo(f"  {method:<13}{format_cents(cents)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(sales_group)
