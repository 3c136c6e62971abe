# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/tilestock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migration-managed databases).
# - python -m flask system create-admin --email admin@tilestock.local --name "Admin"
#   Create a grand admin (prompts for the password).
#
# Shop management:
# - python -m flask shops list
# - python -m flask shops create --name "Main Showroom" --city "Lahore" --threshold 50
#
# Users:
# - python -m flask users list [--shop-id 1]
# - python -m flask users create --shop-id 1 --email staff@tilestock.local --name "Staff" --role staff
#
# Stock:
# - python -m flask stock reconcile [--shop-id 1]
#   Compare each tile's available stock with the sum of its transaction ledger.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import ROLES, ROLE_GRAND_ADMIN, ROLE_STAFF, Shop, Tile, User
from .services.auth_service import PasswordValidationError, create_user
from .services.shop_service import create_shop
from .services.stock_service import reconcile_shop
from .services.tenant_service import SYSTEM_CALLER
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create every table that does not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('create-admin')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_admin(email, name, password):
    """
    Create a grand admin (no shop, sees every shop).

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(email=email, name=name, password=password, role=ROLE_GRAND_ADMIN)
        click.echo(f"PASS Created grand admin: {user.name} ({user.email})")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create admin: {str(e)}")


@click.group('shops')
def shops_group():
    """Shop (tenant) management commands."""


@shops_group.command('list')
@with_appcontext
def list_shops():
    """List all shops, including inactive ones."""
    shops = db.session.query(Shop).order_by(Shop.id).all()

    if not shops:
        click.echo("No shops found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'City':<15} {'Active':<8} {'Tiles':<8} {'Users'}")
    click.echo("="*80)

    for shop in shops:
        tile_count = db.session.query(Tile).filter_by(shop_id=shop.id, is_deleted=False).count()
        user_count = db.session.query(User).filter_by(shop_id=shop.id).count()
        active_str = "Yes" if shop.is_active else "No"

        click.echo(
            f"{shop.id:<5} {shop.name:<30} {shop.address_city or '-':<15} "
            f"{active_str:<8} {tile_count:<8} {user_count}"
        )

    click.echo("="*80 + "\n")


@shops_group.command('create')
@click.option('--name', required=True, help='Shop name')
@click.option('--city', help='City')
@click.option('--threshold', type=int, help='Low-stock threshold in pieces')
@with_appcontext
def create_shop_cli(name, city, threshold):
    """Create a new shop (tenant)."""
    patch = {"name": name, "address_city": city, "low_stock_threshold": threshold}
    shop = create_shop(SYSTEM_CALLER, patch)
    click.echo(f"PASS Created shop: {shop.name} (ID: {shop.id}, threshold: {shop.low_stock_threshold})")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--shop-id', type=int, help='Shop ID (not used for grand admins)')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), default=ROLE_STAFF, show_default=True, help='Role')
@with_appcontext
def create_user_cli(shop_id, email, name, password, role):
    """Create a user in a shop."""
    try:
        user = create_user(email=email, name=name, password=password, role=role, shop_id=shop_id)
        click.echo(f"PASS Created user: {user.name} ({user.email}) with role '{user.role}'")
        if user.shop_id is not None:
            click.echo(f"     Shop ID: {user.shop_id}")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@click.option('--shop-id', type=int, help='Filter by shop ID')
@with_appcontext
def list_users(shop_id):
    """List all users with their roles."""
    query = db.session.query(User)
    if shop_id:
        query = query.filter_by(shop_id=shop_id)
    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Shop':<6} {'Name':<20} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("="*90)

    for user in users:
        shop_str = str(user.shop_id) if user.shop_id is not None else "-"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {shop_str:<6} {user.name:<20} {user.email:<30} {active_str:<8} {user.role}")

    click.echo("="*90 + "\n")


@click.group('stock')
def stock_group():
    """Stock maintenance commands."""


@stock_group.command('reconcile')
@click.option('--shop-id', type=int, help='Limit to one shop')
@with_appcontext
def reconcile(shop_id):
    """
    Report tiles whose available stock disagrees with their ledger.

    Drift appears when transaction records were purged from the reports
    screen; stock itself is never modified by this command.
    """
    results = reconcile_shop(shop_id)
    drifted = [r for r in results if r["drift"] != 0]

    for row in drifted:
        current_app.logger.warning(
            "Stock drift on tile %s (%s): available=%s ledger=%s drift=%s",
            row["tile_id"], row["sku"], row["available_quantity"], row["ledger_quantity"], row["drift"],
        )
        click.echo(
            f"WARN {row['sku']:<15} available={row['available_quantity']:<8} "
            f"ledger={row['ledger_quantity']:<8} drift={row['drift']}"
        )

    click.echo(f"PASS Checked {len(results)} tile(s), {len(drifted)} with drift")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(shops_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
