# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/mdcars/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: owner user "admin", Main Cashbox, default settings.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with roles and active status.
# - python -m flask users create --username sara --password "Password123!" --role cashier
#   Create a user (prompts if options are omitted).
#
# Cashbox:
# - python -m flask cashbox show
#   Print Main Cashbox balances and its latest transactions.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_OWNER, ROLES
from .services import ledger_service, settings_service
from .services.auth_service import create_user
from .validation import ServiceError


DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize MD CARS: owner account, Main Cashbox, default settings.

    Safe to run repeatedly; existing rows are left untouched.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing MD CARS...")

    admin = db.session.query(User).filter_by(username=DEFAULT_ADMIN_USERNAME).first()
    if admin:
        click.echo(f"PASS Using existing user: {admin.username} (role '{admin.role}')")
    else:
        admin = create_user({
            "username": DEFAULT_ADMIN_USERNAME,
            "password": DEFAULT_ADMIN_PASSWORD,
            "first_name": "Store",
            "last_name": "Owner",
            "role": ROLE_OWNER,
        })
        click.echo(f"PASS Created user: {admin.username} with role '{admin.role}'")

    box = ledger_service.ensure_cashbox()
    click.echo(f"PASS Cashbox ready: {box.name} (ID: {box.id})")

    created = settings_service.seed_default_settings()
    db.session.commit()
    if created:
        click.echo(f"PASS Created settings: {', '.join(created)}")
    else:
        click.echo("PASS Settings already present")

    click.echo("\n" + "=" * 60)
    click.echo("DONE MD CARS Initialized Successfully!")
    click.echo("=" * 60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo(f"   {DEFAULT_ADMIN_USERNAME} / {DEFAULT_ADMIN_PASSWORD}")
    click.echo("")


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
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@click.option('--first-name', default='', help='First name (defaults to username)')
@click.option('--last-name', default='-', help='Last name')
@with_appcontext
def create_user_cli(username, password, role, first_name, last_name):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user({
            "username": username,
            "password": password,
            "role": role,
            "first_name": first_name or username,
            "last_name": last_name or "-",
        })
    except ServiceError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with roles and active status."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found. Run: python -m flask system init")
        return

    click.echo("\n" + "=" * 70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<15} {'Active':<8} {'Name'}")
    click.echo("=" * 70)
    for user in users:
        active_str = "yes" if user.is_active else "no"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<15} {active_str:<8} {user.first_name} {user.last_name}")
    click.echo("=" * 70 + "\n")


@click.group('cashbox')
def cashbox_group():
    """Cashbox inspection commands."""


@cashbox_group.command('show')
@click.option('--limit', type=int, default=10, help='Number of recent transactions')
@with_appcontext
def show_cashbox(limit):
    """Print Main Cashbox balances and the most recent transactions."""
    box = ledger_service.ensure_cashbox()
    click.echo(f"\n{box.name}")
    click.echo(f"   USD: {box.to_dict()['balance_usd']}")
    click.echo(f"   LYD: {box.to_dict()['balance_lyd']}")

    txs = ledger_service.list_cashbox_transactions(limit=limit)
    if not txs:
        click.echo("\nNo transactions yet.\n")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<6} {'Type':<12} {'USD':>12} {'LYD':>12}  {'Description'}")
    click.echo("=" * 90)
    for tx in txs:
        data = tx.to_dict()
        click.echo(
            f"{tx.id:<6} {tx.type:<12} {data['amount_usd']:>12} {data['amount_lyd']:>12}  {tx.description or ''}"
        )
    click.echo("=" * 90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(cashbox_group)
