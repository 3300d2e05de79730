# Overview: Flask CLI command groups for bootstrap, user management and stock checks.

# Usage, from backend/ with FLASK_APP=wsgi.py:
#   flask system init              tables plus the three default staff accounts
#   flask system reset-db --yes    wipe and rebuild the schema (development only)
#   flask users list
#   flask users create --username till1 --email till1@billing.local --role cashier
#   flask inventory reconcile      non-zero exit when a stock counter disagrees with its ledger

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import VALID_ROLES
from .services.auth_service import create_user, PasswordValidationError
from .services.inventory_service import InventoryService

DEFAULT_PASSWORD = "Password123!"
DEFAULT_STAFF = (
    ("admin", "admin@billing.local", "admin"),
    ("manager", "manager@billing.local", "manager"),
    ("cashier", "cashier@billing.local", "cashier"),
)


@click.group('system')
def system_group():
    """Schema bootstrap."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create missing tables and seed one account per role.

    Existing usernames are left alone, so running it twice is harmless.
    Every seeded account shares DEFAULT_PASSWORD.
    """
    db.create_all()
    created = 0
    for username, email, role in DEFAULT_STAFF:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"skip    {username} (exists)")
            continue
        try:
            create_user(
                username=username,
                email=email,
                password=DEFAULT_PASSWORD,
                role=role,
                rounds=current_app.config["BCRYPT_ROUNDS"],
            )
        except (PasswordValidationError, ValueError) as e:
            db.session.rollback()
            click.echo(f"error   {username}: {e}", err=True)
            continue
        created += 1
        click.echo(f"created {username} <{email}> as {role}")

    click.echo(f"{created} account(s) seeded; default password is {DEFAULT_PASSWORD!r}. Rotate it before going live.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@with_appcontext
def reset_db(yes):
    """Drop every table and create the schema again. All sales, stock and users are lost."""
    if not yes:
        click.confirm("Every table will be emptied. Continue?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("Schema rebuilt. Seed accounts with 'flask system init'.")


@click.group('users')
def users_group():
    """Staff accounts."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@click.option('--first-name', default=None, help='First name')
@click.option('--last-name', default=None, help='Last name')
@with_appcontext
def create_user_cli(username, email, password, role, first_name, last_name):
    """Add a staff account. Weak passwords are refused with a non-zero exit."""
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            first_name=first_name,
            last_name=last_name,
            rounds=current_app.config["BCRYPT_ROUNDS"],
        )
    except (PasswordValidationError, ValueError) as e:
        db.session.rollback()
        raise click.ClickException(str(e))

    click.echo(f"created {user.username} (#{user.id}) as {user.role}")


@users_group.command('list')
@with_appcontext
def list_users():
    """Print one row per account, oldest first."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No accounts yet. Run 'flask system init'.")
        return

    click.echo(f"{'#':>4}  {'username':<18} {'role':<8} {'status':<8} email")
    for user in users:
        status = "active" if user.is_active else "disabled"
        click.echo(f"{user.id:>4}  {user.username:<18} {user.role:<8} {status:<8} {user.email}")


@click.group('inventory')
def inventory_group():
    """Stock ledger checks."""


@inventory_group.command('reconcile')
@with_appcontext
def reconcile_inventory():
    """Report products whose stock counter disagrees with their ledger."""
    issues = InventoryService(db.session).reconcile()

    if not issues:
        click.echo("PASS Stock counters match the inventory ledger.")
        return

    click.echo(f"FAIL {len(issues)} product(s) out of balance:")
    click.echo(f"{'ID':<6} {'SKU':<20} {'Stock':>8} {'Ledger':>8} {'Diff':>8}")
    for issue in issues:
        click.echo(
            f"{issue.product_id:<6} {issue.sku:<20} {issue.stock_quantity:>8} "
            f"{issue.ledger_quantity:>8} {issue.difference:>8}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Attach the system, users and inventory groups to app.cli."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
