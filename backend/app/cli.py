# Overview: Flask CLI command groups for bootstrap, catalog registration, and ledger maintenance.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User bootstrap:
# - python -m flask users create --external-id firebase-uid-123 --name "Taro"
#   Create the internal user for an identity handle (no-op if it exists).
# - python -m flask users issue-token --external-id firebase-uid-123
#   Issue a bearer session token for the handle and print it once.
# - python -m flask users list
#   List users with their point totals.
#
# Catalog registration:
# - python -m flask catalog add-content --name "Your Name."
# - python -m flask catalog add-place --name "Suga Shrine" --content-id 1 --address "Shinjuku, Tokyo" --lat 35.6867 --lng 139.7224
# - python -m flask catalog list-places [--content-id 1]
# - python -m flask catalog show-place --place-id 1
#
# Ledger maintenance:
# - python -m flask ledger reconcile [--user-id 1]
#   Report users whose balance disagrees with their point history (exit 1 on mismatch).
# - python -m flask maintenance cleanup-sessions --retention-days 30
#   Delete expired/revoked sessions older than the retention window.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, PointBalance
from .services import catalog_service, checkin_service, identity_service, session_service


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

    This will DELETE ALL DATA, including the point ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User bootstrap and inspection."""


@users_group.command('create')
@click.option('--external-id', required=True, help='Identity provider handle')
@click.option('--name', default=None, help='Display name')
@with_appcontext
def create_user_cli(external_id, name):
    """Create the internal user for an identity handle."""
    user, created = identity_service.get_or_create_user(external_id, name=name)
    if created:
        click.echo(f"PASS Created user id={user.id} external_id={user.external_id}")
    else:
        click.echo(f"User already exists: id={user.id}")


@users_group.command('issue-token')
@click.option('--external-id', required=True, help='Identity provider handle')
@with_appcontext
def issue_token_cli(external_id):
    """Issue a bearer session token (printed once, stored hashed)."""
    session, token = session_service.create_session(external_id, user_agent="flask-cli")
    click.echo(f"Session id={session.id} expires_at={session.expires_at.isoformat()}Z")
    click.echo(token)


@users_group.command('list')
@with_appcontext
def list_users():
    """List users with their point totals."""
    rows = (
        db.session.query(User, PointBalance.current_point)
        .outerjoin(PointBalance, PointBalance.user_id == User.id)
        .order_by(User.id)
        .all()
    )

    if not rows:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'External ID':<36} {'Name':<24} {'Points'}")
    click.echo("="*80)

    for user, points in rows:
        click.echo(f"{user.id:<6} {user.external_id:<36} {user.name or '-':<24} {points or 0}")

    click.echo("="*80 + "\n")


@click.group('catalog')
def catalog_group():
    """Content and place registration."""


@catalog_group.command('add-content')
@click.option('--name', required=True, help='Title of the work')
@with_appcontext
def add_content_cli(name):
    try:
        content = catalog_service.create_content(name)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created content id={content.id} name={content.name!r}")


@catalog_group.command('add-place')
@click.option('--name', required=True, help='Place name')
@click.option('--content-id', type=int, default=None, help='Content the place appears in')
@click.option('--address', default=None, help='Street address')
@click.option('--lat', 'latitude', type=float, default=None)
@click.option('--lng', 'longitude', type=float, default=None)
@with_appcontext
def add_place_cli(name, content_id, address, latitude, longitude):
    try:
        place = catalog_service.create_place(
            name,
            address=address,
            content_id=content_id,
            latitude=latitude,
            longitude=longitude,
        )
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created place id={place.id} name={place.name!r}")


@catalog_group.command('show-place')
@click.option('--place-id', type=int, required=True)
@with_appcontext
def show_place_cli(place_id):
    place = catalog_service.get_place(place_id)
    if place is None:
        raise click.ClickException(f"Place {place_id} not found")
    for key, value in place.to_dict().items():
        click.echo(f"{key:<14} {value if value is not None else '-'}")


@catalog_group.command('list-places')
@click.option('--content-id', type=int, default=None)
@with_appcontext
def list_places_cli(content_id):
    places = catalog_service.list_places(content_id)
    if not places:
        click.echo("No places found.")
        return
    for place in places:
        content = place.content.name if place.content else "-"
        click.echo(f"{place.id:<6} {place.name:<32} {content:<32} {place.address or '-'}")


@click.group('ledger')
def ledger_group():
    """Point ledger inspection."""


@ledger_group.command('reconcile')
@click.option('--user-id', type=int, default=None, help='Check a single user')
@with_appcontext
def reconcile_cli(user_id):
    """
    Compare each point balance with the sum of its history.

    Report only: mismatches are ledger bugs and are never auto-corrected.
    """
    if user_id is not None and not identity_service.user_exists(user_id):
        raise click.ClickException(f"User {user_id} not found")

    mismatches = checkin_service.reconcile_balances(user_id)
    if not mismatches:
        click.echo("PASS All point balances reconcile with history.")
        return

    click.echo(f"FAIL {len(mismatches)} balance(s) do not reconcile:")
    for row in mismatches:
        click.echo(
            f"  user_id={row['user_id']} current_point={row['current_point']} "
            f"history_total={row['history_total']}"
        )
    raise SystemExit(1)


@click.group('maintenance')
def maintenance_group():
    """Maintenance and cleanup commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """Delete expired or revoked sessions older than the retention window."""
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} sessions older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(maintenance_group)
