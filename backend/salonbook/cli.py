# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/salonbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (dev only; use `flask db upgrade` elsewhere).
#
# Checkout maintenance:
# - python -m flask checkout sweep-expired
#   Expire abandoned sessions past their TTL and release appointment locks.
#   Safe to run from cron every minute.
# - python -m flask checkout show <session_id>
#   Print a session's status, items and totals.
#
# Permissions:
# - python -m flask perms list [--role receptionist]
# - python -m flask perms check <role> <permission_code>

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .checkout.serialization import state_from_dict, state_to_dict
from .extensions import db
from .models import CheckoutSession
from .permissions import get_role_permissions, has_permission
from .services.checkout_service import sweep_expired_sessions


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (idempotent)."""
    db.create_all()
    click.echo("OK Database tables created")


@click.group('checkout')
def checkout_group():
    """Checkout session maintenance and inspection."""


@checkout_group.command('sweep-expired')
@with_appcontext
def sweep_expired():
    """Expire open/settled sessions whose TTL has elapsed."""
    count = sweep_expired_sessions()
    click.echo(f"OK Expired {count} checkout session(s)")


@checkout_group.command('show')
@click.argument('session_id')
@click.option('--json', 'as_json', is_flag=True, help='Print the full session state as JSON')
@with_appcontext
def show_session(session_id, as_json):
    """Print one checkout session."""
    row = db.session.get(CheckoutSession, session_id)
    if row is None:
        raise click.ClickException(f"Checkout session {session_id} not found")

    state = state_from_dict(row.state_json)
    if as_json:
        click.echo(json.dumps(state_to_dict(state), indent=2))
        return

    click.echo(f"Session {state.id}  status={state.status.value}  branch={state.branch_id}")
    click.echo(f"  appointment={state.appointment_id}  customer={state.customer.name if state.customer else '-'}")
    click.echo(f"  expires_at={state.expires_at}  invoice_id={state.invoice_id}")
    for item in state.line_items:
        click.echo(
            f"  - {item.name} x{item.quantity}  gross={item.gross_amount}  "
            f"discount={item.discount_amount}  net={item.net_amount}"
        )
    totals = state.totals
    click.echo(
        f"  grand_total={totals.grand_total}  paid={totals.amount_paid}  due={totals.amount_due}"
    )


@click.group('perms')
def perms_group():
    """Role capability inspection."""


@perms_group.command('list')
@click.option('--role', help='Show capabilities for one role')
@with_appcontext
def list_permissions_cli(role):
    """List role capabilities from the configured matrix."""
    table = current_app.config["ROLE_PERMISSIONS"]
    roles = [role] if role else sorted(table)

    for name in roles:
        if name not in table:
            click.echo(f"FAIL Role '{name}' not found")
            return
        codes = get_role_permissions(name, table)
        click.echo(f"\n{'='*60}")
        click.echo(f"Role: {name.upper()}")
        click.echo(f"{'='*60}")
        for code in codes:
            click.echo(f"  {code}")
        click.echo(f"\n Total: {len(codes)} capabilities")


@perms_group.command('check')
@click.argument('role')
@click.argument('permission_code')
@with_appcontext
def check_permission_cli(role, permission_code):
    """Check if a role holds a capability (wildcards included)."""
    table = current_app.config["ROLE_PERMISSIONS"]
    if has_permission(role, permission_code, table):
        click.echo(f"PASS Role '{role}' HAS permission '{permission_code}'")
    else:
        click.echo(f"FAIL Role '{role}' DOES NOT HAVE permission '{permission_code}'")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(checkout_group)
    app.cli.add_command(perms_group)
