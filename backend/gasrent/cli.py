# Overview: Flask CLI command groups for database bootstrap and lease inspection.

# backend/gasrent/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to gasrent (PowerShell: $env:FLASK_APP="gasrent").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Lease inspection:
# - python -m flask leases list [--status overdue] [--outlet-id 1] [--now 2024-01-15T00:00]
#   List leases with their resolved status (active/overdue/returned).
# - python -m flask leases summary [--outlet-id 1] [--now ...]
#   Count leases per resolved status.
# - python -m flask leases assess 42 --condition damaged [--now ...]
#   Preview the refund for returning lease 42 (nothing is written).
#
# Transfer inspection:
# - python -m flask transfers list [--cylinder-id 7] [--outlet-id 1]
#   Transfer history, newest first.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .domain import RESOLVED_LEASE_STATUSES, RETURN_CONDITIONS
from .services import cylinder_service, lease_service
from .services.status_service import days_overdue, resolve_lease_status
from .time_utils import parse_iso_datetime, to_utc_z, utcnow
from .validation import InvalidStateError, NotFoundError, format_cents


def _resolve_now(value):
    if not value:
        return utcnow()
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise click.BadParameter(f"{value!r} is not an ISO-8601 datetime", param_hint="--now")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('leases')
def leases_group():
    """Lease inspection commands."""


@leases_group.command('list')
@click.option('--status', type=click.Choice(RESOLVED_LEASE_STATUSES), default=None, help='Resolved status filter')
@click.option('--outlet-id', type=int, default=None, help='Only leases opened at this outlet')
@click.option('--now', 'now_value', default=None, help='Reference time (ISO-8601, default: current UTC time)')
@with_appcontext
def list_leases(status, outlet_id, now_value):
    """List leases with their resolved status."""
    now = _resolve_now(now_value)
    leases = lease_service.list_leases(now, status=status, outlet_id=outlet_id)
    if not leases:
        click.echo("No leases found")
        return

    for lease in leases:
        resolved = resolve_lease_status(lease, now)
        line = (
            f"#{lease.id:<6} cylinder={lease.cylinder_id:<6} customer={lease.customer_id:<6} "
            f"{resolved:<9} due={to_utc_z(lease.expected_return_date) or '-':<21} "
            f"deposit={format_cents(lease.deposit_amount_cents)}"
        )
        late = days_overdue(lease, now)
        if late:
            line += f" ({late} day{'s' if late != 1 else ''} late)"
        click.echo(line)


@leases_group.command('summary')
@click.option('--outlet-id', type=int, default=None, help='Only leases opened at this outlet')
@click.option('--now', 'now_value', default=None, help='Reference time (ISO-8601, default: current UTC time)')
@with_appcontext
def lease_summary(outlet_id, now_value):
    """Count leases per resolved status."""
    counts = lease_service.lease_status_summary(_resolve_now(now_value), outlet_id=outlet_id)
    for status in RESOLVED_LEASE_STATUSES:
        click.echo(f"{status:<9} {counts[status]}")


@leases_group.command('assess')
@click.argument('lease_id', type=int)
@click.option('--condition', type=click.Choice(RETURN_CONDITIONS), default='good', show_default=True)
@click.option('--now', 'now_value', default=None, help='Reference time (ISO-8601, default: current UTC time)')
@with_appcontext
def assess_return(lease_id, condition, now_value):
    """Preview the refund for returning a lease (read-only)."""
    try:
        assessment = lease_service.start_return(lease_id, _resolve_now(now_value))
    except (NotFoundError, InvalidStateError) as exc:
        click.echo(f"FAIL {exc}")
        raise SystemExit(1)

    breakdown = assessment.breakdown(condition)
    currency = current_app.config["CURRENCY_CODE"]
    click.echo(f"Lease #{lease_id} ({assessment.status_at_assessment}) assessed at {to_utc_z(assessment.assessed_at)}")
    click.echo(f"  Deposit:        {currency} {format_cents(breakdown.deposit_cents)}")
    click.echo(f"  Condition:      {condition} ({breakdown.condition_factor_bps / 100:g}%)")
    click.echo(f"  Base refund:    {currency} {format_cents(breakdown.base_refund_cents)}")
    if breakdown.days_late:
        capped = " (capped at 50%)" if breakdown.late_fee_capped else ""
        click.echo(f"  Days late:      {breakdown.days_late}")
        click.echo(f"  Late fee:       {currency} {format_cents(breakdown.late_fee_cents)}{capped}")
    click.echo(f"  Refund:         {currency} {format_cents(breakdown.refund_cents)}")


@click.group('transfers')
def transfers_group():
    """Transfer inspection commands."""


@transfers_group.command('list')
@click.option('--cylinder-id', type=int, default=None)
@click.option('--outlet-id', type=int, default=None, help='Transfers leaving this outlet')
@with_appcontext
def list_transfers(cylinder_id, outlet_id):
    """Transfer history, newest first."""
    transfers = cylinder_service.list_transfers(cylinder_id=cylinder_id, source_outlet_id=outlet_id)
    if not transfers:
        click.echo("No transfers found")
        return
    for transfer in transfers:
        click.echo(
            f"#{transfer.id:<6} cylinder={transfer.cylinder_id:<6} "
            f"{transfer.source_outlet_id} -> {transfer.destination_outlet_id} "
            f"{transfer.reason_text} at {to_utc_z(transfer.created_at)}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(leases_group)
    app.cli.add_command(transfers_group)
