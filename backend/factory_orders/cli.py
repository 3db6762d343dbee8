# Overview: Flask CLI command groups for bootstrap, configuration, and maintenance.

# backend/factory_orders/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create missing tables and seed margin defaults (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Configuration:
# - python -m flask config seed-defaults
#   Insert default_margin_percentage / default_shipping_margin_percentage when absent.
# - python -m flask config set default_margin_percentage 75
#   Change a system config value (margin keys trigger a margin repair).
# - python -m flask config show
#   Print all system config rows.
#
# Maintenance:
# - python -m flask maintenance cleanup-drafts [--retention-days 15] [--dry-run]
#   Purge draft orders older than the retention window.
# - python -m flask maintenance repair-margins [--order-id 12 --order-id 13]
#   Recompute client prices (all live orders by default).
# - python -m flask maintenance diagnose
#   Print the pricing self-check.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import SystemConfig
from .errors import ValidationError
from .permissions import Actor, Role
from .services import cleanup_service, diagnostics_service, margin_service


def _cli_actor() -> Actor:
    return Actor.system("cli")


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables and seed the margin defaults."""
    db.create_all()
    seeded = margin_service.seed_system_defaults(_cli_actor())
    click.echo("Tables ready.")
    click.echo(f"Seeded: {', '.join(seeded)}" if seeded else "Defaults already present.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset.')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        raise click.ClickException("Refusing to reset without --yes")
    db.drop_all()
    db.create_all()
    click.echo("Database reset.")


@click.group('config')
def config_group():
    """System configuration commands."""


@config_group.command('seed-defaults')
@with_appcontext
def seed_defaults():
    seeded = margin_service.seed_system_defaults(_cli_actor())
    if seeded:
        click.echo(f"Seeded: {', '.join(seeded)}")
    else:
        click.echo("All defaults already present.")


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@with_appcontext
def set_config(key, value):
    """Set KEY to VALUE. Margin keys are repaired across all orders."""
    # Shell access implies full configuration rights; the system role lacks MANAGE_SYSTEM_CONFIG
    actor = Actor(user_id=None, role=Role.SUPER_ADMIN, name="cli")
    try:
        row, report = margin_service.set_system_config(key, value, actor)
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(f"{row.config_key} = {row.config_value}")
    if report is not None:
        click.echo(f"Margin repair: {report.status} "
                   f"({report.orders_scanned} orders, {report.products_updated} products updated, "
                   f"{len(report.failures)} failures)")


@config_group.command('show')
@with_appcontext
def show_config():
    rows = db.session.query(SystemConfig).order_by(SystemConfig.config_key).all()
    if not rows:
        click.echo("No system config rows.")
        return
    for row in rows:
        click.echo(f"{row.config_key:40} {row.config_value}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-drafts')
@click.option('--retention-days', type=int, default=None, help='Defaults to DRAFT_RETENTION_DAYS.')
@click.option('--dry-run', is_flag=True, help='List eligible drafts without deleting.')
@with_appcontext
def cleanup_drafts_cli(retention_days, dry_run):
    """
    Delete draft orders older than the retention window.

    Default retention: DRAFT_RETENTION_DAYS (15).
    """
    if dry_run:
        drafts = cleanup_service.find_expired_drafts(retention_days)
        click.echo(f"{len(drafts)} draft order(s) eligible for deletion.")
        for order_id, order_number in drafts:
            click.echo(f"  {order_number} (id={order_id})")
        return

    report = cleanup_service.sweep_expired_drafts(retention_days)
    click.echo(f"Deleted {len(report.deleted)} draft order(s) older than {report.retention_days} days.")
    for failure in report.failures:
        click.echo(f"  FAILED {failure['order_number']}: [{failure['code']}] {failure['error']}", err=True)
    if report.status != "ok":
        raise SystemExit(1)


@maintenance_group.command('repair-margins')
@click.option('--order-id', 'order_ids', type=int, multiple=True, help='Limit to these orders.')
@with_appcontext
def repair_margins_cli(order_ids):
    report = margin_service.repair_margins(order_ids or None, actor=_cli_actor())
    click.echo(json.dumps(report.to_dict(), indent=2))
    if report.status != "ok":
        raise SystemExit(1)


@maintenance_group.command('diagnose')
@with_appcontext
def diagnose_cli():
    click.echo(json.dumps(diagnostics_service.run_diagnostics(), indent=2, default=str))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(config_group)
    app.cli.add_command(maintenance_group)
